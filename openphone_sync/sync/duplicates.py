"""
Duplicate detection for outbound OpenPhone contacts.

There is no shared primary key between the client store and OpenPhone, so
before a contact is created the detector decides whether OpenPhone already
holds it. Strategies are tried in order of reliability:

- External id: the "client_<id>" key written on every contact we create
- Phone number: exact, normalized, then partial (last 7 digits) match
- Name similarity: Levenshtein similarity of normalized names, with a small
  bonus when the candidate also shares a phone number

A candidate already carrying a different external id belongs to another
client (or another alternative contact of the same client) and is never
matched by phone or name.

Lookups run against a local cache of the whole workspace, loaded once and
kept current as contacts are created and updated. Every positive match is
re-checked with a live get_contact call; a cached id that no longer exists
is evicted and the lookup continues as if it had never been cached.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from rapidfuzz.distance import Levenshtein

from openphone_sync.api.models import ContactPayload, PayloadError, RemoteContact
from openphone_sync.api.openphone_api import (
    NotFoundError,
    OpenPhoneAPI,
    OpenPhoneAPIError,
)
from openphone_sync.utils.normalization import normalize_name
from openphone_sync.utils.phone import normalize_phone_for_comparison, partial_phone_key

logger = logging.getLogger(__name__)

EXTERNAL_ID_CONFIDENCE = 1.0
PHONE_CONFIDENCE = 0.9

DEFAULT_SIMILARITY_THRESHOLD = 0.85
DEFAULT_PHONE_MATCH_BONUS = 0.05
DEFAULT_SEARCH_LIMIT = 20


class MatchReason(str, Enum):
    """Which strategy produced a duplicate check result."""

    EXTERNAL_ID = "external_id"
    PHONE_NUMBER = "phone_number"
    NAME_SIMILARITY = "name_similarity"
    NO_MATCH = "no_match"


class PhoneMatchType(str, Enum):
    """Precision tier of a phone match."""

    EXACT = "exact"
    NORMALIZED = "normalized"
    PARTIAL = "partial"


@dataclass(frozen=True)
class DuplicateCheckResult:
    """
    Outcome of a duplicate check.

    Attributes:
        is_duplicate: True if an existing contact represents the same entity
        existing_contact_id: Id of that contact (verified to exist)
        confidence: 1.0 for external id, 0.9 for phone, the similarity
            score for name matches, 0.0 when there is no match
        match_reason: Strategy that matched
        matched_by: Signals that contributed ("external_id", "phone", "name")
        phone_match_type: Tier of the phone match, when the phone strategy won
    """

    is_duplicate: bool
    existing_contact_id: Optional[str] = None
    confidence: float = 0.0
    match_reason: MatchReason = MatchReason.NO_MATCH
    matched_by: tuple[str, ...] = ()
    phone_match_type: Optional[PhoneMatchType] = None

    @classmethod
    def no_match(cls) -> DuplicateCheckResult:
        return cls(is_duplicate=False)


@dataclass
class DuplicateDetectionConfig:
    """
    Tuning for the duplicate detector.

    Attributes:
        similarity_threshold: Minimum name score accepted as a duplicate
        phone_match_bonus: Added to the name score when a phone also matches
        enable_external_id_check: Try the external id strategy
        enable_phone_matching: Try the phone strategy
        enable_partial_phone_matching: Accept last-7-digit phone matches from
            the cache
        enable_name_matching: Try the name strategy
        search_limit: Results requested from the remote search when the
            cache is cold
    """

    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    phone_match_bonus: float = DEFAULT_PHONE_MATCH_BONUS
    enable_external_id_check: bool = True
    enable_phone_matching: bool = True
    enable_partial_phone_matching: bool = True
    enable_name_matching: bool = True
    search_limit: int = DEFAULT_SEARCH_LIMIT


@dataclass(frozen=True)
class CacheStats:
    """Sizes of the detector's cache and indexes."""

    loaded: bool
    cached_contacts: int
    external_id_index_size: int
    exact_phone_index_size: int
    normalized_phone_index_size: int
    partial_phone_index_size: int


@dataclass
class _IndexEntry:
    """Keys under which one contact id is indexed, so it can be purged."""

    external_id: Optional[str] = None
    exact: list[str] = field(default_factory=list)
    normalized: list[str] = field(default_factory=list)
    partial: list[str] = field(default_factory=list)


def _add(index: dict[str, list[str]], key: str, contact_id: str) -> None:
    ids = index.setdefault(key, [])
    if contact_id not in ids:
        ids.append(contact_id)


def _remove(index: dict[str, list[str]], key: str, contact_id: str) -> None:
    ids = index.get(key)
    if not ids:
        return
    if contact_id in ids:
        ids.remove(contact_id)
    if not ids:
        del index[key]


def _owned_elsewhere(
    contact: Optional[RemoteContact], external_id: Optional[str]
) -> bool:
    """True if the contact carries an external id other than the given one."""
    return (
        contact is not None
        and bool(contact.external_id)
        and contact.external_id != external_id
    )


class DuplicateDetector:
    """
    Decides whether an outbound contact already exists in OpenPhone.

    Cache mutations (index_contact, update_cache, evict, clear_cache) are
    synchronous, so concurrent sync tasks never observe a half-updated
    index.

    Usage:
        detector = DuplicateDetector(api)
        result = await detector.check_for_duplicates(mapped.payload)
        if result.is_duplicate:
            updated = await api.update_contact(result.existing_contact_id, payload)
        else:
            created = await api.create_contact(payload)
        detector.index_contact(updated or created)
    """

    def __init__(
        self, api: OpenPhoneAPI, config: Optional[DuplicateDetectionConfig] = None
    ):
        self.api = api
        self.config = config or DuplicateDetectionConfig()

        self._contacts: dict[str, RemoteContact] = {}
        self._external_index: dict[str, str] = {}
        self._exact_index: dict[str, list[str]] = {}
        self._normalized_index: dict[str, list[str]] = {}
        self._partial_index: dict[str, list[str]] = {}
        self._entries: dict[str, _IndexEntry] = {}

        self._loaded = False
        self._load_task: Optional[asyncio.Task[bool]] = None

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    # =========================================================================
    # Cache loading and maintenance
    # =========================================================================

    async def ensure_loaded(self) -> bool:
        """
        Load every remote contact into the cache, once.

        Concurrent callers share a single in-flight load. A failed load is
        logged and leaves the cache cold; the next call tries again.

        Returns:
            True if the cache is loaded
        """
        if self._loaded:
            return True

        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.ensure_future(self._load_all())

        # Shielded so a cancelled caller does not abort the shared load
        return await asyncio.shield(self._load_task)

    async def _load_all(self) -> bool:
        logger.debug("Loading OpenPhone contacts into duplicate detection cache")
        contacts: list[RemoteContact] = []
        try:
            async for contact in self.api.iter_contacts():
                contacts.append(contact)
        except (OpenPhoneAPIError, PayloadError) as e:
            logger.warning(f"Could not load contact cache, using remote lookups: {e}")
            return False

        for contact in contacts:
            # Anything indexed while the listing ran is at least as fresh
            if contact.id not in self._contacts:
                self.index_contact(contact)

        self._loaded = True
        logger.info(f"Duplicate detection cache loaded with {len(contacts)} contacts")
        return True

    def index_contact(self, contact: RemoteContact) -> None:
        """
        Add or refresh one contact in every index.

        Any previous entries for the same id are purged first, so a phone
        number removed from the contact stops matching.
        """
        self.evict(contact.id)

        entry = _IndexEntry()
        self._contacts[contact.id] = contact

        if contact.external_id:
            self._external_index[contact.external_id] = contact.id
            entry.external_id = contact.external_id

        for phone in contact.phone_values:
            _add(self._exact_index, phone, contact.id)
            entry.exact.append(phone)

            normalized = normalize_phone_for_comparison(phone)
            if normalized:
                _add(self._normalized_index, normalized, contact.id)
                entry.normalized.append(normalized)

            partial = partial_phone_key(phone)
            if partial:
                _add(self._partial_index, partial, contact.id)
                entry.partial.append(partial)

        self._entries[contact.id] = entry

    def update_cache(self, contacts: Iterable[RemoteContact]) -> None:
        """Index a batch of contacts returned by create or update calls."""
        for contact in contacts:
            self.index_contact(contact)

    def evict(self, contact_id: str) -> None:
        """Remove a contact id from every index."""
        entry = self._entries.pop(contact_id, None)
        self._contacts.pop(contact_id, None)
        if entry is None:
            return

        if entry.external_id and self._external_index.get(entry.external_id) == contact_id:
            del self._external_index[entry.external_id]
        for key in entry.exact:
            _remove(self._exact_index, key, contact_id)
        for key in entry.normalized:
            _remove(self._normalized_index, key, contact_id)
        for key in entry.partial:
            _remove(self._partial_index, key, contact_id)

    def clear_cache(self) -> None:
        """Drop every cached contact; the next check reloads the cache."""
        self._contacts.clear()
        self._external_index.clear()
        self._exact_index.clear()
        self._normalized_index.clear()
        self._partial_index.clear()
        self._entries.clear()
        self._loaded = False

    def get_cache_stats(self) -> CacheStats:
        return CacheStats(
            loaded=self._loaded,
            cached_contacts=len(self._contacts),
            external_id_index_size=len(self._external_index),
            exact_phone_index_size=len(self._exact_index),
            normalized_phone_index_size=len(self._normalized_index),
            partial_phone_index_size=len(self._partial_index),
        )

    # =========================================================================
    # Duplicate checks
    # =========================================================================

    async def check_for_duplicates(self, payload: ContactPayload) -> DuplicateCheckResult:
        """
        Check whether a contact would duplicate one already in OpenPhone.

        Args:
            payload: Outbound contact

        Returns:
            DuplicateCheckResult; a positive result always names a contact
            that existed when it was checked

        Raises:
            OpenPhoneAPIError: If a remote lookup fails for a reason other
                than the contact not existing
        """
        await self.ensure_loaded()

        fields = payload.default_fields
        phones = [p.value for p in fields.phone_numbers if p.value]

        if self.config.enable_external_id_check and payload.external_id:
            match = await self._find_by_external_id(payload.external_id)
            if match is not None:
                return DuplicateCheckResult(
                    is_duplicate=True,
                    existing_contact_id=match.id,
                    confidence=EXTERNAL_ID_CONFIDENCE,
                    match_reason=MatchReason.EXTERNAL_ID,
                    matched_by=("external_id",),
                )

        if self.config.enable_phone_matching and phones:
            phone_match = await self._find_by_phone(phones, payload.external_id)
            if phone_match is not None:
                contact, match_type = phone_match
                return DuplicateCheckResult(
                    is_duplicate=True,
                    existing_contact_id=contact.id,
                    confidence=PHONE_CONFIDENCE,
                    match_reason=MatchReason.PHONE_NUMBER,
                    matched_by=("phone",),
                    phone_match_type=match_type,
                )

        name = fields.display_name
        if self.config.enable_name_matching and name:
            name_match = await self._find_by_name(name, phones, payload.external_id)
            if name_match is not None:
                contact, score, matched_by = name_match
                return DuplicateCheckResult(
                    is_duplicate=True,
                    existing_contact_id=contact.id,
                    confidence=score,
                    match_reason=MatchReason.NAME_SIMILARITY,
                    matched_by=tuple(matched_by),
                )

        return DuplicateCheckResult.no_match()

    async def _verify(self, contact_id: str) -> Optional[RemoteContact]:
        """
        Confirm a candidate still exists and refresh its cache entry.

        Returns:
            The live contact, or None if it is gone (and now evicted)
        """
        try:
            contact = await self.api.get_contact(contact_id)
        except NotFoundError:
            logger.info(f"Contact {contact_id} no longer exists, evicting from cache")
            self.evict(contact_id)
            return None

        self.index_contact(contact)
        return contact

    async def _find_by_external_id(self, external_id: str) -> Optional[RemoteContact]:
        if self._loaded:
            contact_id = self._external_index.get(external_id)
            if contact_id is None:
                return None
            return await self._verify(contact_id)

        remote = await self.api.get_contact_by_external_id(external_id)
        if remote is None:
            return None
        return await self._verify(remote.id)

    async def _verify_unowned(
        self, contact_id: str, external_id: Optional[str]
    ) -> Optional[RemoteContact]:
        """
        Verify a phone or name candidate, rejecting one that belongs to
        another external id either in the cache or live.
        """
        if _owned_elsewhere(self._contacts.get(contact_id), external_id):
            return None
        live = await self._verify(contact_id)
        if _owned_elsewhere(live, external_id):
            return None
        return live

    async def _find_by_phone(
        self, phones: list[str], external_id: Optional[str] = None
    ) -> Optional[tuple[RemoteContact, PhoneMatchType]]:
        for phone in phones:
            if self._loaded:
                match = await self._find_by_phone_cached(phone, external_id)
            else:
                match = await self._find_by_phone_remote(phone, external_id)
            if match is not None:
                return match
        return None

    async def _find_by_phone_cached(
        self, phone: str, external_id: Optional[str]
    ) -> Optional[tuple[RemoteContact, PhoneMatchType]]:
        normalized = normalize_phone_for_comparison(phone)
        partial = partial_phone_key(phone)
        if not self.config.enable_partial_phone_matching:
            partial = ""

        tiers = [
            (PhoneMatchType.EXACT, self._exact_index.get(phone, [])),
            (PhoneMatchType.NORMALIZED, self._normalized_index.get(normalized, [])),
            (
                PhoneMatchType.PARTIAL,
                self._partial_index.get(partial, []) if partial else [],
            ),
        ]

        for match_type, candidates in tiers:
            # Copy: verification re-indexes and may mutate the list
            for contact_id in list(candidates):
                live = await self._verify_unowned(contact_id, external_id)
                if live is not None:
                    return live, match_type
        return None

    async def _find_by_phone_remote(
        self, phone: str, external_id: Optional[str]
    ) -> Optional[tuple[RemoteContact, PhoneMatchType]]:
        normalized = normalize_phone_for_comparison(phone)

        exact_results = await self.api.search_contacts(phone, self.config.search_limit)
        for candidate in exact_results:
            if _owned_elsewhere(candidate, external_id):
                continue
            if phone in candidate.phone_values:
                live = await self._verify_unowned(candidate.id, external_id)
                if live is not None:
                    return live, PhoneMatchType.EXACT

        if not normalized:
            return None

        normalized_results = await self.api.search_contacts(
            normalized, self.config.search_limit
        )
        for candidate in normalized_results:
            if _owned_elsewhere(candidate, external_id):
                continue
            if any(
                normalize_phone_for_comparison(p) == normalized
                for p in candidate.phone_values
            ):
                live = await self._verify_unowned(candidate.id, external_id)
                if live is not None:
                    return live, PhoneMatchType.NORMALIZED

        return None

    def score_name(
        self, name: str, phones: list[str], candidate: RemoteContact
    ) -> tuple[float, list[str]]:
        """
        Score how well a candidate's name matches.

        Returns:
            (score in [0, 1], signals that contributed)
        """
        target = normalize_name(name)
        candidate_name = normalize_name(candidate.display_name)
        if not target or not candidate_name:
            return 0.0, []

        score = Levenshtein.normalized_similarity(target, candidate_name)
        matched_by = ["name"]

        outbound = {normalize_phone_for_comparison(p) for p in phones}
        outbound.discard("")
        if outbound and any(
            normalize_phone_for_comparison(p) in outbound for p in candidate.phone_values
        ):
            score = min(1.0, score + self.config.phone_match_bonus)
            matched_by.append("phone")

        return score, matched_by

    async def _find_by_name(
        self, name: str, phones: list[str], external_id: Optional[str] = None
    ) -> Optional[tuple[RemoteContact, float, list[str]]]:
        if self._loaded:
            candidates = list(self._contacts.values())
        else:
            candidates = await self.api.search_contacts(name, self.config.search_limit)

        scored: list[tuple[float, str, RemoteContact, list[str]]] = []
        for candidate in candidates:
            if _owned_elsewhere(candidate, external_id):
                continue
            score, matched_by = self.score_name(name, phones, candidate)
            if score >= self.config.similarity_threshold:
                scored.append((score, candidate.id, candidate, matched_by))

        # Best score first; id breaks ties so results are reproducible
        scored.sort(key=lambda item: (-item[0], item[1]))

        for score, contact_id, _, matched_by in scored:
            live = await self._verify_unowned(contact_id, external_id)
            if live is not None:
                logger.debug(
                    f"Name match for '{name}': {live.display_name} ({score:.2f})"
                )
                return live, score, matched_by
        return None
