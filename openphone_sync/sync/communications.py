"""
Import of OpenPhone calls and conversations into the communication log.

Each call or conversation becomes one communication record, upserted by its
OpenPhone id, so re-importing the same window updates rows instead of
duplicating them. The client an event belongs to is resolved by OpenPhone
contact id, then name, then phone number; an event that resolves to no
client creates one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from openphone_sync.api.models import (
    Call,
    CallParticipant,
    Conversation,
    EventContact,
    PayloadError,
)
from openphone_sync.api.openphone_api import OpenPhoneAPI
from openphone_sync.storage.models import (
    ClientRecord,
    ClientStore,
    CommunicationRecord,
    CommunicationType,
    UpsertAction,
)
from openphone_sync.utils.phone import standardize_phone_number

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)
DEFAULT_PAGE_SIZE = 100
COMMUNICATION_SOURCE = "Quo"

_CONVERSATION_TYPES = {
    "sms": CommunicationType.SMS,
    "text": CommunicationType.SMS,
    "email": CommunicationType.EMAIL,
    "phone": CommunicationType.PHONE_CALL,
    "call": CommunicationType.PHONE_CALL,
}


def map_conversation_type(value: Optional[str]) -> CommunicationType:
    """Map an OpenPhone conversation type to a communication type (SMS by default)."""
    if not value:
        return CommunicationType.SMS
    return _CONVERSATION_TYPES.get(value.lower(), CommunicationType.SMS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class CommunicationSyncOptions:
    """
    Options for one communications import.

    Attributes:
        start_date: Start of the window (default: 24 hours before end_date)
        end_date: End of the window (default: now)
        include_calls: Import calls
        include_messages: Import conversations
        page_size: Page size for list requests
        phone_number_ids: Workspace lines to import from (default: every
            line reported by OpenPhone)
    """

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    include_calls: bool = True
    include_messages: bool = True
    page_size: int = DEFAULT_PAGE_SIZE
    phone_number_ids: Optional[list[str]] = None


@dataclass
class CommunicationSyncResult:
    calls_processed: int = 0
    conversations_processed: int = 0
    communications_created: int = 0
    communications_updated: int = 0
    communications_skipped: int = 0
    clients_created: int = 0

    def summary(self) -> str:
        return (
            f"Calls: {self.calls_processed}, conversations: "
            f"{self.conversations_processed}, created: "
            f"{self.communications_created}, updated: "
            f"{self.communications_updated}, skipped: "
            f"{self.communications_skipped}, new clients: {self.clients_created}"
        )


@dataclass
class ExtractedContact:
    """Who an event was with, as far as the event says."""

    name: Optional[str] = None
    phone: Optional[str] = None
    contact_id: Optional[str] = None
    email: Optional[str] = None


@dataclass
class EventOutcome:
    action: UpsertAction
    client_created: bool = False


@dataclass
class _Counts:
    processed: int = 0
    outcomes: list[EventOutcome] = field(default_factory=list)


def extract_contact(
    participants: list[CallParticipant], contact: Optional[EventContact] = None
) -> ExtractedContact:
    """
    Pick the external party of an event.

    The explicit contact wins; otherwise the first participant that is not
    a workspace user, falling back to the first participant.
    """
    participant = next((p for p in participants if p.type != "user"), None)
    if participant is None and participants:
        participant = participants[0]

    contact = contact or EventContact()
    return ExtractedContact(
        name=contact.display_name or (participant.display_name if participant else None),
        phone=contact.phone_number or (participant.phone_number if participant else None),
        contact_id=contact.contact_id or (participant.contact_id if participant else None),
        email=contact.email,
    )


class CommunicationsImporter:
    """
    Pulls calls and conversations from OpenPhone into the client store.

    Usage:
        importer = CommunicationsImporter(api, store)
        result = await importer.sync_communications()
        print(result.summary())
    """

    def __init__(
        self,
        api: OpenPhoneAPI,
        store: ClientStore,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.api = api
        self.store = store
        self._clock = clock

    async def sync_communications(
        self, options: Optional[CommunicationSyncOptions] = None
    ) -> CommunicationSyncResult:
        """
        Import every call and conversation inside a time window.

        Args:
            options: Import options (default: last 24 hours, calls and
                     conversations)

        Returns:
            CommunicationSyncResult with counts for the import

        Raises:
            OpenPhoneAPIError: If a list request fails
        """
        options = options or CommunicationSyncOptions()
        end = options.end_date or self._clock()
        start = options.start_date or end - DEFAULT_WINDOW

        line_ids = options.phone_number_ids
        if line_ids is None:
            line_ids = [line.id for line in await self.api.list_phone_numbers()]
            if not line_ids:
                logger.info("Workspace reports no phone numbers, importing unscoped")

        logger.info(
            f"Importing communications from {start.isoformat()} to {end.isoformat()}"
        )

        result = CommunicationSyncResult()

        if options.include_calls:
            calls = await self._import_calls(start, end, line_ids, options.page_size)
            result.calls_processed = calls.processed
            self._tally(result, calls.outcomes)

        if options.include_messages:
            conversations = await self._import_conversations(
                start, end, line_ids, options.page_size
            )
            result.conversations_processed = conversations.processed
            self._tally(result, conversations.outcomes)

        logger.info(f"Communications import finished. {result.summary()}")
        return result

    @staticmethod
    def _tally(result: CommunicationSyncResult, outcomes: list[EventOutcome]) -> None:
        for outcome in outcomes:
            if outcome.action == UpsertAction.CREATED:
                result.communications_created += 1
            elif outcome.action == UpsertAction.UPDATED:
                result.communications_updated += 1
            else:
                result.communications_skipped += 1
            if outcome.client_created:
                result.clients_created += 1

    async def _import_calls(
        self, start: datetime, end: datetime, line_ids: list[str], page_size: int
    ) -> _Counts:
        counts = _Counts()
        # OpenPhone scopes call listings to one line; None means unscoped
        scopes: list[Optional[str]] = list(line_ids) or [None]

        for line_id in scopes:
            page_token: Optional[str] = None
            while True:
                page = await self.api.list_calls(
                    phone_number_id=line_id,
                    created_after=start,
                    created_before=end,
                    max_results=page_size,
                    page_token=page_token,
                )
                counts.processed += len(page.items)
                for call in page.items:
                    counts.outcomes.append(self.process_call(call))

                page_token = page.next_page_token
                if not page_token:
                    break

        return counts

    async def _import_conversations(
        self, start: datetime, end: datetime, line_ids: list[str], page_size: int
    ) -> _Counts:
        counts = _Counts()
        page_token: Optional[str] = None

        while True:
            page = await self.api.list_conversations(
                phone_numbers=line_ids or None,
                updated_after=start,
                updated_before=end,
                max_results=page_size,
                page_token=page_token,
            )
            counts.processed += len(page.items)
            for conversation in page.items:
                counts.outcomes.append(self.process_conversation(conversation))

            page_token = page.next_page_token
            if not page_token:
                break

        return counts

    # =========================================================================
    # Per-event processing
    # =========================================================================

    def process_call(self, call: Call) -> EventOutcome:
        """Upsert the communication record for one call."""
        contact = extract_contact(call.participants, call.contact)
        client, created = self.resolve_client(contact)

        timestamp = _as_utc(call.ended_at or call.started_at or self._clock())
        communication_date = _as_utc(
            call.started_at or call.ended_at or timestamp
        ).date().isoformat()

        direction = "to" if call.direction == "outbound" else "from"
        notes = (
            call.summary
            or call.metadata.get("summary")
            or f"Phone call {direction} {contact.name or 'contact'}"
        )

        record = CommunicationRecord(
            client_id=client.id,
            client_name=client.client_name,
            communication_date=communication_date,
            communication_type=CommunicationType.PHONE_CALL,
            subject=f"Phone call with {contact.name or contact.phone or 'contact'}",
            notes=notes,
            source=COMMUNICATION_SOURCE,
            openphone_call_id=call.id,
            openphone_event_timestamp=timestamp,
        )
        upsert = self.store.upsert_communication(record)
        return EventOutcome(action=upsert.action, client_created=created)

    def process_conversation(self, conversation: Conversation) -> EventOutcome:
        """Upsert the communication record for one conversation."""
        contact = extract_contact(conversation.participants)
        client, created = self.resolve_client(contact)

        communication_type = map_conversation_type(conversation.type)
        last_message = conversation.last_message
        timestamp = _as_utc(
            (last_message.created_at if last_message else None)
            or conversation.updated_at
            or self._clock()
        )
        communication_date = timestamp.date().isoformat()

        notes = (
            (last_message.content if last_message else None)
            or conversation.title
            or f"Conversation update received on {communication_date}"
        )

        record = CommunicationRecord(
            client_id=client.id,
            client_name=client.client_name,
            communication_date=communication_date,
            communication_type=communication_type,
            subject=conversation.title or f"{communication_type.value} conversation",
            notes=notes,
            source=COMMUNICATION_SOURCE,
            openphone_conversation_id=conversation.id,
            openphone_event_timestamp=timestamp,
        )
        upsert = self.store.upsert_communication(record)
        return EventOutcome(action=upsert.action, client_created=created)

    def resolve_client(self, contact: ExtractedContact) -> tuple[ClientRecord, bool]:
        """
        Find the client an event belongs to, creating one if needed.

        Lookup order: OpenPhone contact id, name, phone. The contact id is
        attached to a found client that does not have one yet.

        Returns:
            (client, created)
        """
        phone = standardize_phone_number(contact.phone) or contact.phone

        client = self.store.find_client_by_openphone_contact_id(contact.contact_id)
        if client is None and contact.name:
            client = self.store.find_client_by_name(contact.name)
        if client is None and phone:
            client = self.store.find_client_by_phone_numbers([phone])

        if client is not None:
            if contact.contact_id and not client.openphone_contact_id:
                self.store.attach_openphone_contact_id(client.id, contact.contact_id)
                client.openphone_contact_id = contact.contact_id
            return client, False

        client = self.store.create_client_from_openphone_contact(
            name=contact.name,
            phone=phone,
            email=contact.email,
            openphone_contact_id=contact.contact_id,
        )
        return client, True

    # =========================================================================
    # Webhooks
    # =========================================================================

    def handle_webhook_event(self, event: dict[str, Any]) -> Optional[EventOutcome]:
        """
        Route an already-verified webhook payload through the import path.

        Accepts both the {"type": ..., "data": {"object": ...}} envelope and
        a bare {"type": ..., "data": ...} body.

        Returns:
            EventOutcome, or None if the event type is not handled or the
            payload cannot be parsed
        """
        event_type = event.get("type") or event.get("event")
        if not event_type:
            logger.warning("OpenPhone webhook missing event type")
            return None

        data = event.get("data") or event
        if isinstance(data, dict) and isinstance(data.get("object"), dict):
            data = data["object"]

        try:
            if event_type.startswith("call."):
                return self.process_call(Call.from_api_response(data))
            if event_type.startswith(("message.", "conversation.")):
                return self.process_conversation(Conversation.from_api_response(data))
        except PayloadError as e:
            logger.warning(f"Ignoring malformed {event_type} webhook: {e}")
            return None

        logger.info(f"Unhandled OpenPhone webhook event: {event_type}")
        return None
