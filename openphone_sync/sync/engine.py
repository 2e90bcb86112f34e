"""
Sync engine pushing practice clients into OpenPhone contacts.

Orchestrates a sync run: checks connectivity, fetches the clients due for
sync, maps each one to its contacts, asks the duplicate detector whether
each contact already exists, then updates or creates it remotely. Clients
are processed in fixed-size batches, concurrently within a batch; the API
client's concurrency gate bounds the actual number of requests in flight.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from openphone_sync.api.models import RemoteContact
from openphone_sync.api.openphone_api import NotFoundError, OpenPhoneAPI
from openphone_sync.config.settings import CustomFieldKeys
from openphone_sync.storage.models import ClientRecord, ClientStore
from openphone_sync.sync.duplicates import (
    CacheStats,
    DuplicateDetectionConfig,
    DuplicateDetector,
)
from openphone_sync.sync.events import (
    EventSink,
    LoggingEventSink,
    SyncEvent,
    SyncEventType,
)
from openphone_sync.sync.mapping import (
    MappedContact,
    map_client_to_contacts,
    validate_mapped_contact,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

# Client id and name recorded for failures that are not tied to one client
RUN_ERROR_ID = "sync"
RUN_ERROR_NAME = "Sync Process"


class SyncError(Exception):
    """Base exception for sync engine errors."""

    pass


class SyncInProgressError(SyncError):
    """Raised when a sync is requested while another one is running."""

    pass


class SyncConfigurationError(SyncError):
    """Raised when the provider or the client store cannot be used."""

    pass


class ClientSyncError(SyncError):
    """Raised when one of a client's contacts could not be synced."""

    def __init__(self, message: str, contact_type: Optional[str] = None):
        super().__init__(message)
        self.contact_type = contact_type


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"


class ContactAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class SyncOptions:
    """
    Options for one sync run.

    Attributes:
        sync_mode: Full scan, or only clients updated since updated_since
        batch_size: Clients processed concurrently per batch (defaults to
            the configured batch size)
        updated_since: Cut-off for incremental mode
        dry_run: Do everything except the remote create/update
        client_type: Only sync clients of this type
        continue_on_error: Record per-client failures and keep going; when
            False the first failure aborts the run
    """

    sync_mode: SyncMode = SyncMode.FULL
    batch_size: Optional[int] = None
    updated_since: Optional[datetime] = None
    dry_run: bool = False
    client_type: Optional[str] = None
    continue_on_error: bool = True

    def __post_init__(self) -> None:
        if self.batch_size is not None and self.batch_size < 1:
            raise SyncConfigurationError(
                f"batch_size must be at least 1, got {self.batch_size}"
            )


@dataclass(frozen=True)
class SyncErrorRecord:
    """A failure recorded against one client."""

    client_id: str
    client_name: str
    error: str
    contact_type: Optional[str] = None


@dataclass(frozen=True)
class SyncProgress:
    """Snapshot of a running sync, handed to progress callbacks."""

    current_step: str
    processed: int
    total: int
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    current_client: Optional[str] = None
    estimated_remaining: Optional[float] = None  # seconds


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of a sync run. Immutable once the run has finished.

    success is True only when no client errored.
    """

    success: bool
    sync_mode: SyncMode
    dry_run: bool
    total_clients_processed: int
    total_contacts_created: int
    total_contacts_updated: int
    total_contacts_skipped: int
    total_errors: int
    errors: tuple[SyncErrorRecord, ...]
    start_time: datetime
    end_time: datetime

    @property
    def duration(self) -> float:
        """Run duration in seconds."""
        return (self.end_time - self.start_time).total_seconds()

    def summary(self) -> str:
        """
        Generate a human-readable summary of the run.

        Returns:
            Multi-line summary string
        """
        lines = []
        if self.dry_run:
            lines.append("Sync preview (dry run):")
        else:
            lines.append("Sync summary:")

        lines.append(f"  Mode: {self.sync_mode.value}")
        lines.append(f"  Clients processed: {self.total_clients_processed}")
        lines.append(f"  Contacts created: {self.total_contacts_created}")
        lines.append(f"  Contacts updated: {self.total_contacts_updated}")
        lines.append(f"  Contacts skipped: {self.total_contacts_skipped}")
        lines.append(f"  Errors: {self.total_errors}")
        lines.append(f"  Duration: {self.duration:.1f}s")

        if self.errors:
            lines.append("")
            lines.append("Errors:")
            for error in self.errors:
                lines.append(f"  - {error.client_name} ({error.client_id}): {error.error}")

        return "\n".join(lines)


@dataclass(frozen=True)
class SyncStatus:
    state: SyncState
    in_progress: bool
    last_result: Optional[SyncResult]
    cache_stats: CacheStats


@dataclass(frozen=True)
class ConfigurationReport:
    """Result of test_configuration()."""

    openphone_connection: bool
    database_connection: bool
    sample_clients: int
    errors: tuple[str, ...]

    @property
    def ok(self) -> bool:
        return self.openphone_connection and self.database_connection and not self.errors


@dataclass
class ClientOutcome:
    """Contact actions taken for one client."""

    created: int = 0
    updated: int = 0
    skipped: int = 0

    def record(self, action: ContactAction) -> None:
        if action == ContactAction.CREATED:
            self.created += 1
        elif action == ContactAction.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1


@dataclass
class _RunTally:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[SyncErrorRecord] = field(default_factory=list)

    def add(self, outcome: ClientOutcome) -> None:
        self.processed += 1
        self.created += outcome.created
        self.updated += outcome.updated
        self.skipped += outcome.skipped

    def fail(self, record: SyncErrorRecord) -> None:
        self.processed += 1
        self.errors.append(record)


class _ClientFailed(Exception):
    """Carries a per-client failure out of a batch when the run must stop."""

    def __init__(self, record: SyncErrorRecord):
        super().__init__(record.error)
        self.record = record


ProgressCallback = Callable[[SyncProgress], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContactSyncEngine:
    """
    Pushes client records into OpenPhone as contacts.

    One engine owns one DuplicateDetector, so the detector's cache survives
    across runs; clear_caches() drops it.

    Usage:
        async with OpenPhoneAPI(settings) as api:
            engine = ContactSyncEngine(api, ClientDatabase(path))
            engine.on_progress(print)
            result = await engine.sync_contacts(SyncOptions(dry_run=True))
            print(result.summary())
    """

    def __init__(
        self,
        api: OpenPhoneAPI,
        store: ClientStore,
        detector: Optional[DuplicateDetector] = None,
        custom_field_keys: Optional[CustomFieldKeys] = None,
        event_sink: Optional[EventSink] = None,
    ):
        """
        Initialize the sync engine.

        Args:
            api: OpenPhone API client shared with every collaborator
            store: Client store to read clients from
            detector: Duplicate detector (default: one built for api using
                      the configured similarity threshold)
            custom_field_keys: Custom field keys (default: from settings)
            event_sink: Receiver of SyncEvents (default: logging)
        """
        self.api = api
        self.store = store
        self.detector = detector or DuplicateDetector(
            api,
            DuplicateDetectionConfig(
                similarity_threshold=api.settings.similarity_threshold
            ),
        )
        self.custom_field_keys = custom_field_keys or api.settings.custom_fields
        self.event_sink = event_sink or LoggingEventSink()

        self._state = SyncState.IDLE
        self._last_result: Optional[SyncResult] = None
        self._progress_callbacks: list[ProgressCallback] = []

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SyncState.RUNNING

    # =========================================================================
    # Progress and events
    # =========================================================================

    def on_progress(self, callback: ProgressCallback) -> None:
        """Register a callback receiving SyncProgress snapshots."""
        self._progress_callbacks.append(callback)

    def remove_progress_callback(self, callback: ProgressCallback) -> None:
        if callback in self._progress_callbacks:
            self._progress_callbacks.remove(callback)

    def _notify_progress(self, progress: SyncProgress) -> None:
        for callback in list(self._progress_callbacks):
            try:
                callback(progress)
            except Exception as e:
                logger.error(f"Error in progress callback: {e}")

    def _emit(self, event: SyncEvent) -> None:
        try:
            self.event_sink.emit(event)
        except Exception as e:
            logger.error(f"Event sink failed for {event.type.value}: {e}")

    # =========================================================================
    # Sync run
    # =========================================================================

    async def sync_contacts(self, options: Optional[SyncOptions] = None) -> SyncResult:
        """
        Run one sync.

        Args:
            options: Run options (default: full sync)

        Returns:
            SyncResult describing the run. Connectivity failures and aborted
            runs are reported as an unsuccessful result, not raised.

        Raises:
            SyncInProgressError: If a sync is already running on this engine
            asyncio.CancelledError: If the run is cancelled; the engine is left
                in FAILURE so it can run again
        """
        if self._state == SyncState.RUNNING:
            raise SyncInProgressError("Sync is already in progress")

        options = options or SyncOptions()
        self._state = SyncState.RUNNING
        start_time = _utcnow()

        mode_label = "dry run" if options.dry_run else options.sync_mode.value
        self._emit(
            SyncEvent(
                SyncEventType.RUN_STARTED,
                f"Starting OpenPhone contact sync ({mode_label})",
                dry_run=options.dry_run,
            )
        )

        tally = _RunTally()
        try:
            await self._validate_configuration()

            self._notify_progress(
                SyncProgress(current_step="Fetching clients", processed=0, total=0)
            )
            clients = self._get_clients_to_sync(options)
            logger.info(f"Found {len(clients)} clients to sync")

            aborted = await self._process_clients(clients, options, tally)
        except SyncError as e:
            # Run-level failures are recorded without counting a client
            tally.errors.append(SyncErrorRecord(RUN_ERROR_ID, RUN_ERROR_NAME, str(e)))
            aborted = True
        except Exception as e:
            logger.error(f"Sync execution failed: {e}")
            tally.errors.append(SyncErrorRecord(RUN_ERROR_ID, RUN_ERROR_NAME, str(e)))
            aborted = True
        except BaseException:
            # Cancellation and interrupts propagate, but never leave the
            # engine stuck in RUNNING
            logger.warning("Sync run interrupted before completion")
            self._state = SyncState.FAILURE
            raise

        result = SyncResult(
            success=not aborted and not tally.errors,
            sync_mode=options.sync_mode,
            dry_run=options.dry_run,
            total_clients_processed=tally.processed,
            total_contacts_created=tally.created,
            total_contacts_updated=tally.updated,
            total_contacts_skipped=tally.skipped,
            total_errors=len(tally.errors),
            errors=tuple(tally.errors),
            start_time=start_time,
            end_time=_utcnow(),
        )

        self._last_result = result
        self._state = SyncState.SUCCESS if result.success else SyncState.FAILURE

        if result.success:
            self._emit(
                SyncEvent(
                    SyncEventType.RUN_COMPLETED,
                    f"Sync completed: {result.total_contacts_created} created, "
                    f"{result.total_contacts_updated} updated, "
                    f"{result.total_contacts_skipped} skipped",
                    dry_run=options.dry_run,
                    details={"duration": result.duration},
                )
            )
        else:
            self._emit(
                SyncEvent(
                    SyncEventType.RUN_FAILED,
                    f"Sync finished with {result.total_errors} error(s)",
                    dry_run=options.dry_run,
                    details={"errors": [e.error for e in result.errors]},
                )
            )

        return result

    async def _validate_configuration(self) -> None:
        """
        Check both ends are reachable before touching any client.

        Raises:
            SyncConfigurationError: If OpenPhone or the store is unavailable
        """
        if not await self.api.validate_connection():
            raise SyncConfigurationError(
                "Cannot connect to OpenPhone API. Please check your API key "
                "and configuration."
            )

        try:
            store_ok = self.store.test_connection()
        except Exception as e:
            raise SyncConfigurationError(f"Database connection failed: {e}") from e
        if not store_ok:
            raise SyncConfigurationError("Database connection failed")

        logger.debug("Configuration validation passed")

    def _get_clients_to_sync(self, options: SyncOptions) -> list[ClientRecord]:
        if options.sync_mode == SyncMode.INCREMENTAL:
            if options.updated_since is not None:
                return self.store.get_updated_clients(
                    options.updated_since, client_type=options.client_type
                )
            logger.warning(
                "Incremental sync requested without a cut-off date, "
                "falling back to a full scan"
            )
        return self.store.get_all_clients(client_type=options.client_type)

    async def _process_clients(
        self, clients: list[ClientRecord], options: SyncOptions, tally: _RunTally
    ) -> bool:
        """
        Process clients batch by batch.

        Returns:
            True if the run was aborted by a client failure
        """
        batch_size = (
            options.batch_size or self.api.settings.batch_size or DEFAULT_BATCH_SIZE
        )
        total = len(clients)
        started = time.monotonic()

        for offset in range(0, total, batch_size):
            batch = clients[offset : offset + batch_size]
            batch_number = offset // batch_size + 1

            self._notify_progress(
                self._progress(
                    f"Processing batch {batch_number}", tally, total, started, batch
                )
            )

            if options.continue_on_error:
                await self._run_batch(batch, options, tally)
            else:
                try:
                    await self._run_batch_or_abort(batch, options, tally)
                except _ClientFailed as e:
                    logger.error(f"Stopping sync after failure: {e.record.error}")
                    return True

            self._notify_progress(
                self._progress(f"Completed batch {batch_number}", tally, total, started)
            )

        return False

    def _progress(
        self,
        step: str,
        tally: _RunTally,
        total: int,
        started: float,
        batch: Optional[list[ClientRecord]] = None,
    ) -> SyncProgress:
        estimated = None
        if tally.processed:
            per_client = (time.monotonic() - started) / tally.processed
            estimated = per_client * (total - tally.processed)

        return SyncProgress(
            current_step=step,
            processed=tally.processed,
            total=total,
            created=tally.created,
            updated=tally.updated,
            skipped=tally.skipped,
            errors=len(tally.errors),
            current_client=batch[0].client_name if batch else None,
            estimated_remaining=estimated,
        )

    async def _run_batch(
        self, batch: list[ClientRecord], options: SyncOptions, tally: _RunTally
    ) -> None:
        results = await asyncio.gather(
            *(self._process_client(client, options) for client in batch),
            return_exceptions=True,
        )

        # Results come back in batch order, whatever order tasks finished in
        for client, result in zip(batch, results):
            if isinstance(result, ClientOutcome):
                tally.add(result)
            elif isinstance(result, Exception):
                tally.fail(self._record_failure(client, result))
            else:
                raise result

    async def _run_batch_or_abort(
        self, batch: list[ClientRecord], options: SyncOptions, tally: _RunTally
    ) -> None:
        tasks = [
            asyncio.ensure_future(self._process_client(client, options))
            for client in batch
        ]
        try:
            done, pending = await asyncio.wait(
                tasks, return_when=asyncio.FIRST_EXCEPTION
            )
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        first_failure: Optional[SyncErrorRecord] = None
        for client, task in zip(batch, tasks):
            if task not in done:
                continue
            error = task.exception()
            if error is None:
                tally.add(task.result())
                continue
            if not isinstance(error, Exception):
                raise error
            record = self._record_failure(client, error)
            tally.fail(record)
            if first_failure is None:
                first_failure = record

        if first_failure is not None:
            raise _ClientFailed(first_failure)

    def _record_failure(self, client: ClientRecord, error: Exception) -> SyncErrorRecord:
        record = SyncErrorRecord(
            client_id=client.id,
            client_name=client.client_name,
            error=str(error) or type(error).__name__,
            contact_type=getattr(error, "contact_type", None),
        )
        self._emit(
            SyncEvent(
                SyncEventType.CLIENT_FAILED,
                f"Failed to process client {client.client_name}: {record.error}",
                client_id=client.id,
                client_name=client.client_name,
                details={"contact_type": record.contact_type},
            )
        )
        return record

    async def _process_client(
        self, client: ClientRecord, options: SyncOptions
    ) -> ClientOutcome:
        """
        Sync every contact of one client, main contact first.

        A failure on any contact stops the client; later contacts are not
        attempted.
        """
        outcome = ClientOutcome()

        contacts = map_client_to_contacts(client, self.custom_field_keys)
        if not contacts:
            logger.warning(f"No contacts mapped for client {client.client_name}")
            outcome.skipped += 1
            return outcome

        for mapped in contacts:
            try:
                action = await self._process_contact(mapped, options)
            except Exception as e:
                message = str(e) or type(e).__name__
                raise ClientSyncError(message, mapped.role.value) from e
            outcome.record(action)

        return outcome

    async def _process_contact(
        self, mapped: MappedContact, options: SyncOptions
    ) -> ContactAction:
        problems = validate_mapped_contact(mapped)
        if problems:
            self._emit(
                SyncEvent(
                    SyncEventType.CONTACT_SKIPPED,
                    f"Invalid contact data for {mapped.display_name}: "
                    f"{'; '.join(problems)}",
                    client_id=mapped.client_id,
                    client_name=mapped.client_name,
                    external_id=mapped.external_id,
                    details={"problems": problems},
                )
            )
            return ContactAction.SKIPPED

        check = await self.detector.check_for_duplicates(mapped.payload)

        if check.is_duplicate and check.existing_contact_id:
            if options.dry_run:
                self._emit_contact(
                    SyncEventType.CONTACT_UPDATED,
                    mapped,
                    check.existing_contact_id,
                    dry_run=True,
                    reason=check.match_reason.value,
                )
                return ContactAction.UPDATED

            updated = await self._update_contact(check.existing_contact_id, mapped)
            if updated is not None:
                self.detector.index_contact(updated)
                self._emit_contact(
                    SyncEventType.CONTACT_UPDATED,
                    mapped,
                    updated.id,
                    reason=check.match_reason.value,
                )
                return ContactAction.UPDATED

        if options.dry_run:
            self._emit_contact(SyncEventType.CONTACT_CREATED, mapped, None, dry_run=True)
            return ContactAction.CREATED

        created = await self.api.create_contact(mapped.payload)
        self.detector.index_contact(created)
        self._emit_contact(SyncEventType.CONTACT_CREATED, mapped, created.id)
        return ContactAction.CREATED

    async def _update_contact(
        self, contact_id: str, mapped: MappedContact
    ) -> Optional[RemoteContact]:
        """
        Update a matched contact.

        Returns:
            The updated contact, or None if it was deleted after it was
            matched (the id is evicted and the caller creates instead)
        """
        try:
            return await self.api.update_contact(contact_id, mapped.payload)
        except NotFoundError:
            logger.info(
                f"Matched contact {contact_id} for {mapped.display_name} "
                f"disappeared, creating a new one"
            )
            self.detector.evict(contact_id)
            return None

    def _emit_contact(
        self,
        event_type: SyncEventType,
        mapped: MappedContact,
        contact_id: Optional[str],
        dry_run: bool = False,
        reason: Optional[str] = None,
    ) -> None:
        verb = "create" if event_type == SyncEventType.CONTACT_CREATED else "update"
        target = f"{mapped.display_name} ({mapped.role.value})"
        if dry_run:
            message = f"Would {verb} contact: {target}"
        else:
            message = f"{verb.capitalize()}d contact: {target}"

        details = {"match_reason": reason} if reason else {}
        self._emit(
            SyncEvent(
                event_type,
                message,
                client_id=mapped.client_id,
                client_name=mapped.client_name,
                external_id=mapped.external_id,
                contact_id=contact_id,
                dry_run=dry_run,
                details=details,
            )
        )

    # =========================================================================
    # Status and diagnostics
    # =========================================================================

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            in_progress=self.is_running,
            last_result=self._last_result,
            cache_stats=self.detector.get_cache_stats(),
        )

    def clear_caches(self) -> None:
        """Drop the duplicate detector's cache; the next run reloads it."""
        self.detector.clear_cache()

    async def test_configuration(self) -> ConfigurationReport:
        """
        Test connectivity without running a sync.

        Returns:
            ConfigurationReport with both connection states, the number of
            sample clients readable from the store, and any errors
        """
        errors: list[str] = []
        openphone_ok = False
        database_ok = False
        sample_clients = 0

        try:
            openphone_ok = await self.api.validate_connection()
            if not openphone_ok:
                errors.append("OpenPhone connection failed")
        except Exception as e:
            errors.append(f"OpenPhone connection failed: {e}")

        try:
            database_ok = self.store.test_connection()
            if not database_ok:
                errors.append("Database connection failed")
        except Exception as e:
            errors.append(f"Database test failed: {e}")

        if database_ok:
            try:
                sample_clients = len(self.store.get_all_clients(limit=5))
            except Exception as e:
                errors.append(f"Failed to fetch sample clients: {e}")

        return ConfigurationReport(
            openphone_connection=openphone_ok,
            database_connection=database_ok,
            sample_clients=sample_clients,
            errors=tuple(errors),
        )
