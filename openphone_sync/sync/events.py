"""
Structured events emitted by the sync engine.

The engine never writes alerts itself; it hands SyncEvents to an EventSink.
LoggingEventSink, the default, forwards them to the logging hierarchy under
"openphone_sync.events". Other sinks (a webhook, a metrics client, a test
recorder) only need an emit() method.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol


class SyncEventType(str, Enum):
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    CLIENT_FAILED = "client_failed"
    CONTACT_CREATED = "contact_created"
    CONTACT_UPDATED = "contact_updated"
    CONTACT_SKIPPED = "contact_skipped"


@dataclass(frozen=True)
class SyncEvent:
    """
    One thing that happened during a sync run.

    Attributes:
        type: What happened
        message: Human-readable description
        client_id: Client the event concerns, if any
        client_name: Name of that client
        external_id: External id of the contact, for contact events
        contact_id: OpenPhone contact id, when known
        dry_run: True when the event describes a write that was not made
        details: Extra structured data (counts, match reason, error text)
        timestamp: When the event was emitted (UTC)
    """

    type: SyncEventType
    message: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    external_id: Optional[str] = None
    contact_id: Optional[str] = None
    dry_run: bool = False
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventSink(Protocol):
    def emit(self, event: SyncEvent) -> None: ...


_EVENT_LEVELS = {
    SyncEventType.RUN_STARTED: logging.INFO,
    SyncEventType.RUN_COMPLETED: logging.INFO,
    SyncEventType.RUN_FAILED: logging.ERROR,
    SyncEventType.CLIENT_FAILED: logging.ERROR,
    SyncEventType.CONTACT_CREATED: logging.INFO,
    SyncEventType.CONTACT_UPDATED: logging.INFO,
    SyncEventType.CONTACT_SKIPPED: logging.WARNING,
}


class LoggingEventSink:
    """Writes events to a logger, at a level chosen by event type."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("openphone_sync.events")

    def emit(self, event: SyncEvent) -> None:
        level = _EVENT_LEVELS.get(event.type, logging.INFO)
        prefix = "[DRY RUN] " if event.dry_run else ""
        self.logger.log(level, f"{prefix}{event.message}")
