"""
openphone_sync.sync - Contact sync and communications import

Contains the client-to-contact mapping, duplicate detection, the sync
engine and the communications importer.
"""

from openphone_sync.sync.communications import (
    CommunicationsImporter,
    CommunicationSyncOptions,
    CommunicationSyncResult,
)
from openphone_sync.sync.duplicates import (
    DuplicateCheckResult,
    DuplicateDetectionConfig,
    DuplicateDetector,
    MatchReason,
    PhoneMatchType,
)
from openphone_sync.sync.engine import (
    ContactSyncEngine,
    SyncError,
    SyncInProgressError,
    SyncMode,
    SyncOptions,
    SyncProgress,
    SyncResult,
)
from openphone_sync.sync.events import EventSink, LoggingEventSink, SyncEvent
from openphone_sync.sync.mapping import MappedContact, map_client_to_contacts

__all__ = [
    "CommunicationsImporter",
    "CommunicationSyncOptions",
    "CommunicationSyncResult",
    "ContactSyncEngine",
    "DuplicateCheckResult",
    "DuplicateDetectionConfig",
    "DuplicateDetector",
    "EventSink",
    "LoggingEventSink",
    "MappedContact",
    "MatchReason",
    "PhoneMatchType",
    "SyncError",
    "SyncEvent",
    "SyncInProgressError",
    "SyncMode",
    "SyncOptions",
    "SyncProgress",
    "SyncResult",
    "map_client_to_contacts",
]
