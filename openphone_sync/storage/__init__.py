"""
openphone_sync.storage - Client store

Contains the client and communication records, the ClientStore protocol
and its SQLite implementation.
"""

from openphone_sync.storage.db import ClientDatabase
from openphone_sync.storage.models import (
    ClientRecord,
    ClientStore,
    CommunicationRecord,
    CommunicationType,
    CommunicationUpsertResult,
    UpsertAction,
)

__all__ = [
    "ClientDatabase",
    "ClientRecord",
    "ClientStore",
    "CommunicationRecord",
    "CommunicationType",
    "CommunicationUpsertResult",
    "UpsertAction",
]
