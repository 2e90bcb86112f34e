"""
openphone_sync.api - OpenPhone API access

Contains the rate-limited API client, request throttling and the typed
request/response payloads.
"""

from openphone_sync.api.models import ContactPayload, PayloadError, RemoteContact
from openphone_sync.api.openphone_api import (
    NotFoundError,
    OpenPhoneAPI,
    OpenPhoneAPIError,
    OpenPhoneConnectionError,
    RateLimitError,
)

__all__ = [
    "ContactPayload",
    "NotFoundError",
    "OpenPhoneAPI",
    "OpenPhoneAPIError",
    "OpenPhoneConnectionError",
    "PayloadError",
    "RateLimitError",
    "RemoteContact",
]
