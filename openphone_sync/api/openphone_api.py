"""
OpenPhone REST API client for contact synchronization.

Provides a high-level async interface to the OpenPhone API for:
- Listing, searching, creating, updating and deleting contacts
- Listing calls, conversations and workspace phone numbers
- Bounded concurrency, local quotas and remote rate-limit tracking
- Exponential backoff retry on 429 and 5xx responses

Every request goes through OpenPhoneAPI._request, which is the only code in
the package that performs network I/O against OpenPhone.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from openphone_sync.api.models import (
    Call,
    ContactPage,
    ContactPayload,
    Conversation,
    ListPage,
    PayloadError,
    PhoneNumberLine,
    RemoteContact,
)
from openphone_sync.api.rate_limit import (
    ConcurrencyGate,
    QuotaWindow,
    RateLimitStatus,
    RemoteRateLimit,
)
from openphone_sync.config.settings import OpenPhoneSettings

# Page size used when walking the full contact list
DEFAULT_PAGE_SIZE = 100

# Default number of results for contact search
DEFAULT_SEARCH_LIMIT = 20

DEFAULT_ERROR_DOCS = "https://openphone.com/docs"

logger = logging.getLogger(__name__)


class OpenPhoneAPIError(Exception):
    """
    Raised when an OpenPhone API operation fails.

    Attributes:
        status: HTTP status code (None for transport failures)
        code: OpenPhone error code
        title: Short error title
        docs: Documentation link for the error
        trace: OpenPhone trace id, useful for support requests
        errors: Field-level validation errors
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: str = "UNKNOWN_ERROR",
        title: str = "API Error",
        docs: str = DEFAULT_ERROR_DOCS,
        trace: str = "",
        errors: Optional[list[dict[str, Any]]] = None,
    ):
        super().__init__(f"{title} ({code}): {message}")
        self.message = message
        self.status = status
        self.code = code
        self.title = title
        self.docs = docs
        self.trace = trace
        self.errors = errors or []


class RateLimitError(OpenPhoneAPIError):
    """Raised when rate limit is exceeded and retries are exhausted."""

    pass


class NotFoundError(OpenPhoneAPIError):
    """Raised when the requested resource does not exist (HTTP 404)."""

    pass


class OpenPhoneConnectionError(OpenPhoneAPIError):
    """Raised when OpenPhone cannot be reached at all."""

    pass


def is_retryable_status(status: int) -> bool:
    """429 and server errors are retried; everything else fails immediately."""
    return status == 429 or status >= 500


def format_timestamp(value: datetime) -> str:
    """Format a datetime as the UTC ISO 8601 string OpenPhone expects."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _build_error(response: httpx.Response) -> OpenPhoneAPIError:
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}

    status = response.status_code
    error_class: type[OpenPhoneAPIError] = OpenPhoneAPIError
    if status == 404:
        error_class = NotFoundError
    elif status == 429:
        error_class = RateLimitError

    message = body.get("message") or response.reason_phrase or "Unknown API error"

    return error_class(
        message=str(message),
        status=status,
        code=str(body.get("code") or "UNKNOWN_ERROR"),
        title=str(body.get("title") or "API Error"),
        docs=str(body.get("docs") or DEFAULT_ERROR_DOCS),
        trace=str(body.get("trace") or ""),
        errors=body.get("errors") if isinstance(body.get("errors"), list) else [],
    )


def _data_list(body: Optional[dict[str, Any]]) -> list[Any]:
    if not body:
        return []
    data = body.get("data")
    if data is None:
        return []
    if not isinstance(data, list):
        raise PayloadError(f"Expected 'data' to be a list, got {type(data).__name__}")
    return data


def _data_object(body: Optional[dict[str, Any]]) -> Any:
    if not body or "data" not in body:
        raise PayloadError("Response is missing 'data'")
    return body["data"]


class OpenPhoneAPI:
    """
    Async OpenPhone API wrapper.

    One instance owns the concurrency gate, the local quota window and the
    remote rate-limit state, so every component that shares the instance
    shares the same limits.

    Attributes:
        settings: Resolved OpenPhoneSettings
        gate: Concurrency gate bounding in-flight requests
        quota: Local per-minute/per-hour budget
        remote_limit: Remote x-ratelimit-* state

    Usage:
        async with OpenPhoneAPI(settings) as api:
            page = await api.list_contacts()
            contact = await api.create_contact(payload)
            await api.update_contact(contact.id, payload)
            results = await api.search_contacts("Jane Doe")
    """

    def __init__(
        self,
        settings: OpenPhoneSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        quota: Optional[QuotaWindow] = None,
        remote_limit: Optional[RemoteRateLimit] = None,
    ):
        """
        Initialize the OpenPhone API wrapper.

        Args:
            settings: Resolved settings (API key, limits, retry policy)
            http_client: Pre-built httpx client; one is created (and owned)
                        when omitted
            sleep: Coroutine used for backoff delays
            quota: Local quota window (default built from settings)
            remote_limit: Remote rate-limit tracker (default built fresh)
        """
        self.settings = settings
        self.gate = ConcurrencyGate(settings.max_concurrent_requests)
        self.quota = quota or QuotaWindow(
            per_minute=settings.rate_limit_per_minute,
            per_hour=settings.rate_limit_per_hour,
            sleep=sleep,
        )
        self.remote_limit = remote_limit or RemoteRateLimit(sleep=sleep)
        self._sleep = sleep
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=httpx.Timeout(settings.timeout))
        )

    async def __aenter__(self) -> OpenPhoneAPI:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http_client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Perform one API call with throttling and retry.

        The concurrency slot is held only while the request is being sent;
        it is released before any backoff delay.

        Args:
            method: HTTP method
            path: Path below the versioned API root (e.g. "/contacts")
            params: Query parameters; None values are dropped
            json: JSON request body

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            RateLimitError: If 429 responses persist after all retries
            NotFoundError: On 404
            OpenPhoneConnectionError: If the request could not be sent
            OpenPhoneAPIError: For any other non-2xx response
        """
        url = f"{self.settings.api_url}{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        operation = f"{method} {path}"
        max_attempts = self.settings.retry_attempts + 1

        for attempt in range(max_attempts):
            async with self.gate:
                await self.quota.acquire()
                await self.remote_limit.wait_if_needed()
                try:
                    response = await self._http_client.request(
                        method, url, params=query, json=json, headers=self._headers()
                    )
                except httpx.TransportError as e:
                    raise OpenPhoneConnectionError(
                        message=f"Network error during {operation}: {e}",
                        code="NETWORK_ERROR",
                        title="Connection Error",
                    ) from e
                self.remote_limit.update_from_headers(response.headers)

            if response.is_success:
                return self._decode(response, operation)

            error = _build_error(response)
            if is_retryable_status(response.status_code) and attempt < max_attempts - 1:
                delay = self.settings.retry_delay * (2**attempt)
                logger.warning(
                    f"{operation} returned {response.status_code}, retrying in "
                    f"{delay:.1f}s (attempt {attempt + 1}/{max_attempts})"
                )
                await self._sleep(delay)
                continue

            if isinstance(error, RateLimitError):
                logger.error(
                    f"Rate limit exceeded for {operation} after {max_attempts} attempts"
                )
            raise error

        # Unreachable: the final attempt either returns or raises
        raise OpenPhoneAPIError(f"{operation} failed after all retries")

    @staticmethod
    def _decode(response: httpx.Response, operation: str) -> Optional[dict[str, Any]]:
        if response.status_code == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise PayloadError(f"Invalid JSON payload from {operation}") from e
        if not isinstance(body, dict):
            raise PayloadError(
                f"{operation} payload must be a JSON object, got {type(body).__name__}"
            )
        return body

    # Contacts

    async def list_contacts(
        self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> ContactPage:
        """
        List one page of contacts.

        Contacts that fail to parse are logged and skipped.

        Args:
            page: 1-based page number
            limit: Contacts per page

        Returns:
            ContactPage with the parsed contacts and pagination flags
        """
        body = await self._request(
            "GET", "/contacts", params={"page": page, "limit": limit}
        )

        contacts: list[RemoteContact] = []
        for item in _data_list(body):
            try:
                contacts.append(RemoteContact.from_api_response(item))
            except PayloadError as e:
                logger.warning(f"Failed to parse contact: {e}")

        return ContactPage(
            contacts=contacts,
            has_more=bool((body or {}).get("hasMore", False)),
            total=int((body or {}).get("total") or 0),
        )

    async def iter_contacts(
        self, limit: int = DEFAULT_PAGE_SIZE
    ) -> AsyncIterator[RemoteContact]:
        """Yield every contact in the workspace, one page at a time."""
        page = 1
        while True:
            result = await self.list_contacts(page=page, limit=limit)
            for contact in result.contacts:
                yield contact
            if not result.has_more or not result.contacts:
                break
            page += 1

    async def get_contact(self, contact_id: str) -> RemoteContact:
        """
        Get a single contact by id.

        Raises:
            NotFoundError: If the contact does not exist
            PayloadError: If the response has no contact id
        """
        body = await self._request("GET", f"/contacts/{contact_id}")
        return RemoteContact.from_api_response(_data_object(body))

    async def get_contact_by_external_id(
        self, external_id: str
    ) -> Optional[RemoteContact]:
        """
        Look up a contact by the external id set when it was created.

        Returns:
            The contact, or None when no contact carries that external id
        """
        try:
            body = await self._request(
                "GET", "/contacts", params={"externalId": external_id}
            )
        except NotFoundError:
            return None

        for item in _data_list(body):
            contact = RemoteContact.from_api_response(item)
            # Guard against the filter being ignored and the full list returned
            if contact.external_id == external_id:
                return contact
        return None

    async def create_contact(self, payload: ContactPayload) -> RemoteContact:
        """Create a contact and return it as stored by OpenPhone."""
        body = await self._request("POST", "/contacts", json=payload.to_api_format())
        contact = RemoteContact.from_api_response(_data_object(body))
        logger.debug(f"Created contact: {contact.id}")
        return contact

    async def update_contact(
        self, contact_id: str, payload: ContactPayload
    ) -> RemoteContact:
        """
        Replace a contact's fields.

        Raises:
            NotFoundError: If the contact no longer exists
        """
        body = await self._request(
            "PUT", f"/contacts/{contact_id}", json=payload.to_api_format()
        )
        contact = RemoteContact.from_api_response(_data_object(body))
        logger.debug(f"Updated contact: {contact_id}")
        return contact

    async def delete_contact(self, contact_id: str) -> None:
        await self._request("DELETE", f"/contacts/{contact_id}")
        logger.debug(f"Deleted contact: {contact_id}")

    async def search_contacts(
        self, query: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[RemoteContact]:
        """
        Search contacts by name or phone number.

        Some OpenPhone workspaces do not expose the search endpoint and
        answer 404; in that case the full contact list is filtered locally.

        Args:
            query: Name fragment or phone number
            limit: Maximum number of results

        Returns:
            Matching contacts (possibly empty)
        """
        try:
            body = await self._request(
                "GET", "/contacts", params={"search": query, "limit": limit}
            )
        except NotFoundError:
            logger.debug("Search endpoint unavailable, filtering contacts locally")
            return await self._search_locally(query, limit)

        results: list[RemoteContact] = []
        for item in _data_list(body):
            try:
                results.append(RemoteContact.from_api_response(item))
            except PayloadError as e:
                logger.warning(f"Failed to parse search result: {e}")
        return results[:limit]

    async def _search_locally(self, query: str, limit: int) -> list[RemoteContact]:
        needle = query.strip().lower()
        digits = re.sub(r"\D", "", query)

        matches: list[RemoteContact] = []
        async for contact in self.iter_contacts():
            name = contact.display_name.lower()
            name_hit = bool(needle) and needle in name
            phone_hit = bool(digits) and any(
                digits in re.sub(r"\D", "", phone) for phone in contact.phone_values
            )
            if name_hit or phone_hit:
                matches.append(contact)
                if len(matches) >= limit:
                    break
        return matches

    # Calls, conversations and phone numbers

    async def list_calls(
        self,
        phone_number_id: Optional[str] = None,
        participants: Optional[list[str]] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
        max_results: int = DEFAULT_PAGE_SIZE,
        page_token: Optional[str] = None,
    ) -> ListPage[Call]:
        """
        List one page of calls.

        Args:
            phone_number_id: Restrict to one workspace line
            participants: Restrict to calls with these external numbers
            created_after: Lower bound of the time window
            created_before: Upper bound of the time window
            max_results: Page size
            page_token: Token from the previous page

        Returns:
            ListPage of Call objects with the next page token
        """
        params: dict[str, Any] = {
            "phoneNumberId": phone_number_id,
            "participants": participants or None,
            "createdAfter": format_timestamp(created_after) if created_after else None,
            "createdBefore": (
                format_timestamp(created_before) if created_before else None
            ),
            "maxResults": max_results,
            "pageToken": page_token,
        }
        body = await self._request("GET", "/calls", params=params)

        calls: list[Call] = []
        for item in _data_list(body):
            try:
                calls.append(Call.from_api_response(item))
            except PayloadError as e:
                logger.warning(f"Failed to parse call: {e}")

        return ListPage(
            items=calls,
            next_page_token=(body or {}).get("nextPageToken"),
            total_items=(body or {}).get("totalItems"),
        )

    async def list_conversations(
        self,
        phone_numbers: Optional[list[str]] = None,
        updated_after: Optional[datetime] = None,
        updated_before: Optional[datetime] = None,
        max_results: int = DEFAULT_PAGE_SIZE,
        page_token: Optional[str] = None,
    ) -> ListPage[Conversation]:
        """List one page of conversations updated inside a time window."""
        params: dict[str, Any] = {
            "phoneNumbers": phone_numbers or None,
            "updatedAfter": format_timestamp(updated_after) if updated_after else None,
            "updatedBefore": (
                format_timestamp(updated_before) if updated_before else None
            ),
            "maxResults": max_results,
            "pageToken": page_token,
        }
        body = await self._request("GET", "/conversations", params=params)

        conversations: list[Conversation] = []
        for item in _data_list(body):
            try:
                conversations.append(Conversation.from_api_response(item))
            except PayloadError as e:
                logger.warning(f"Failed to parse conversation: {e}")

        return ListPage(
            items=conversations,
            next_page_token=(body or {}).get("nextPageToken"),
            total_items=(body or {}).get("totalItems"),
        )

    async def list_phone_numbers(self) -> list[PhoneNumberLine]:
        """List the phone numbers (lines) of the workspace."""
        body = await self._request("GET", "/phone-numbers")
        lines: list[PhoneNumberLine] = []
        for item in _data_list(body):
            try:
                lines.append(PhoneNumberLine.from_api_response(item))
            except PayloadError as e:
                logger.warning(f"Failed to parse phone number: {e}")
        return lines

    # Diagnostics

    async def validate_connection(self) -> bool:
        """
        Check that the API key is accepted and OpenPhone is reachable.

        Returns:
            True if a minimal contacts request succeeds
        """
        try:
            await self._request("GET", "/contacts", params={"limit": 1})
            return True
        except (OpenPhoneAPIError, PayloadError) as e:
            logger.error(f"OpenPhone API validation failed: {e}")
            return False

    def get_rate_limit_status(self) -> RateLimitStatus:
        """Return the latest remote rate-limit state."""
        return self.remote_limit.status()
