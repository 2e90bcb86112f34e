"""
Shared fixtures: an in-process fake of the OpenPhone REST API served through
httpx.MockTransport, an OpenPhoneAPI wired to it, and an in-memory client
database.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import pytest

from openphone_sync.api.openphone_api import OpenPhoneAPI
from openphone_sync.config.settings import OpenPhoneSettings
from openphone_sync.storage.db import ClientDatabase

CONTACT_PATH = re.compile(r"^/v1/contacts/([^/]+)$")


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


class FakeOpenPhone:
    """
    Minimal stateful stand-in for the OpenPhone API.

    Contacts are kept in a dict keyed by id. Responses queued in
    `queued_responses` are returned (in order) before normal handling, which
    lets tests inject 429s, 500s and validation errors.
    """

    def __init__(self) -> None:
        self.contacts: dict[str, dict[str, Any]] = {}
        self.call_pages: list[list[dict[str, Any]]] = [[]]
        self.conversation_pages: list[list[dict[str, Any]]] = [[]]
        self.phone_numbers: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.queued_responses: list[httpx.Response] = []
        self.search_available = True
        self.external_id_filter = True
        self._next_id = 1

    # Test helpers

    def add_contact(
        self,
        first_name: str,
        phones: tuple[str, ...] = (),
        external_id: Optional[str] = None,
        contact_id: Optional[str] = None,
    ) -> dict[str, Any]:
        contact_id = contact_id or self._new_id()
        contact = {
            "id": contact_id,
            "externalId": external_id,
            "source": "test",
            "defaultFields": {
                "firstName": first_name,
                "phoneNumbers": [{"name": "Phone", "value": p} for p in phones],
            },
            "customFields": [],
            "createdAt": "2025-01-01T00:00:00.000Z",
            "updatedAt": "2025-01-01T00:00:00.000Z",
        }
        self.contacts[contact_id] = contact
        return contact

    def queue(self, status: int, body: Optional[dict[str, Any]] = None, **kwargs: Any) -> None:
        self.queued_responses.append(httpx.Response(status, json=body or {}, **kwargs))

    def count(self, method: str, path: str) -> int:
        return sum(
            1 for r in self.requests if r.method == method and r.url.path == path
        )

    def contact_requests(self, method: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path.startswith("/v1/contacts")
        ]

    # Transport

    def _new_id(self) -> str:
        contact_id = f"CT{self._next_id:04d}"
        self._next_id += 1
        return contact_id

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.queued_responses:
            return self.queued_responses.pop(0)

        path = request.url.path
        params = request.url.params

        if path == "/v1/contacts" and request.method == "GET":
            return self._list_contacts(params)
        if path == "/v1/contacts" and request.method == "POST":
            body = json.loads(request.content)
            contact_id = self._new_id()
            contact = {**body, "id": contact_id, "createdAt": "2025-01-02T00:00:00.000Z"}
            self.contacts[contact_id] = contact
            return httpx.Response(201, json={"data": contact})

        match = CONTACT_PATH.match(path)
        if match:
            contact_id = match.group(1)
            if contact_id not in self.contacts:
                return httpx.Response(
                    404, json={"message": "Contact not found", "code": "0200404"}
                )
            if request.method == "GET":
                return httpx.Response(200, json={"data": self.contacts[contact_id]})
            if request.method == "PUT":
                body = json.loads(request.content)
                contact = {**self.contacts[contact_id], **body, "id": contact_id}
                self.contacts[contact_id] = contact
                return httpx.Response(200, json={"data": contact})
            if request.method == "DELETE":
                del self.contacts[contact_id]
                return httpx.Response(204)

        if path == "/v1/calls":
            return self._token_page(self.call_pages, params)
        if path == "/v1/conversations":
            return self._token_page(self.conversation_pages, params)
        if path == "/v1/phone-numbers":
            return httpx.Response(200, json={"data": self.phone_numbers})

        return httpx.Response(404, json={"message": f"No route for {path}"})

    def _list_contacts(self, params: httpx.QueryParams) -> httpx.Response:
        contacts = list(self.contacts.values())

        if "externalId" in params and self.external_id_filter:
            wanted = params["externalId"]
            contacts = [c for c in contacts if c.get("externalId") == wanted]
            return httpx.Response(200, json={"data": contacts})

        if "search" in params:
            if not self.search_available:
                return httpx.Response(404, json={"message": "Not Found"})
            query = params["search"].lower()
            digits = _digits(query)
            contacts = [
                c
                for c in contacts
                if query in (c["defaultFields"].get("firstName") or "").lower()
                or (
                    digits
                    and any(
                        digits in _digits(p["value"])
                        for p in c["defaultFields"].get("phoneNumbers", [])
                    )
                )
            ]

        page = int(params.get("page", 1))
        limit = int(params.get("limit", 100))
        start = (page - 1) * limit
        chunk = contacts[start : start + limit]
        return httpx.Response(
            200,
            json={
                "data": chunk,
                "hasMore": start + limit < len(contacts),
                "total": len(contacts),
            },
        )

    @staticmethod
    def _token_page(
        pages: list[list[dict[str, Any]]], params: httpx.QueryParams
    ) -> httpx.Response:
        index = int(params.get("pageToken") or 0)
        next_token = str(index + 1) if index + 1 < len(pages) else None
        return httpx.Response(
            200, json={"data": pages[index], "nextPageToken": next_token}
        )


class SleepRecorder:
    """Replacement for asyncio.sleep that returns at once and records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_settings(**overrides: Any) -> OpenPhoneSettings:
    values: dict[str, Any] = {
        "api_key": "sk-test-key",
        "rate_limit_per_minute": 10_000,
        "rate_limit_per_hour": 100_000,
        "retry_delay": 0.5,
    }
    values.update(overrides)
    return OpenPhoneSettings(**values)


def make_api(
    fake: FakeOpenPhone,
    settings: Optional[OpenPhoneSettings] = None,
    sleep: Optional[SleepRecorder] = None,
) -> OpenPhoneAPI:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake.handle))
    return OpenPhoneAPI(
        settings or make_settings(),
        http_client=http_client,
        sleep=sleep or SleepRecorder(),
    )


@pytest.fixture
def fake_openphone():
    """A fresh fake OpenPhone workspace."""
    return FakeOpenPhone()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
async def api(fake_openphone, sleeper):
    """OpenPhoneAPI talking to the fake workspace."""
    client = make_api(fake_openphone, sleep=sleeper)
    yield client
    await client._http_client.aclose()


@pytest.fixture
def database():
    """In-memory client database with the schema created."""
    db = ClientDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging() so caplog keeps seeing package records."""
    yield
    logger = logging.getLogger("openphone_sync")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.NOTSET)
