"""
Typed payloads for the OpenPhone REST API.

Every response body is converted into one of these dataclasses at the
deserialization boundary, so the rest of the package never handles raw
dictionaries. Request bodies are built from the same classes with
to_api_format().

Example contact payload::

    {
        'id': 'CT123',
        'externalId': 'client_42',
        'source': 'legal-practitioner-app',
        'defaultFields': {
            'firstName': 'Jane Doe',
            'company': 'Legal Client',
            'role': 'Criminal Client',
            'phoneNumbers': [{'name': 'Main Phone', 'value': '+17065551234'}],
            'emails': [{'name': 'Email', 'value': 'jane@example.com'}],
        },
        'customFields': [{'key': 'cf_1', 'name': 'County', 'value': 'Clarke'}],
        'createdAt': '2025-01-12T10:00:00.000Z',
        'updatedAt': '2025-01-12T10:00:00.000Z',
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class PayloadError(Exception):
    """Raised when a response body does not have the expected shape."""

    pass


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp as returned by OpenPhone.

    Returns None for missing or unparseable values.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _require_mapping(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise PayloadError(f"{what} must be an object, got {type(data).__name__}")
    return data


@dataclass
class PhoneNumberField:
    """A labelled phone number on a contact."""

    value: str
    name: str = ""
    id: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> PhoneNumberField:
        return cls(
            value=str(data.get("value") or ""),
            name=data.get("name") or "",
            id=data.get("id"),
        )

    def to_api_format(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "value": self.value}
        if self.id:
            result["id"] = self.id
        return result


@dataclass
class EmailField:
    """A labelled email address on a contact."""

    value: str
    name: str = ""
    id: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> EmailField:
        return cls(
            value=str(data.get("value") or ""),
            name=data.get("name") or "",
            id=data.get("id"),
        )

    def to_api_format(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "value": self.value}
        if self.id:
            result["id"] = self.id
        return result


@dataclass
class CustomField:
    """
    A workspace-defined custom field value.

    Attributes:
        name: Display name of the field (e.g. "County")
        key: Workspace key identifying the field
        value: Field value; a list for multi-select fields
        type: One of "text", "date", "number", "multi-select"
    """

    name: str
    key: str
    value: Any = None
    type: str = "text"

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> CustomField:
        return cls(
            name=data.get("name") or "",
            key=data.get("key") or "",
            value=data.get("value"),
            type=data.get("type") or "text",
        )

    def to_api_format(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "key": self.key,
            "type": self.type,
            "value": self.value,
        }


@dataclass
class ContactFields:
    """The defaultFields block of a contact."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    emails: list[EmailField] = field(default_factory=list)
    phone_numbers: list[PhoneNumberField] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ContactFields:
        emails = [
            EmailField.from_api_response(e)
            for e in data.get("emails") or []
            if isinstance(e, dict) and e.get("value")
        ]
        phones = [
            PhoneNumberField.from_api_response(p)
            for p in data.get("phoneNumbers") or []
            if isinstance(p, dict) and p.get("value")
        ]
        return cls(
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            company=data.get("company"),
            role=data.get("role"),
            emails=emails,
            phone_numbers=phones,
        )

    def to_api_format(self) -> dict[str, Any]:
        """Only non-empty fields are included."""
        result: dict[str, Any] = {}
        if self.first_name:
            result["firstName"] = self.first_name
        if self.last_name:
            result["lastName"] = self.last_name
        if self.company:
            result["company"] = self.company
        if self.role:
            result["role"] = self.role
        if self.emails:
            result["emails"] = [e.to_api_format() for e in self.emails]
        if self.phone_numbers:
            result["phoneNumbers"] = [p.to_api_format() for p in self.phone_numbers]
        return result

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts)


@dataclass
class ContactPayload:
    """Request body for creating or updating a contact."""

    default_fields: ContactFields
    custom_fields: list[CustomField] = field(default_factory=list)
    external_id: Optional[str] = None
    source: Optional[str] = None

    def to_api_format(self) -> dict[str, Any]:
        body: dict[str, Any] = {"defaultFields": self.default_fields.to_api_format()}
        if self.custom_fields:
            body["customFields"] = [cf.to_api_format() for cf in self.custom_fields]
        if self.external_id:
            body["externalId"] = self.external_id
        if self.source:
            body["source"] = self.source
        return body


@dataclass
class RemoteContact:
    """
    A contact as stored in OpenPhone.

    Attributes:
        id: OpenPhone contact id (always present)
        default_fields: Names, company, role, phones and emails
        custom_fields: Workspace custom field values
        external_id: Key set by the creating integration, if any
        source: Integration tag set on creation
        created_at: Creation timestamp
        updated_at: Last update timestamp

    Usage:
        contact = RemoteContact.from_api_response(response["data"])
        for phone in contact.phone_values:
            ...
    """

    id: str
    default_fields: ContactFields = field(default_factory=ContactFields)
    custom_fields: list[CustomField] = field(default_factory=list)
    external_id: Optional[str] = None
    source: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api_response(cls, data: Any) -> RemoteContact:
        """
        Create a RemoteContact from an API response object.

        Raises:
            PayloadError: If the payload is not an object or has no id
        """
        data = _require_mapping(data, "Contact payload")
        contact_id = data.get("id")
        if not contact_id:
            raise PayloadError("Contact payload is missing 'id'")

        custom_fields = [
            CustomField.from_api_response(cf)
            for cf in data.get("customFields") or []
            if isinstance(cf, dict)
        ]

        return cls(
            id=str(contact_id),
            default_fields=ContactFields.from_api_response(
                data.get("defaultFields") or {}
            ),
            custom_fields=custom_fields,
            external_id=data.get("externalId"),
            source=data.get("source"),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )

    @property
    def display_name(self) -> str:
        return self.default_fields.display_name

    @property
    def phone_values(self) -> list[str]:
        return [p.value for p in self.default_fields.phone_numbers]


@dataclass
class ContactPage:
    """One page of GET /contacts."""

    contacts: list[RemoteContact]
    has_more: bool = False
    total: int = 0


@dataclass
class ListPage(Generic[T]):
    """One page of a token-paginated listing (calls, conversations)."""

    items: list[T]
    next_page_token: Optional[str] = None
    total_items: Optional[int] = None


@dataclass
class CallParticipant:
    """
    A party to a call or conversation.

    OpenPhone sends participants either as objects or as bare phone
    number strings; both are accepted.
    """

    contact_id: Optional[str] = None
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    type: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: Any) -> CallParticipant:
        if isinstance(data, str):
            return cls(phone_number=data)
        data = _require_mapping(data, "Participant")
        return cls(
            contact_id=data.get("contactId"),
            display_name=data.get("displayName") or data.get("name"),
            phone_number=data.get("phoneNumber"),
            type=data.get("type"),
        )


@dataclass
class EventContact:
    """The contact OpenPhone associated with a call."""

    contact_id: Optional[str] = None
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> EventContact:
        return cls(
            contact_id=data.get("id"),
            display_name=data.get("displayName"),
            phone_number=data.get("phoneNumber"),
            email=data.get("email"),
        )


def _parse_participants(data: dict[str, Any]) -> list[CallParticipant]:
    return [CallParticipant.from_api_response(p) for p in data.get("participants") or []]


@dataclass
class Call:
    """A call record from GET /calls."""

    id: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    summary: Optional[str] = None
    direction: Optional[str] = None
    participants: list[CallParticipant] = field(default_factory=list)
    contact: Optional[EventContact] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: Any) -> Call:
        """
        Raises:
            PayloadError: If the payload is not an object or has no id
        """
        data = _require_mapping(data, "Call payload")
        if not data.get("id"):
            raise PayloadError("Call payload is missing 'id'")

        contact_data = data.get("contact")
        metadata = data.get("metadata")

        return cls(
            id=str(data["id"]),
            started_at=parse_timestamp(data.get("startedAt") or data.get("createdAt")),
            ended_at=parse_timestamp(data.get("endedAt") or data.get("completedAt")),
            summary=data.get("summary"),
            direction=data.get("direction"),
            participants=_parse_participants(data),
            contact=(
                EventContact.from_api_response(contact_data)
                if isinstance(contact_data, dict)
                else None
            ),
            metadata=metadata if isinstance(metadata, dict) else {},
        )


@dataclass
class LastMessage:
    """The most recent message of a conversation."""

    id: Optional[str] = None
    content: Optional[str] = None
    created_at: Optional[datetime] = None
    direction: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> LastMessage:
        return cls(
            id=data.get("id"),
            content=data.get("content") or data.get("text") or data.get("body"),
            created_at=parse_timestamp(data.get("createdAt")),
            direction=data.get("direction"),
        )


@dataclass
class Conversation:
    """A conversation record from GET /conversations."""

    id: str
    type: Optional[str] = None
    title: Optional[str] = None
    updated_at: Optional[datetime] = None
    last_message: Optional[LastMessage] = None
    participants: list[CallParticipant] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: Any) -> Conversation:
        """
        Raises:
            PayloadError: If the payload is not an object or has no id
        """
        data = _require_mapping(data, "Conversation payload")
        if not data.get("id"):
            raise PayloadError("Conversation payload is missing 'id'")

        last_message = data.get("lastMessage")

        return cls(
            id=str(data["id"]),
            type=data.get("type"),
            title=data.get("title") or data.get("name"),
            updated_at=parse_timestamp(
                data.get("updatedAt") or data.get("lastActivityAt")
            ),
            last_message=(
                LastMessage.from_api_response(last_message)
                if isinstance(last_message, dict)
                else None
            ),
            participants=_parse_participants(data),
        )


@dataclass
class PhoneNumberLine:
    """A phone number (line) owned by the workspace."""

    id: str
    number: str = ""
    name: str = ""

    @classmethod
    def from_api_response(cls, data: Any) -> PhoneNumberLine:
        data = _require_mapping(data, "Phone number payload")
        if not data.get("id"):
            raise PayloadError("Phone number payload is missing 'id'")
        return cls(
            id=str(data["id"]),
            number=data.get("number") or data.get("formattedNumber") or "",
            name=data.get("name") or "",
        )
