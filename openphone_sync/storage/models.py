"""
Records exchanged with the practice's client store.

ClientRecord is the row the sync engine reads; CommunicationRecord is the
row the communications importer writes. Both map one-to-one onto the
SQLite tables in openphone_sync.storage.db.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Protocol


class CommunicationType(str, Enum):
    """Kinds of communication the log distinguishes."""

    PHONE_CALL = "phone_call"
    SMS = "sms"
    EMAIL = "email"


class UpsertAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"  # stored record is newer than the incoming event


def _to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _to_date_string(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


@dataclass
class ClientRecord:
    """
    A client of the practice.

    Attributes:
        id: Store-assigned identifier, embedded in the contact external id
        client_name: Unique display name
        client_type: "criminal", "civil" or another practice-defined type
        phone: Primary phone as typed at intake
        email: Primary email
        contact_1 / contact_2: Alternative contact person name
        contact_1_phone / contact_2_phone: Alternative contact phone
        relationship_1 / relationship_2: Relationship of the alternative
            contact to the client (e.g. "Mother")
        date_of_birth, county, date_intake, case_type: Case metadata
        arrested, currently_incarcerated: Criminal case flags
        openphone_contact_id: OpenPhone contact id once discovered
        created_at, updated_at: Row timestamps
    """

    id: str
    client_name: str
    client_type: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    contact_1: Optional[str] = None
    contact_1_phone: Optional[str] = None
    relationship_1: Optional[str] = None
    contact_2: Optional[str] = None
    contact_2_phone: Optional[str] = None
    relationship_2: Optional[str] = None
    date_of_birth: Optional[str] = None
    county: Optional[str] = None
    date_intake: Optional[str] = None
    case_type: Optional[str] = None
    arrested: Optional[bool] = None
    currently_incarcerated: Optional[bool] = None
    openphone_contact_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def alternative(self, number: int) -> tuple[Optional[str], Optional[str], Optional[str]]:
        """
        Return (name, phone, relationship) of alternative contact 1 or 2.

        Raises:
            ValueError: If number is not 1 or 2
        """
        if number == 1:
            return self.contact_1, self.contact_1_phone, self.relationship_1
        if number == 2:
            return self.contact_2, self.contact_2_phone, self.relationship_2
        raise ValueError(f"Alternative contact number must be 1 or 2, got {number}")

    @property
    def phone_numbers(self) -> list[str]:
        """Every non-empty phone on the record, primary first."""
        return [p for p in (self.phone, self.contact_1_phone, self.contact_2_phone) if p]

    @classmethod
    def from_row(cls, row: Any) -> ClientRecord:
        """Build a ClientRecord from a sqlite3.Row or a plain mapping."""
        data = dict(row)
        return cls(
            id=str(data["id"]),
            client_name=data["client_name"],
            client_type=data.get("client_type"),
            phone=data.get("phone"),
            email=data.get("email"),
            contact_1=data.get("contact_1"),
            contact_1_phone=data.get("contact_1_phone"),
            relationship_1=data.get("relationship_1"),
            contact_2=data.get("contact_2"),
            contact_2_phone=data.get("contact_2_phone"),
            relationship_2=data.get("relationship_2"),
            date_of_birth=_to_date_string(data.get("date_of_birth")),
            county=data.get("county"),
            date_intake=_to_date_string(data.get("date_intake")),
            case_type=data.get("case_type"),
            arrested=_to_bool(data.get("arrested")),
            currently_incarcerated=_to_bool(data.get("currently_incarcerated")),
            openphone_contact_id=data.get("openphone_contact_id"),
            created_at=_to_datetime(data.get("created_at")),
            updated_at=_to_datetime(data.get("updated_at")),
        )


@dataclass
class CommunicationRecord:
    """
    One entry in the communication log, sourced from an OpenPhone event.

    Exactly one of openphone_call_id and openphone_conversation_id is set;
    it is the upsert key.
    """

    client_id: str
    client_name: str
    communication_date: str  # ISO date (YYYY-MM-DD)
    communication_type: CommunicationType
    notes: str
    subject: Optional[str] = None
    source: str = "Quo"
    openphone_call_id: Optional[str] = None
    openphone_conversation_id: Optional[str] = None
    openphone_event_timestamp: Optional[datetime] = None

    def __post_init__(self) -> None:
        if bool(self.openphone_call_id) == bool(self.openphone_conversation_id):
            raise ValueError(
                "Exactly one of openphone_call_id and openphone_conversation_id "
                "must be set"
            )


@dataclass
class CommunicationUpsertResult:
    """Outcome of upserting one CommunicationRecord."""

    action: UpsertAction
    communication_id: int


class ClientStore(Protocol):
    """
    What the sync engine and communications importer need from the
    practice's client store. ClientDatabase is the SQLite implementation;
    any object with these methods can be used instead.
    """

    def test_connection(self) -> bool: ...

    def get_client(self, client_id: str) -> Optional[ClientRecord]: ...

    def get_all_clients(
        self, client_type: Optional[str] = None, limit: Optional[int] = None
    ) -> list[ClientRecord]: ...

    def get_updated_clients(
        self, since: datetime, client_type: Optional[str] = None
    ) -> list[ClientRecord]: ...

    def find_client_by_name(self, name: str) -> Optional[ClientRecord]: ...

    def find_client_by_phone_numbers(
        self, phones: list[str]
    ) -> Optional[ClientRecord]: ...

    def find_client_by_openphone_contact_id(
        self, contact_id: Optional[str]
    ) -> Optional[ClientRecord]: ...

    def attach_openphone_contact_id(self, client_id: str, contact_id: str) -> None: ...

    def create_client_from_openphone_contact(
        self,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        openphone_contact_id: Optional[str] = None,
    ) -> ClientRecord: ...

    def upsert_communication(
        self, record: CommunicationRecord
    ) -> CommunicationUpsertResult: ...
