"""
SQLite implementation of the client store.

Provides persistent storage for client records and the communication log.
Timestamps are stored as UTC ISO 8601 text so they sort correctly as
strings.
"""

import logging
import sqlite3
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from openphone_sync.storage.models import (
    ClientRecord,
    CommunicationRecord,
    CommunicationUpsertResult,
    UpsertAction,
)
from openphone_sync.utils.phone import normalize_phone_for_comparison

logger = logging.getLogger(__name__)

# SQL Schema for clients and the communication log
SCHEMA = """
CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    client_name TEXT NOT NULL,
    client_type TEXT,
    phone TEXT,
    email TEXT,
    contact_1 TEXT,
    contact_1_phone TEXT,
    relationship_1 TEXT,
    contact_2 TEXT,
    contact_2_phone TEXT,
    relationship_2 TEXT,
    date_of_birth TEXT,
    county TEXT,
    date_intake TEXT,
    case_type TEXT,
    arrested INTEGER,
    currently_incarcerated INTEGER,
    openphone_contact_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(client_name)
);

CREATE INDEX IF NOT EXISTS idx_clients_updated_at ON clients(updated_at);
CREATE INDEX IF NOT EXISTS idx_clients_openphone_contact
    ON clients(openphone_contact_id);

CREATE TABLE IF NOT EXISTS communications (
    id INTEGER PRIMARY KEY,
    client_id TEXT NOT NULL REFERENCES clients(id),
    client_name TEXT NOT NULL,
    communication_date TEXT NOT NULL,
    communication_type TEXT NOT NULL,
    subject TEXT,
    notes TEXT NOT NULL,
    source TEXT NOT NULL,
    openphone_call_id TEXT,
    openphone_conversation_id TEXT,
    openphone_event_timestamp TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(openphone_call_id),
    UNIQUE(openphone_conversation_id)
);

CREATE INDEX IF NOT EXISTS idx_communications_client ON communications(client_id);
"""

CLIENT_COLUMNS = [
    "id",
    "client_name",
    "client_type",
    "phone",
    "email",
    "contact_1",
    "contact_1_phone",
    "relationship_1",
    "contact_2",
    "contact_2_phone",
    "relationship_2",
    "date_of_birth",
    "county",
    "date_intake",
    "case_type",
    "arrested",
    "currently_incarcerated",
    "openphone_contact_id",
    "created_at",
    "updated_at",
]


def format_timestamp(value: datetime) -> str:
    """Store timestamps as UTC ISO text; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _bool_to_int(value: Optional[bool]) -> Optional[int]:
    if value is None:
        return None
    return 1 if value else 0


class ClientDatabase:
    """
    SQLite client store used by the sync engine and communications importer.

    Provides methods for:
    - Reading clients (all, updated since, by id, name, phone, contact id)
    - Attaching discovered OpenPhone contact ids
    - Creating clients for unknown callers
    - Upserting communication log entries keyed by OpenPhone event id

    Usage:
        db = ClientDatabase('/path/to/clients.db')
        db.initialize()

        # Or use in-memory for testing:
        db = ClientDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = str(db_path)
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection to ensure
        schema persists across operations. For file databases, creates
        a new connection each time.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(":memory:")
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on error.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM clients")
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not is_shared:
                conn.close()

    def initialize(self) -> None:
        """Create the clients and communications tables if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    def close(self) -> None:
        """Close the shared in-memory connection, if any."""
        if self._shared_connection is not None:
            self._shared_connection.close()
            self._shared_connection = None

    def test_connection(self) -> bool:
        """
        Check that the database is reachable and the schema exists.

        Returns:
            True if the clients table can be queried
        """
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1 FROM clients LIMIT 1").fetchall()
            return True
        except sqlite3.Error as e:
            logger.error(f"Client database check failed: {e}")
            return False

    # =========================================================================
    # Client Operations
    # =========================================================================

    def upsert_client(self, client: ClientRecord) -> ClientRecord:
        """
        Insert or update a client record by id.

        created_at and updated_at default to the current time when unset.

        Returns:
            The client as stored

        Raises:
            sqlite3.DatabaseError: If the row cannot be read back after the write
        """
        now = _utcnow()
        created_at = client.created_at or now
        updated_at = client.updated_at or now

        values = {
            "id": client.id,
            "client_name": client.client_name,
            "client_type": client.client_type,
            "phone": client.phone,
            "email": client.email,
            "contact_1": client.contact_1,
            "contact_1_phone": client.contact_1_phone,
            "relationship_1": client.relationship_1,
            "contact_2": client.contact_2,
            "contact_2_phone": client.contact_2_phone,
            "relationship_2": client.relationship_2,
            "date_of_birth": client.date_of_birth,
            "county": client.county,
            "date_intake": client.date_intake,
            "case_type": client.case_type,
            "arrested": _bool_to_int(client.arrested),
            "currently_incarcerated": _bool_to_int(client.currently_incarcerated),
            "openphone_contact_id": client.openphone_contact_id,
            "created_at": format_timestamp(created_at),
            "updated_at": format_timestamp(updated_at),
        }

        columns = ", ".join(CLIENT_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in CLIENT_COLUMNS)
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in CLIENT_COLUMNS if c not in ("id", "created_at")
        )

        with self.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO clients ({columns}) VALUES ({placeholders})
                ON CONFLICT(id) DO UPDATE SET {updates}
                """,
                values,
            )

        stored = self.get_client(client.id)
        if stored is None:
            raise sqlite3.DatabaseError(f"Client {client.id} was not stored")
        return stored

    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM clients WHERE id = ?", (str(client_id),)
            ).fetchone()
        return ClientRecord.from_row(row) if row else None

    def get_all_clients(
        self, client_type: Optional[str] = None, limit: Optional[int] = None
    ) -> list[ClientRecord]:
        """
        Get clients, most recently updated first.

        Args:
            client_type: Only return clients of this type
            limit: Maximum number of clients to return
        """
        return self._query_clients(client_type=client_type, limit=limit)

    def get_updated_clients(
        self, since: datetime, client_type: Optional[str] = None
    ) -> list[ClientRecord]:
        """Get clients updated at or after `since` (for incremental sync)."""
        return self._query_clients(client_type=client_type, since=since)

    def count_clients(self, client_type: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) FROM clients"
        params: list[Any] = []
        if client_type:
            query += " WHERE client_type = ?"
            params.append(client_type)
        with self.connection() as conn:
            return int(conn.execute(query, params).fetchone()[0])

    def _query_clients(
        self,
        client_type: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[ClientRecord]:
        conditions: list[str] = []
        params: list[Any] = []

        if client_type:
            conditions.append("client_type = ?")
            params.append(client_type)
        if since is not None:
            conditions.append("updated_at >= ?")
            params.append(format_timestamp(since))

        query = "SELECT * FROM clients"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY updated_at DESC, client_name"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [ClientRecord.from_row(row) for row in rows]

    def find_client_by_name(self, name: str) -> Optional[ClientRecord]:
        """Find a client by name, ignoring case and surrounding whitespace."""
        if not name or not name.strip():
            return None
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM clients WHERE lower(trim(client_name)) = lower(?) LIMIT 1",
                (name.strip(),),
            ).fetchone()
        return ClientRecord.from_row(row) if row else None

    def find_client_by_phone_numbers(self, phones: list[str]) -> Optional[ClientRecord]:
        """
        Find the client owning any of the given phone numbers.

        Numbers are compared after normalization, so "+17065551234" matches
        a client stored as "(706) 555-1234". A match on a client's primary
        phone wins over a match on an alternative contact's phone.
        """
        wanted = {normalize_phone_for_comparison(p) for p in phones if p}
        wanted.discard("")
        if not wanted:
            return None

        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM clients
                WHERE phone IS NOT NULL
                   OR contact_1_phone IS NOT NULL
                   OR contact_2_phone IS NOT NULL
                ORDER BY updated_at DESC
                """
            ).fetchall()

        alternative_match: Optional[ClientRecord] = None
        for row in rows:
            client = ClientRecord.from_row(row)
            if normalize_phone_for_comparison(client.phone) in wanted:
                return client
            if alternative_match is None and any(
                normalize_phone_for_comparison(p) in wanted
                for p in (client.contact_1_phone, client.contact_2_phone)
                if p
            ):
                alternative_match = client
        return alternative_match

    def find_client_by_openphone_contact_id(
        self, contact_id: Optional[str]
    ) -> Optional[ClientRecord]:
        if not contact_id:
            return None
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM clients WHERE openphone_contact_id = ? LIMIT 1",
                (contact_id,),
            ).fetchone()
        return ClientRecord.from_row(row) if row else None

    def attach_openphone_contact_id(self, client_id: str, contact_id: str) -> None:
        """
        Record the OpenPhone contact id discovered for a client.

        updated_at is left untouched so the attachment alone does not make
        the client eligible for the next incremental contact sync.
        """
        with self.connection() as conn:
            conn.execute(
                "UPDATE clients SET openphone_contact_id = ? WHERE id = ?",
                (contact_id, str(client_id)),
            )
        logger.debug(f"Attached OpenPhone contact {contact_id} to client {client_id}")

    def create_client_from_openphone_contact(
        self,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        openphone_contact_id: Optional[str] = None,
    ) -> ClientRecord:
        """
        Create a client for a caller that matches no existing client.

        The name falls back to the phone number, then to the contact id.
        If another client already has the resulting name, that client is
        returned instead of creating a second one.
        """
        client_name = (
            (name or "").strip()
            or (f"OpenPhone {phone}" if phone else "")
            or f"OpenPhone contact {openphone_contact_id or uuid.uuid4().hex[:8]}"
        )

        existing = self.find_client_by_name(client_name)
        if existing is not None:
            return existing

        client = ClientRecord(
            id=uuid.uuid4().hex,
            client_name=client_name,
            phone=phone,
            email=email,
            openphone_contact_id=openphone_contact_id,
        )
        logger.info(f"Creating client '{client_name}' from OpenPhone contact")
        return self.upsert_client(client)

    # =========================================================================
    # Communication Operations
    # =========================================================================

    def get_communication(
        self,
        call_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Get a communication by OpenPhone call id or conversation id.

        Returns:
            Row as a dictionary, or None if not found
        """
        if not call_id and not conversation_id:
            return None
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM communications
                WHERE (openphone_call_id IS NOT NULL AND openphone_call_id = ?)
                   OR (openphone_conversation_id IS NOT NULL
                       AND openphone_conversation_id = ?)
                LIMIT 1
                """,
                (call_id, conversation_id),
            ).fetchone()
        return dict(row) if row else None

    def upsert_communication(
        self, record: CommunicationRecord
    ) -> CommunicationUpsertResult:
        """
        Insert or update a communication keyed by its OpenPhone event id.

        An event older than the stored one is not applied.

        Returns:
            CommunicationUpsertResult with the action taken
        """
        now = format_timestamp(_utcnow())
        event_ts = (
            format_timestamp(record.openphone_event_timestamp)
            if record.openphone_event_timestamp
            else None
        )
        values = {
            "client_id": record.client_id,
            "client_name": record.client_name,
            "communication_date": record.communication_date,
            "communication_type": record.communication_type.value,
            "subject": record.subject,
            "notes": record.notes,
            "source": record.source,
            "openphone_call_id": record.openphone_call_id,
            "openphone_conversation_id": record.openphone_conversation_id,
            "openphone_event_timestamp": event_ts,
            "updated_at": now,
        }

        existing = self.get_communication(
            call_id=record.openphone_call_id,
            conversation_id=record.openphone_conversation_id,
        )

        with self.connection() as conn:
            if existing:
                stored_ts = parse_timestamp(existing["openphone_event_timestamp"])
                incoming_ts = parse_timestamp(event_ts)
                if stored_ts and incoming_ts and incoming_ts < stored_ts:
                    logger.debug(
                        f"Skipping stale event for communication {existing['id']}"
                    )
                    return CommunicationUpsertResult(
                        action=UpsertAction.SKIPPED, communication_id=existing["id"]
                    )

                assignments = ", ".join(f"{k} = :{k}" for k in values)
                conn.execute(
                    f"UPDATE communications SET {assignments} WHERE id = :id",
                    {**values, "id": existing["id"]},
                )
                return CommunicationUpsertResult(
                    action=UpsertAction.UPDATED, communication_id=existing["id"]
                )

            values["created_at"] = now
            columns = ", ".join(values)
            placeholders = ", ".join(f":{k}" for k in values)
            cursor = conn.execute(
                f"INSERT INTO communications ({columns}) VALUES ({placeholders})",
                values,
            )
            return CommunicationUpsertResult(
                action=UpsertAction.CREATED, communication_id=int(cursor.lastrowid or 0)
            )
