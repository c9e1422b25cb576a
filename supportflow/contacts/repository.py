"""Persistence for contacts."""
from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Set, Tuple
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from . import schemas


class ContactNotFoundError(RuntimeError):
    """Raised when a contact could not be located."""


class ContactRepository(Protocol):
    """Abstraction over the contact table used by the core services."""

    def get_contact(self, contact_id: UUID) -> Optional[schemas.Contact]: ...

    def get_by_address(self, address: str) -> Optional[schemas.Contact]: ...

    def get_by_addresses(self, addresses: Iterable[str]) -> Dict[str, schemas.Contact]: ...

    def get_or_create(self, payload: schemas.ContactCreate) -> Tuple[schemas.Contact, bool]: ...

    def touch_inbound(self, contact_id: UUID, at: datetime) -> None: ...

    def record_outbound(self, contact_id: UUID) -> None: ...

    def find_recently_contacted(self, addresses: Iterable[str], cutoff: datetime) -> Set[str]: ...

    def stamp_campaign(self, addresses: Iterable[str], at: datetime) -> None: ...

    def list_matching(self, recipient_filter: schemas.RecipientFilter) -> List[schemas.Contact]: ...

    def list_with_birth_date(self) -> List[schemas.Contact]: ...


class PostgresContactRepository:
    """PostgreSQL implementation of :class:`ContactRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def get_contact(self, contact_id: UUID) -> Optional[schemas.Contact]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM contacts WHERE id = %s", (contact_id,))
            row = cur.fetchone()
        return schemas.Contact(**row) if row else None

    def get_by_address(self, address: str) -> Optional[schemas.Contact]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM contacts WHERE address = %s", (address,))
            row = cur.fetchone()
        return schemas.Contact(**row) if row else None

    def get_by_addresses(self, addresses: Iterable[str]) -> Dict[str, schemas.Contact]:
        values = list(addresses)
        if not values:
            return {}
        with self._cursor() as cur:
            cur.execute("SELECT * FROM contacts WHERE address = ANY(%s)", (values,))
            rows = cur.fetchall()
        return {row["address"]: schemas.Contact(**row) for row in rows}

    def get_or_create(self, payload: schemas.ContactCreate) -> Tuple[schemas.Contact, bool]:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO contacts
                    (address, name, role, department, registration_id, email, birth_date,
                     tags, active, address_verified, metadata)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (address) DO NOTHING
                RETURNING *
                """,
                (
                    payload.address,
                    payload.name,
                    payload.role,
                    payload.department,
                    payload.registration_id,
                    payload.email,
                    payload.birth_date,
                    payload.tags,
                    payload.active,
                    payload.address_verified,
                    Jsonb(payload.metadata),
                ),
            )
            row = cur.fetchone()
            if row:
                return schemas.Contact(**row), True
            cur.execute("SELECT * FROM contacts WHERE address = %s", (payload.address,))
            existing = cur.fetchone()
        if not existing:
            raise ContactNotFoundError(f"Contact {payload.address} vanished during upsert")
        return schemas.Contact(**existing), False

    def touch_inbound(self, contact_id: UUID, at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE contacts
                SET last_message_at = GREATEST(coalesce(last_message_at, %s), %s),
                    address_verified = true, updated_at = now()
                WHERE id = %s
                """,
                (at, at, contact_id),
            )

    def record_outbound(self, contact_id: UUID) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE contacts SET messages_sent = messages_sent + 1, updated_at = now() WHERE id = %s",
                (contact_id,),
            )

    def find_recently_contacted(self, addresses: Iterable[str], cutoff: datetime) -> Set[str]:
        values = list(addresses)
        if not values:
            return set()
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT address FROM contacts
                WHERE address = ANY(%s)
                  AND (last_campaign_at >= %s OR last_message_at >= %s)
                """,
                (values, cutoff, cutoff),
            )
            rows = cur.fetchall()
        return {row["address"] for row in rows}

    def stamp_campaign(self, addresses: Iterable[str], at: datetime) -> None:
        values = list(addresses)
        if not values:
            return
        with self._cursor() as cur:
            cur.execute(
                "UPDATE contacts SET last_campaign_at = %s, updated_at = now() WHERE address = ANY(%s)",
                (at, values),
            )

    def list_matching(self, recipient_filter: schemas.RecipientFilter) -> List[schemas.Contact]:
        clauses = ["active = true", "address IS NOT NULL", "address <> ''"]
        params: List[object] = []
        if not recipient_filter.all:
            if recipient_filter.department:
                clauses.append("department = %s")
                params.append(recipient_filter.department)
            if recipient_filter.tags:
                clauses.append("tags && %s")
                params.append(list(recipient_filter.tags))
        query = f"SELECT * FROM contacts WHERE {' AND '.join(clauses)} ORDER BY created_at"
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.Contact(**row) for row in rows]

    def list_with_birth_date(self) -> List[schemas.Contact]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM contacts WHERE active = true AND birth_date IS NOT NULL ORDER BY name"
            )
            rows = cur.fetchall()
        return [schemas.Contact(**row) for row in rows]


class InMemoryContactRepository(ContactRepository):
    def __init__(self) -> None:
        self._contacts: Dict[UUID, schemas.Contact] = {}
        self._lock = threading.Lock()

    def add(self, payload: schemas.ContactCreate, **overrides) -> schemas.Contact:
        """Insert a contact directly, bypassing find-or-create."""
        contact = schemas.Contact(
            id=uuid4(),
            created_at=datetime.now(timezone.utc),
            **{**payload.model_dump(), **overrides},
        )
        self._contacts[contact.id] = contact
        return contact

    def get_contact(self, contact_id: UUID) -> Optional[schemas.Contact]:
        contact = self._contacts.get(contact_id)
        return contact.model_copy() if contact else None

    def get_by_address(self, address: str) -> Optional[schemas.Contact]:
        for contact in self._contacts.values():
            if contact.address == address:
                return contact.model_copy()
        return None

    def get_by_addresses(self, addresses: Iterable[str]) -> Dict[str, schemas.Contact]:
        wanted = set(addresses)
        return {c.address: c.model_copy() for c in self._contacts.values() if c.address in wanted}

    def get_or_create(self, payload: schemas.ContactCreate) -> Tuple[schemas.Contact, bool]:
        with self._lock:
            existing = self.get_by_address(payload.address)
            if existing:
                return existing, False
            return self.add(payload).model_copy(), True

    def touch_inbound(self, contact_id: UUID, at: datetime) -> None:
        contact = self._contacts[contact_id]
        latest = max(contact.last_message_at, at) if contact.last_message_at else at
        self._contacts[contact_id] = contact.model_copy(
            update={"last_message_at": latest, "address_verified": True}
        )

    def record_outbound(self, contact_id: UUID) -> None:
        contact = self._contacts[contact_id]
        self._contacts[contact_id] = contact.model_copy(
            update={"messages_sent": contact.messages_sent + 1}
        )

    def find_recently_contacted(self, addresses: Iterable[str], cutoff: datetime) -> Set[str]:
        wanted = set(addresses)
        recent: Set[str] = set()
        for contact in self._contacts.values():
            if contact.address not in wanted:
                continue
            stamps = (contact.last_campaign_at, contact.last_message_at)
            if any(stamp is not None and stamp >= cutoff for stamp in stamps):
                recent.add(contact.address)
        return recent

    def stamp_campaign(self, addresses: Iterable[str], at: datetime) -> None:
        wanted = set(addresses)
        for contact_id, contact in list(self._contacts.items()):
            if contact.address in wanted:
                self._contacts[contact_id] = contact.model_copy(update={"last_campaign_at": at})

    def list_matching(self, recipient_filter: schemas.RecipientFilter) -> List[schemas.Contact]:
        matches = []
        for contact in self._contacts.values():
            if not contact.active or not contact.address:
                continue
            if not recipient_filter.all:
                if recipient_filter.department and contact.department != recipient_filter.department:
                    continue
                if recipient_filter.tags and not set(recipient_filter.tags) & set(contact.tags):
                    continue
            matches.append(contact.model_copy())
        matches.sort(key=lambda c: c.created_at)
        return matches

    def list_with_birth_date(self) -> List[schemas.Contact]:
        contacts = [
            c.model_copy() for c in self._contacts.values() if c.active and c.birth_date is not None
        ]
        contacts.sort(key=lambda c: c.name)
        return contacts
