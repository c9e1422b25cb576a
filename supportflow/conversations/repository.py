"""Database repository for conversations and messages."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from . import schemas
from .models import OPEN_STATUSES, ConversationStatus, DeliveryStatus, delivery_advances

_OPEN_VALUES = [status.value for status in OPEN_STATUSES]

_STATE_FIELDS = ("status", "bot_active", "assigned_agent", "resolved_at", "resolved_by")

_TIMESTAMP_FIELD = {
    DeliveryStatus.SENT: "sent_at",
    DeliveryStatus.DELIVERED: "delivered_at",
    DeliveryStatus.READ: "read_at",
}


class ConversationNotFoundError(RuntimeError):
    """Raised when a conversation could not be located."""


class ConversationRepository(Protocol):
    """Abstraction for persisting conversations and their messages."""

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]: ...

    def get_open_for_contact(self, contact_id: UUID) -> Optional[schemas.Conversation]: ...

    def get_or_create_open(
        self, contact_id: UUID, at: datetime
    ) -> Tuple[schemas.Conversation, bool]: ...

    def count_for_contact(self, contact_id: UUID) -> int: ...

    def list_open(self) -> List[schemas.Conversation]: ...

    def save_state(self, conversation: schemas.Conversation) -> schemas.Conversation: ...

    def touch(self, conversation_id: UUID, at: datetime, unread_delta: int = 0) -> None: ...

    def add_message(self, payload: schemas.MessageCreate) -> Tuple[schemas.Message, bool]: ...

    def get_message_by_external_id(self, external_id: str) -> Optional[schemas.Message]: ...

    def list_messages(
        self, conversation_id: UUID, limit: Optional[int] = None
    ) -> List[schemas.Message]: ...

    def update_delivery(
        self,
        message_id: UUID,
        status: DeliveryStatus,
        *,
        at: datetime,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[schemas.Message]: ...


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    # Conversation operations --------------------------------------------------
    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM conversations WHERE id = %s", (conversation_id,))
            row = cur.fetchone()
        return schemas.Conversation(**row) if row else None

    def get_open_for_contact(self, contact_id: UUID) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM conversations
                WHERE contact_id = %s AND status = ANY(%s)
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (contact_id, _OPEN_VALUES),
            )
            row = cur.fetchone()
        return schemas.Conversation(**row) if row else None

    def get_or_create_open(
        self, contact_id: UUID, at: datetime
    ) -> Tuple[schemas.Conversation, bool]:
        # conversations_one_open_per_contact is a partial unique index on
        # contact_id WHERE status <> 'resolved'.
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversations (contact_id, status, bot_active, last_message_at)
                VALUES (%s, %s, true, %s)
                ON CONFLICT (contact_id) WHERE status <> 'resolved' DO NOTHING
                RETURNING *
                """,
                (contact_id, ConversationStatus.ACTIVE.value, at),
            )
            row = cur.fetchone()
        if row:
            return schemas.Conversation(**row), True
        existing = self.get_open_for_contact(contact_id)
        if existing is None:
            raise ConversationNotFoundError(
                f"Open conversation for contact {contact_id} vanished during upsert"
            )
        return existing, False

    def count_for_contact(self, contact_id: UUID) -> int:
        with self._cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS total FROM conversations WHERE contact_id = %s",
                (contact_id,),
            )
            row = cur.fetchone() or {"total": 0}
        return int(row["total"])

    def list_open(self) -> List[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM conversations WHERE status = ANY(%s) ORDER BY last_message_at",
                (_OPEN_VALUES,),
            )
            rows = cur.fetchall()
        return [schemas.Conversation(**row) for row in rows]

    def save_state(self, conversation: schemas.Conversation) -> schemas.Conversation:
        # Only lifecycle columns are written; unread_count and last_message_at
        # belong to touch() and may have moved since ``conversation`` was read.
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET status = %s, bot_active = %s, assigned_agent = %s,
                    unread_count = CASE WHEN %s THEN 0 ELSE unread_count END,
                    resolved_at = %s, resolved_by = %s, updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (
                    conversation.status.value,
                    conversation.bot_active,
                    conversation.assigned_agent,
                    conversation.status == ConversationStatus.RESOLVED,
                    conversation.resolved_at,
                    conversation.resolved_by,
                    conversation.id,
                ),
            )
            row = cur.fetchone()
        if not row:
            raise ConversationNotFoundError(f"Conversation {conversation.id} not found")
        return schemas.Conversation(**row)

    def touch(self, conversation_id: UUID, at: datetime, unread_delta: int = 0) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET last_message_at = GREATEST(coalesce(last_message_at, %s), %s),
                    unread_count = unread_count + %s, updated_at = now()
                WHERE id = %s
                """,
                (at, at, unread_delta, conversation_id),
            )

    # Message operations -------------------------------------------------------
    def add_message(self, payload: schemas.MessageCreate) -> Tuple[schemas.Message, bool]:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO messages
                    (conversation_id, sender_kind, sender_id, body, message_type,
                     external_id, status, attachment, metadata)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (external_id) WHERE external_id IS NOT NULL DO NOTHING
                RETURNING *
                """,
                (
                    payload.conversation_id,
                    payload.sender_kind.value,
                    payload.sender_id,
                    payload.body,
                    payload.message_type.value,
                    payload.external_id,
                    payload.status.value,
                    Jsonb(payload.attachment) if payload.attachment is not None else None,
                    Jsonb(payload.metadata),
                ),
            )
            row = cur.fetchone()
        if row:
            return schemas.Message(**row), True
        existing = self.get_message_by_external_id(payload.external_id or "")
        if existing is None:
            raise RuntimeError("Message insert conflicted without an existing row")
        return existing, False

    def get_message_by_external_id(self, external_id: str) -> Optional[schemas.Message]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM messages WHERE external_id = %s", (external_id,))
            row = cur.fetchone()
        return schemas.Message(**row) if row else None

    def list_messages(
        self, conversation_id: UUID, limit: Optional[int] = None
    ) -> List[schemas.Message]:
        with self._cursor() as cur:
            if limit is None:
                cur.execute(
                    "SELECT * FROM messages WHERE conversation_id = %s ORDER BY created_at ASC",
                    (conversation_id,),
                )
            else:
                cur.execute(
                    """
                    SELECT * FROM (
                        SELECT * FROM messages WHERE conversation_id = %s
                        ORDER BY created_at DESC LIMIT %s
                    ) recent ORDER BY created_at ASC
                    """,
                    (conversation_id, limit),
                )
            rows = cur.fetchall()
        return [schemas.Message(**row) for row in rows]

    def update_delivery(
        self,
        message_id: UUID,
        status: DeliveryStatus,
        *,
        at: datetime,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[schemas.Message]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM messages WHERE id = %s FOR UPDATE", (message_id,))
            row = cur.fetchone()
            if not row:
                return None
            current = schemas.Message(**row)
            if not delivery_advances(current.status, status):
                return current
            fields = ["status = %s"]
            values: List[object] = [status.value]
            stamp = _TIMESTAMP_FIELD.get(status)
            if stamp:
                fields.append(f"{stamp} = %s")
                values.append(at)
            if external_id:
                fields.append("external_id = coalesce(external_id, %s)")
                values.append(external_id)
            if error:
                fields.append("error = %s")
                values.append(error)
            values.append(message_id)
            cur.execute(
                f"UPDATE messages SET {', '.join(fields)} WHERE id = %s RETURNING *",
                values,
            )
            updated = cur.fetchone()
        return schemas.Message(**updated) if updated else None


class InMemoryConversationRepository(ConversationRepository):
    def __init__(self) -> None:
        self._conversations: Dict[UUID, schemas.Conversation] = {}
        self._messages: Dict[UUID, schemas.Message] = {}
        self._lock = threading.Lock()

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy() if conversation else None

    def get_open_for_contact(self, contact_id: UUID) -> Optional[schemas.Conversation]:
        for conversation in self._conversations.values():
            if conversation.contact_id == contact_id and conversation.status in OPEN_STATUSES:
                return conversation.model_copy()
        return None

    def get_or_create_open(
        self, contact_id: UUID, at: datetime
    ) -> Tuple[schemas.Conversation, bool]:
        with self._lock:
            existing = self.get_open_for_contact(contact_id)
            if existing:
                return existing, False
            conversation = schemas.Conversation(
                id=uuid4(),
                contact_id=contact_id,
                last_message_at=at,
                created_at=datetime.now(timezone.utc),
            )
            self._conversations[conversation.id] = conversation
            return conversation.model_copy(), True

    def count_for_contact(self, contact_id: UUID) -> int:
        return sum(1 for c in self._conversations.values() if c.contact_id == contact_id)

    def list_conversations(self) -> List[schemas.Conversation]:
        return [c.model_copy() for c in self._conversations.values()]

    def list_open(self) -> List[schemas.Conversation]:
        return [c.model_copy() for c in self._conversations.values() if c.status in OPEN_STATUSES]

    def save_state(self, conversation: schemas.Conversation) -> schemas.Conversation:
        if conversation.id not in self._conversations:
            raise ConversationNotFoundError(f"Conversation {conversation.id} not found")
        stored = self._conversations[conversation.id]
        update: Dict[str, object] = {
            field: getattr(conversation, field) for field in _STATE_FIELDS
        }
        if conversation.status == ConversationStatus.RESOLVED:
            update["unread_count"] = 0
        self._conversations[conversation.id] = stored.model_copy(update=update)
        return self._conversations[conversation.id].model_copy()

    def touch(self, conversation_id: UUID, at: datetime, unread_delta: int = 0) -> None:
        conversation = self._conversations[conversation_id]
        latest = max(conversation.last_message_at, at) if conversation.last_message_at else at
        self._conversations[conversation_id] = conversation.model_copy(
            update={
                "last_message_at": latest,
                "unread_count": conversation.unread_count + unread_delta,
            }
        )

    def add_message(self, payload: schemas.MessageCreate) -> Tuple[schemas.Message, bool]:
        with self._lock:
            if payload.external_id:
                existing = self.get_message_by_external_id(payload.external_id)
                if existing:
                    return existing, False
            message = schemas.Message(
                id=uuid4(), created_at=datetime.now(timezone.utc), **payload.model_dump()
            )
            self._messages[message.id] = message
            return message.model_copy(), True

    def get_message_by_external_id(self, external_id: str) -> Optional[schemas.Message]:
        for message in self._messages.values():
            if message.external_id == external_id:
                return message.model_copy()
        return None

    def list_messages(
        self, conversation_id: UUID, limit: Optional[int] = None
    ) -> List[schemas.Message]:
        messages = [m for m in self._messages.values() if m.conversation_id == conversation_id]
        messages.sort(key=lambda m: m.created_at)
        if limit is not None:
            messages = messages[-limit:]
        return [m.model_copy() for m in messages]

    def update_delivery(
        self,
        message_id: UUID,
        status: DeliveryStatus,
        *,
        at: datetime,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[schemas.Message]:
        current = self._messages.get(message_id)
        if current is None:
            return None
        if not delivery_advances(current.status, status):
            return current.model_copy()
        update: Dict[str, object] = {"status": status}
        stamp = _TIMESTAMP_FIELD.get(status)
        if stamp:
            update[stamp] = at
        if external_id and not current.external_id:
            update["external_id"] = external_id
        if error:
            update["error"] = error
        self._messages[message_id] = current.model_copy(update=update)
        return self._messages[message_id].model_copy()
