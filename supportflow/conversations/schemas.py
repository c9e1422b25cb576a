"""Pydantic schemas for conversations and messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from .models import ConversationStatus, DeliveryStatus, MessageType, SenderKind


class Conversation(BaseModel):
    id: UUID
    contact_id: UUID
    status: ConversationStatus = ConversationStatus.ACTIVE
    bot_active: bool = True
    assigned_agent: str | None = None
    unread_count: int = 0
    last_message_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime


class MessageCreate(BaseModel):
    conversation_id: UUID
    sender_kind: SenderKind
    body: str
    message_type: MessageType = MessageType.TEXT
    sender_id: str | None = None
    external_id: str | None = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    attachment: dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Message(MessageCreate):
    id: UUID
    error: str | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    created_at: datetime


class AssignRequest(BaseModel):
    agent_id: str


class ResolveRequest(BaseModel):
    resolved_by: str


class BotToggleRequest(BaseModel):
    enabled: bool


class AgentMessageRequest(BaseModel):
    agent_id: str
    text: str = Field(min_length=1)


class OutboundResult(BaseModel):
    """Outcome of persisting and sending one outbound message."""

    message: Message
    delivered_to_channel: bool
    error: str | None = None
