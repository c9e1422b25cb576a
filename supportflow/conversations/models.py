"""Domain models used by the conversation and ingestion services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    AWAITING = "awaiting"
    TRANSFERRED = "transferred"
    RESOLVED = "resolved"


OPEN_STATUSES = (
    ConversationStatus.ACTIVE,
    ConversationStatus.AWAITING,
    ConversationStatus.TRANSFERRED,
)


class SenderKind(str, Enum):
    CONTACT = "contact"
    AUTOMATED = "automated_responder"
    AGENT = "agent"


class MessageType(str, Enum):
    TEXT = "text"
    ATTACHMENT = "attachment"


class DeliveryStatus(str, Enum):
    RECEIVED = "received"
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


_DELIVERY_RANK = {
    DeliveryStatus.RECEIVED: 0,
    DeliveryStatus.PENDING: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
    DeliveryStatus.READ: 3,
}


def delivery_advances(current: DeliveryStatus | str, new: DeliveryStatus | str) -> bool:
    """Return whether moving from ``current`` to ``new`` is a forward step.

    Statuses only move forward (pending, sent, delivered, read). ``failed``
    is accepted until the message is known to be delivered.
    """

    current = DeliveryStatus(current)
    new = DeliveryStatus(new)
    if new == DeliveryStatus.FAILED:
        return current in (DeliveryStatus.PENDING, DeliveryStatus.SENT)
    if current == DeliveryStatus.FAILED:
        return False
    return _DELIVERY_RANK[new] > _DELIVERY_RANK[current]


@dataclass
class InboundMessage:
    """Uniform representation of an inbound channel message."""

    channel: str
    external_id: str
    address: str
    text: str
    message_type: MessageType = MessageType.TEXT
    sender_name: str | None = None
    attachment: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class StatusEvent:
    """Delivery/read receipt for a previously sent message."""

    channel: str
    external_id: str
    status: DeliveryStatus
    recipient: str | None = None
    error: str | None = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
