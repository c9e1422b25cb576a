"""Persist-then-send for every outbound message."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ..channels.sender import OutboundSender
from ..contacts.repository import ContactRepository
from ..contacts.schemas import Contact
from . import schemas
from .models import DeliveryStatus, SenderKind
from .repository import ConversationRepository

logger = logging.getLogger(__name__)


class OutboundMessenger:
    """Append an outbound message to history, then hand it to the channel.

    The message row is written with ``pending`` status before the send and is
    never removed afterwards: a failed send only flips it to ``failed``, so the
    history always shows what the system attempted.
    """

    def __init__(
        self,
        conversations: ConversationRepository,
        contacts: ContactRepository,
        sender: OutboundSender,
    ) -> None:
        self._conversations = conversations
        self._contacts = contacts
        self._sender = sender

    def deliver(
        self,
        conversation: schemas.Conversation,
        contact: Contact,
        body: str,
        sender_kind: SenderKind,
        *,
        sender_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> schemas.OutboundResult:
        message, _ = self._conversations.add_message(
            schemas.MessageCreate(
                conversation_id=conversation.id,
                sender_kind=sender_kind,
                sender_id=sender_id,
                body=body,
                status=DeliveryStatus.PENDING,
                metadata=metadata or {},
            )
        )
        now = datetime.now(timezone.utc)
        self._conversations.touch(conversation.id, now)
        try:
            result = self._sender.send(contact.address, body)
        except Exception as exc:
            logger.error(
                "Failed to send %s message %s to %s: %s",
                sender_kind.value,
                message.id,
                contact.address,
                exc,
            )
            updated = self._conversations.update_delivery(
                message.id, DeliveryStatus.FAILED, at=now, error=str(exc)
            )
            return schemas.OutboundResult(
                message=updated or message, delivered_to_channel=False, error=str(exc)
            )
        updated = self._conversations.update_delivery(
            message.id,
            DeliveryStatus.SENT,
            at=datetime.now(timezone.utc),
            external_id=result.external_id,
        )
        self._contacts.record_outbound(contact.id)
        return schemas.OutboundResult(message=updated or message, delivered_to_channel=True)
