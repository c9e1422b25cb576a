"""Human inbox actions on a conversation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from ..contacts.repository import ContactNotFoundError, ContactRepository
from . import schemas, state
from .models import SenderKind
from .outbound import OutboundMessenger
from .repository import ConversationNotFoundError, ConversationRepository

logger = logging.getLogger(__name__)


class ConversationService:
    """Coordinates state transitions requested by human agents."""

    def __init__(
        self,
        repository: ConversationRepository,
        contacts: ContactRepository,
        messenger: OutboundMessenger,
    ) -> None:
        self._repository = repository
        self._contacts = contacts
        self._messenger = messenger

    # ------------------------------------------------------------------
    # Queries

    def get_conversation(self, conversation_id: UUID) -> schemas.Conversation:
        conversation = self._repository.get_conversation(conversation_id)
        if not conversation:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def list_messages(
        self, conversation_id: UUID, limit: int | None = None
    ) -> list[schemas.Message]:
        self.get_conversation(conversation_id)
        return self._repository.list_messages(conversation_id, limit=limit)

    # ------------------------------------------------------------------
    # Actions

    def assign(self, conversation_id: UUID, agent_id: str) -> schemas.Conversation:
        conversation = self.get_conversation(conversation_id)
        updated = self._repository.save_state(state.assign(conversation, agent_id))
        logger.info(
            "Conversation %s assigned to %s (status=%s)",
            conversation_id,
            agent_id,
            updated.status.value,
        )
        return updated

    def resolve(self, conversation_id: UUID, resolved_by: str) -> schemas.Conversation:
        conversation = self.get_conversation(conversation_id)
        updated = self._repository.save_state(
            state.resolve(conversation, resolved_by, datetime.now(timezone.utc))
        )
        logger.info("Conversation %s resolved by %s", conversation_id, resolved_by)
        return updated

    def toggle_bot(self, conversation_id: UUID, enabled: bool) -> schemas.Conversation:
        conversation = self.get_conversation(conversation_id)
        return self._repository.save_state(state.set_bot_active(conversation, enabled))

    def send_agent_message(
        self, conversation_id: UUID, agent_id: str, text: str
    ) -> schemas.OutboundResult:
        """Persist and send an agent reply; a failed send keeps the message."""

        conversation = self.get_conversation(conversation_id)
        if conversation.status.value == "resolved":
            raise state.InvalidTransitionError(
                f"Cannot reply on conversation {conversation_id}: already resolved"
            )
        contact = self._contacts.get_contact(conversation.contact_id)
        if contact is None:
            raise ContactNotFoundError(f"Contact {conversation.contact_id} not found")
        if conversation.assigned_agent is None:
            conversation = self._repository.save_state(state.assign(conversation, agent_id))
        return self._messenger.deliver(
            conversation, contact, text, SenderKind.AGENT, sender_id=agent_id
        )
