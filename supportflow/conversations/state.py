"""Conversation lifecycle transitions.

A conversation starts ``active`` with the bot engaged. The bot can hand it to
the human queue (``awaiting``), an agent can pick it up or pass it on
(``transferred``) and a human eventually resolves it. Resolved conversations
are history: every transition below refuses to touch them, and a new inbound
message opens a fresh conversation instead.

Transitions are pure and return an updated copy; persisting the result is the
caller's job.
"""

from __future__ import annotations

from datetime import datetime, timezone

from .models import ConversationStatus
from .schemas import Conversation


class InvalidTransitionError(RuntimeError):
    """Raised when a transition is attempted on a resolved conversation."""


def _ensure_open(conversation: Conversation, action: str) -> None:
    if conversation.status == ConversationStatus.RESOLVED:
        raise InvalidTransitionError(
            f"Cannot {action}: conversation {conversation.id} is already resolved"
        )


def request_human(conversation: Conversation) -> Conversation:
    """The automated responder asked for a human to take over."""
    _ensure_open(conversation, "hand off")
    return conversation.model_copy(
        update={"status": ConversationStatus.AWAITING, "bot_active": False}
    )


def assign(conversation: Conversation, agent_id: str) -> Conversation:
    """Give the conversation to ``agent_id`` and silence the bot."""
    _ensure_open(conversation, "assign")
    previous = conversation.assigned_agent
    status = (
        ConversationStatus.TRANSFERRED
        if previous and previous != agent_id
        else ConversationStatus.ACTIVE
    )
    return conversation.model_copy(
        update={"assigned_agent": agent_id, "bot_active": False, "status": status}
    )


def resolve(
    conversation: Conversation, resolved_by: str, at: datetime | None = None
) -> Conversation:
    _ensure_open(conversation, "resolve")
    return conversation.model_copy(
        update={
            "status": ConversationStatus.RESOLVED,
            "resolved_at": at or datetime.now(timezone.utc),
            "resolved_by": resolved_by,
            "unread_count": 0,
        }
    )


def set_bot_active(conversation: Conversation, enabled: bool) -> Conversation:
    _ensure_open(conversation, "toggle the bot")
    return conversation.model_copy(update={"bot_active": enabled})
