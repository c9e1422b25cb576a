"""Human inbox API routes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from fastapi import APIRouter, HTTPException

from ..contacts.repository import ContactNotFoundError
from ..conversations import schemas as convo_schemas
from ..conversations.repository import ConversationNotFoundError
from ..conversations.state import InvalidTransitionError
from ..dependencies import Services, open_services

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@contextmanager
def _service_context() -> Iterator[Services]:
    try:
        with open_services() as services:
            yield services
    except (ConversationNotFoundError, ContactNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get("/{conversation_id}/messages", response_model=list[convo_schemas.Message])
def list_messages(conversation_id: UUID, limit: int | None = None) -> list[convo_schemas.Message]:
    with _service_context() as services:
        return services.inbox.list_messages(conversation_id, limit=limit)


@router.post("/{conversation_id}/assign", response_model=convo_schemas.Conversation)
def assign_conversation(
    conversation_id: UUID, payload: convo_schemas.AssignRequest
) -> convo_schemas.Conversation:
    with _service_context() as services:
        return services.inbox.assign(conversation_id, payload.agent_id)


@router.post("/{conversation_id}/resolve", response_model=convo_schemas.Conversation)
def resolve_conversation(
    conversation_id: UUID, payload: convo_schemas.ResolveRequest
) -> convo_schemas.Conversation:
    with _service_context() as services:
        return services.inbox.resolve(conversation_id, payload.resolved_by)


@router.post("/{conversation_id}/bot", response_model=convo_schemas.Conversation)
def toggle_bot(
    conversation_id: UUID, payload: convo_schemas.BotToggleRequest
) -> convo_schemas.Conversation:
    with _service_context() as services:
        return services.inbox.toggle_bot(conversation_id, payload.enabled)


@router.post("/{conversation_id}/messages", response_model=convo_schemas.OutboundResult)
def send_agent_message(
    conversation_id: UUID, payload: convo_schemas.AgentMessageRequest
) -> convo_schemas.OutboundResult:
    """Send an agent reply; the message is kept even when the channel fails."""

    with _service_context() as services:
        return services.inbox.send_agent_message(conversation_id, payload.agent_id, payload.text)
