from datetime import datetime, timezone
from uuid import uuid4

import pytest

from supportflow.contacts.schemas import ContactCreate
from supportflow.conversations import state
from supportflow.conversations.models import ConversationStatus, DeliveryStatus, SenderKind
from supportflow.conversations.schemas import Conversation


def _conversation(**overrides) -> Conversation:
    return Conversation(
        id=uuid4(),
        contact_id=uuid4(),
        created_at=datetime.now(timezone.utc),
        **overrides,
    )


def test_new_conversation_defaults():
    conversation = _conversation()
    assert conversation.status == ConversationStatus.ACTIVE
    assert conversation.bot_active is True


def test_request_human_moves_to_awaiting():
    updated = state.request_human(_conversation())
    assert updated.status == ConversationStatus.AWAITING
    assert updated.bot_active is False


def test_assign_and_transfer():
    assigned = state.assign(_conversation(), "agent-1")
    assert assigned.assigned_agent == "agent-1"
    assert assigned.bot_active is False
    assert assigned.status == ConversationStatus.ACTIVE

    transferred = state.assign(assigned, "agent-2")
    assert transferred.status == ConversationStatus.TRANSFERRED
    assert transferred.assigned_agent == "agent-2"


def test_toggle_bot_keeps_status():
    awaiting = state.request_human(_conversation())
    toggled = state.set_bot_active(awaiting, True)
    assert toggled.bot_active is True
    assert toggled.status == ConversationStatus.AWAITING


def test_resolved_conversation_is_terminal():
    at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    resolved = state.resolve(_conversation(unread_count=3), "agent-1", at)
    assert resolved.status == ConversationStatus.RESOLVED
    assert resolved.resolved_at == at
    assert resolved.resolved_by == "agent-1"
    assert resolved.unread_count == 0
    for transition in (
        lambda: state.request_human(resolved),
        lambda: state.assign(resolved, "agent-2"),
        lambda: state.resolve(resolved, "agent-2"),
        lambda: state.set_bot_active(resolved, True),
    ):
        with pytest.raises(state.InvalidTransitionError):
            transition()


def _open_conversation(services):
    contact = services.contacts.add(ContactCreate(address="5511987654321", name="Ana Souza"))
    conversation, _ = services.conversations.get_or_create_open(
        contact.id, datetime.now(timezone.utc)
    )
    return contact, conversation


def test_inbox_assign_resolve_and_reopen(services):
    contact, conversation = _open_conversation(services)

    assigned = services.inbox.assign(conversation.id, "agent-1")
    assert assigned.assigned_agent == "agent-1"

    resolved = services.inbox.resolve(conversation.id, "agent-1")
    assert resolved.status == ConversationStatus.RESOLVED
    assert services.conversations.get_open_for_contact(contact.id) is None

    fresh, created = services.conversations.get_or_create_open(
        contact.id, datetime.now(timezone.utc)
    )
    assert created
    assert fresh.id != conversation.id
    with pytest.raises(state.InvalidTransitionError):
        services.inbox.toggle_bot(conversation.id, True)


def test_agent_message_persisted_even_when_send_fails(services, sender):
    contact, conversation = _open_conversation(services)
    sender.fail_on.add(contact.address)

    result = services.inbox.send_agent_message(conversation.id, "agent-7", "On it!")

    assert result.delivered_to_channel is False
    assert "provider rejected" in result.error
    messages = services.conversations.list_messages(conversation.id)
    assert [m.body for m in messages] == ["On it!"]
    assert messages[0].status == DeliveryStatus.FAILED
    assert messages[0].sender_kind == SenderKind.AGENT
    assert services.conversations.get_conversation(conversation.id).assigned_agent == "agent-7"


def test_agent_message_sent(services, sender):
    contact, conversation = _open_conversation(services)
    result = services.inbox.send_agent_message(conversation.id, "agent-7", "Hello")
    assert result.delivered_to_channel
    assert result.message.status == DeliveryStatus.SENT
    assert result.message.external_id == "wamid.1"
    assert sender.sent == [(contact.address, "Hello")]
    assert services.contacts.get_contact(contact.id).messages_sent == 1


def test_bot_toggle_on_resolved_conversation_names_the_action():
    resolved = state.resolve(_conversation(), "agent-1")
    with pytest.raises(state.InvalidTransitionError, match="Cannot toggle the bot: conversation"):
        state.set_bot_active(resolved, False)
