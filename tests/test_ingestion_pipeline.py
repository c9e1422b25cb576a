from datetime import datetime, timezone

import pytest

from supportflow.automations.repository import InMemoryAutomationRepository
from supportflow.automations.schemas import AutomationRuleCreate
from supportflow.automations.triggers import BusinessHoursTrigger, FirstMessageTrigger, KeywordTrigger
from supportflow.campaigns.repository import InMemoryCampaignRepository
from supportflow.contacts.repository import InMemoryContactRepository
from supportflow.contacts.schemas import AUTO_CAPTURED_TAG, ContactCreate
from supportflow.conversations import state
from supportflow.conversations.models import (
    ConversationStatus,
    DeliveryStatus,
    InboundMessage,
    MessageType,
    SenderKind,
    StatusEvent,
)
from supportflow.conversations.repository import InMemoryConversationRepository
from supportflow.dependencies import build_services
from supportflow.responder.service import FALLBACK_REPLY
from supportflow.tasks import InlineTaskRunner

# Tuesday mid-morning, inside the default business hours.
WEEKDAY_MORNING = datetime(2024, 6, 4, 10, 0, tzinfo=timezone.utc)
# Sunday night.
SUNDAY_NIGHT = datetime(2024, 6, 2, 22, 0, tzinfo=timezone.utc)


def _inbound(text="Hello", external_id="wamid.in.1", address="5511987654321", **kwargs):
    kwargs.setdefault("sent_at", WEEKDAY_MORNING)
    return InboundMessage(
        channel="whatsapp",
        external_id=external_id,
        address=address,
        text=text,
        sender_name="Maria Souza",
        **kwargs,
    )


def _messages(services, conversation_id):
    return services.conversations.list_messages(conversation_id)


def test_unknown_sender_is_captured_and_answered(services, sender, responder):
    result = services.pipeline.handle_message(_inbound())

    assert result.contact_created is True
    assert result.conversation_created is True
    assert AUTO_CAPTURED_TAG in result.contact.tags
    assert result.contact.address_verified is True
    assert result.contact.name == "Maria Souza"
    messages = _messages(services, result.conversation.id)
    assert [m.sender_kind for m in messages] == [SenderKind.CONTACT, SenderKind.AUTOMATED]
    assert messages[0].status == DeliveryStatus.RECEIVED
    assert messages[1].body == responder.text
    assert sender.sent == [("5511987654321", responder.text)]
    context = responder.calls[0][1]
    assert context["name"] == "Maria Souza"


def test_duplicate_delivery_is_ignored(services, sender):
    first = services.pipeline.handle_message(_inbound())
    second = services.pipeline.handle_message(_inbound())

    assert second.duplicate is True
    inbound = [
        m for m in _messages(services, first.conversation.id) if m.sender_kind == SenderKind.CONTACT
    ]
    assert len(inbound) == 1
    assert len(sender.sent) == 1


def test_known_contact_is_reused(services):
    contact = services.contacts.add(ContactCreate(address="5511987654321", name="Maria Registered"))
    result = services.pipeline.handle_message(_inbound(address="+55 (11) 98765-4321"))

    assert result.contact_created is False
    assert result.contact.id == contact.id
    assert AUTO_CAPTURED_TAG not in result.contact.tags


def test_keyword_rule_answers_before_responder(services, sender, responder):
    rule = services.automations.save_rule(
        AutomationRuleCreate(
            name="Vacation",
            trigger=KeywordTrigger(keywords=["férias"]),
            message="Hi {{name}}, vacation requests go through the HR portal.",
        )
    )

    result = services.pipeline.handle_message(_inbound("Quero saber das minhas FÉRIAS"))

    assert result.automation_rule_id == rule.id
    assert sender.sent == [("5511987654321", "Hi Maria, vacation requests go through the HR portal.")]
    assert responder.calls == []
    logs = services.automation_store.logs
    assert [(log.rule_id, log.status.value) for log in logs] == [(rule.id, "success")]


def test_business_hours_notice_sent_once_per_day(services, sender, responder):
    services.automations.save_rule(
        AutomationRuleCreate(
            name="After hours",
            trigger=BusinessHoursTrigger(),
            message="We are closed right now.",
        )
    )

    services.pipeline.handle_message(_inbound("hi", external_id="a", sent_at=SUNDAY_NIGHT))
    services.pipeline.handle_message(_inbound("anyone?", external_id="b", sent_at=SUNDAY_NIGHT))

    bodies = [body for _, body in sender.sent]
    assert bodies == ["We are closed right now.", responder.text]


def test_handoff_moves_conversation_to_awaiting(services, responder):
    responder.needs_human = True
    result = services.pipeline.handle_message(_inbound())

    assert result.handed_off is True
    stored = services.conversations.get_conversation(result.conversation.id)
    assert stored.status == ConversationStatus.AWAITING
    assert stored.bot_active is False

    services.pipeline.handle_message(_inbound("still there?", external_id="wamid.in.2"))
    assert len(responder.calls) == 1


def test_responder_failure_falls_back_to_human(services, sender, responder):
    responder.error = RuntimeError("model unavailable")
    result = services.pipeline.handle_message(_inbound())

    assert result.handed_off is True
    assert sender.sent == [("5511987654321", FALLBACK_REPLY)]


def test_send_failure_keeps_inbound_message(services, sender):
    sender.fail_on.add("5511987654321")
    result = services.pipeline.handle_message(_inbound())

    messages = _messages(services, result.conversation.id)
    assert messages[0].sender_kind == SenderKind.CONTACT
    assert messages[1].status == DeliveryStatus.FAILED
    assert result.reply.delivered_to_channel is False


def test_first_message_welcome_runs_once(services, sender, responder):
    services.automations.save_rule(
        AutomationRuleCreate(
            name="Welcome",
            trigger=FirstMessageTrigger(),
            message="Welcome {{name}}!",
        )
    )

    first = services.pipeline.handle_message(_inbound())
    services.inbox.resolve(first.conversation.id, "agent-1")
    second = services.pipeline.handle_message(_inbound("back again", external_id="wamid.in.2"))

    assert second.conversation.id != first.conversation.id
    welcomes = [body for _, body in sender.sent if body == "Welcome Maria!"]
    assert welcomes == ["Welcome Maria!"]


def test_attachment_skips_automatic_reply(services, sender):
    result = services.pipeline.handle_message(
        _inbound(
            "[Image received]",
            message_type=MessageType.ATTACHMENT,
            attachment={"type": "image", "id": "media-1"},
        )
    )
    assert result.message.attachment == {"type": "image", "id": "media-1"}
    assert sender.sent == []


def test_checkpoint_runs_before_reply(settings, sender, responder):
    events = []
    original_send = sender.send

    def send(address, text):
        events.append("send")
        return original_send(address, text)

    sender.send = send
    services = build_services(
        InMemoryContactRepository(),
        InMemoryConversationRepository(),
        InMemoryAutomationRepository(),
        InMemoryCampaignRepository(),
        settings=settings,
        sender=sender,
        responder=responder,
        tasks=InlineTaskRunner(),
        checkpoint=lambda: events.append("checkpoint"),
    )

    services.pipeline.handle_message(_inbound())
    assert events == ["checkpoint", "send"]


def test_status_receipt_updates_message(services, sender):
    result = services.pipeline.handle_message(_inbound())
    reply = result.reply.message

    status = services.pipeline.handle_status(
        StatusEvent(channel="whatsapp", external_id=reply.external_id, status=DeliveryStatus.DELIVERED)
    )
    assert status.message_updated is True
    stale = services.pipeline.handle_status(
        StatusEvent(channel="whatsapp", external_id=reply.external_id, status=DeliveryStatus.SENT)
    )
    assert stale.message_updated is False
    stored = services.conversations.get_message_by_external_id(reply.external_id)
    assert stored.status == DeliveryStatus.DELIVERED
    assert stored.delivered_at is not None


def test_resolved_conversation_rejects_transitions(services):
    result = services.pipeline.handle_message(_inbound())
    resolved = services.inbox.resolve(result.conversation.id, "agent-1")
    with pytest.raises(state.InvalidTransitionError):
        state.request_human(resolved)


def test_handoff_keeps_unread_count(services, responder):
    responder.needs_human = True
    result = services.pipeline.handle_message(_inbound("help"))

    stored = services.conversations.get_conversation(result.conversation.id)
    assert stored.status == ConversationStatus.AWAITING
    assert stored.unread_count == 1

    assigned = services.inbox.assign(result.conversation.id, "agent-1")
    assert assigned.unread_count == 1


def test_message_without_sender_address_is_ignored(services, sender, responder):
    result = services.pipeline.handle_message(_inbound(address=""))

    assert result.ignored is True
    assert result.contact is None
    assert services.contacts.get_by_address("") is None
    assert responder.calls == []
    assert sender.sent == []
