"""Inbound message ingestion: persist first, then automate."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from ..automations.service import AutomationService
from ..campaigns.repository import CampaignRepository
from ..contacts.addresses import normalize_address
from ..contacts.repository import ContactRepository
from ..contacts.schemas import AUTO_CAPTURED_TAG, Contact, ContactCreate
from ..conversations import schemas as convo_schemas
from ..conversations import state
from ..conversations.models import (
    DeliveryStatus,
    InboundMessage,
    MessageType,
    SenderKind,
    StatusEvent,
)
from ..conversations.outbound import OutboundMessenger
from ..conversations.repository import ConversationRepository
from ..responder.service import AutomatedResponder, safe_reply
from ..tasks import BackgroundTaskRunner

logger = logging.getLogger(__name__)

ContactTrigger = Callable[[str, UUID], Any]


@dataclass
class IngestResult:
    contact: Contact | None = None
    conversation: convo_schemas.Conversation | None = None
    message: convo_schemas.Message | None = None
    duplicate: bool = False
    contact_created: bool = False
    conversation_created: bool = False
    reply: convo_schemas.OutboundResult | None = None
    automation_rule_id: UUID | None = None
    handed_off: bool = False
    ignored: bool = False


@dataclass
class StatusResult:
    message_updated: bool = False
    campaign_recipient_updated: bool = False


class IngestionPipeline:
    """Turn one inbound channel event into persisted state plus replies.

    The inbound message is persisted (and ``checkpoint`` called) before any
    automation, responder call or outbound send runs. Nothing after that
    point can remove it: failures there are logged and reported in the
    result.
    """

    def __init__(
        self,
        contacts: ContactRepository,
        conversations: ConversationRepository,
        automations: AutomationService,
        responder: AutomatedResponder,
        messenger: OutboundMessenger,
        tasks: BackgroundTaskRunner,
        *,
        campaigns: CampaignRepository | None = None,
        contact_trigger: ContactTrigger | None = None,
        checkpoint: Callable[[], None] | None = None,
        country_code: str = "55",
        history_limit: int = 20,
        business_timezone: str = "UTC",
    ) -> None:
        self._contacts = contacts
        self._conversations = conversations
        self._automations = automations
        self._responder = responder
        self._messenger = messenger
        self._tasks = tasks
        self._campaigns = campaigns
        self._contact_trigger = contact_trigger or automations.run_contact_trigger
        self._checkpoint = checkpoint
        self._country_code = country_code
        self._history_limit = history_limit
        self._tz = ZoneInfo(business_timezone)

    # ------------------------------------------------------------------
    # Messages

    def handle_message(self, inbound: InboundMessage) -> IngestResult:
        if inbound.external_id and self._conversations.get_message_by_external_id(
            inbound.external_id
        ):
            logger.info("Duplicate inbound message %s ignored", inbound.external_id)
            return IngestResult(duplicate=True)

        address = normalize_address(inbound.address, self._country_code)
        if not address:
            logger.warning(
                "Inbound %s message %s has no sender address; ignored",
                inbound.channel,
                inbound.external_id,
            )
            return IngestResult(ignored=True)
        contact, contact_created = self._contacts.get_or_create(
            ContactCreate(
                address=address,
                name=inbound.sender_name or address,
                tags=[AUTO_CAPTURED_TAG],
                address_verified=True,
            )
        )
        if contact_created:
            logger.info("Contact %s captured from %s", contact.id, inbound.channel)

        conversation, conversation_created = self._conversations.get_or_create_open(
            contact.id, inbound.sent_at
        )
        message, inserted = self._conversations.add_message(
            convo_schemas.MessageCreate(
                conversation_id=conversation.id,
                sender_kind=SenderKind.CONTACT,
                body=inbound.text,
                message_type=inbound.message_type,
                external_id=inbound.external_id or None,
                status=DeliveryStatus.RECEIVED,
                attachment=inbound.attachment,
                metadata={"channel": inbound.channel, **inbound.metadata},
            )
        )
        if not inserted:
            logger.info("Duplicate inbound message %s ignored", inbound.external_id)
            return IngestResult(duplicate=True)
        self._conversations.touch(conversation.id, inbound.sent_at, unread_delta=1)
        self._contacts.touch_inbound(contact.id, inbound.sent_at)
        if self._checkpoint:
            self._checkpoint()

        result = IngestResult(
            contact=contact,
            conversation=conversation,
            message=message,
            contact_created=contact_created,
            conversation_created=conversation_created,
        )

        if conversation_created and self._conversations.count_for_contact(contact.id) == 1:
            if contact_created:
                self._tasks.submit("new_contact", self._contact_trigger, "new_contact", contact.id)
            self._tasks.submit("first_message", self._contact_trigger, "first_message", contact.id)

        if conversation.bot_active and inbound.message_type == MessageType.TEXT and inbound.text.strip():
            try:
                self._auto_reply(result, contact, conversation, inbound)
            except Exception:
                logger.exception(
                    "Automatic reply failed for conversation %s", conversation.id
                )
        return result

    def _auto_reply(
        self,
        result: IngestResult,
        contact: Contact,
        conversation: convo_schemas.Conversation,
        inbound: InboundMessage,
    ) -> None:
        local_now = inbound.sent_at.astimezone(self._tz)
        rule_match = self._automations.match_inbound(contact, inbound.text, local_now)
        if rule_match is not None and rule_match.body:
            reply = self._messenger.deliver(
                conversation,
                contact,
                rule_match.body,
                SenderKind.AUTOMATED,
                metadata={"automation_rule_id": str(rule_match.rule.id)},
            )
            self._automations.record(
                rule_match,
                contact.id,
                error=reply.error,
                details={"trigger": rule_match.rule.kind, "inbound": inbound.external_id},
            )
            result.reply = reply
            result.automation_rule_id = rule_match.rule.id
            return

        history = self._conversations.list_messages(conversation.id, limit=self._history_limit)
        context = {
            "name": contact.name,
            "registration_id": contact.registration_id,
            "department": contact.department,
            "channel": inbound.channel,
        }
        answer = safe_reply(self._responder, history, context)
        result.reply = self._messenger.deliver(
            conversation,
            contact,
            answer.text,
            SenderKind.AUTOMATED,
            metadata={"needs_human_transfer": answer.needs_human_transfer},
        )
        if answer.needs_human_transfer:
            result.conversation = self._conversations.save_state(state.request_human(conversation))
            result.handed_off = True
            logger.info("Conversation %s handed to the human queue", conversation.id)

    # ------------------------------------------------------------------
    # Delivery receipts

    def handle_status(self, event: StatusEvent) -> StatusResult:
        result = StatusResult()
        if not event.external_id:
            return result
        message = self._conversations.get_message_by_external_id(event.external_id)
        if message is not None:
            updated = self._conversations.update_delivery(
                message.id, event.status, at=event.at, error=event.error
            )
            result.message_updated = bool(updated and updated.status == event.status)
        if self._campaigns is not None:
            recipient = self._campaigns.record_receipt(
                event.external_id, event.status, at=event.at, error=event.error
            )
            result.campaign_recipient_updated = bool(
                recipient and recipient.status.value == event.status.value
            )
        if event.status == DeliveryStatus.FAILED:
            logger.warning("Channel reported failure for %s: %s", event.external_id, event.error)
        return result
