"""Automation flows: welcome, birthday, no-response, ticket notifications."""
from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..contacts.repository import ContactNotFoundError, ContactRepository
from ..contacts.schemas import Contact
from ..conversations.models import SenderKind
from ..conversations.outbound import OutboundMessenger
from ..conversations.repository import ConversationRepository
from ..templating import contact_variables, extract_variable_names, render
from ..tickets import Ticket, default_ticket_message, ticket_variables
from . import schemas
from .matcher import (
    BirthdayEvent,
    FirstMessageEvent,
    KeywordEvent,
    NewContactEvent,
    NoResponseEvent,
    OutsideBusinessHoursEvent,
    RuleMatch,
    TicketCreatedEvent,
    TriggerEvent,
    match,
)
from .repository import AutomationRepository

logger = logging.getLogger(__name__)


class TemplateNotFoundError(ValueError):
    """Raised when a rule references a template that does not exist."""


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class AutomationService:
    """Evaluate rules for an event and deliver the resulting messages.

    Every delivery is recorded in the automation log. The log doubles as the
    idempotence guard: welcome rules fire once per contact, birthday and
    business-hours rules once per contact per day.
    """

    def __init__(
        self,
        repository: AutomationRepository,
        contacts: ContactRepository,
        conversations: ConversationRepository,
        messenger: OutboundMessenger,
        *,
        send_delay_ms: int = 200,
    ) -> None:
        self._repository = repository
        self._contacts = contacts
        self._conversations = conversations
        self._messenger = messenger
        self._send_delay = send_delay_ms / 1000

    # ------------------------------------------------------------------
    # Administration

    def save_rule(self, payload: schemas.AutomationRuleCreate) -> schemas.AutomationRule:
        if payload.template_id is not None:
            if payload.template_id not in self._repository.get_templates([payload.template_id]):
                raise TemplateNotFoundError(f"Template {payload.template_id} not found")
        return self._repository.save_rule(payload)

    def save_template(self, payload: schemas.TemplateCreate) -> schemas.Template:
        detected = extract_variable_names(payload.content)
        variables = list(payload.variables)
        variables.extend(name for name in detected if name not in variables)
        return self._repository.save_template(payload.model_copy(update={"variables": variables}))

    # ------------------------------------------------------------------
    # Evaluation

    def evaluate(
        self, event: TriggerEvent, variables: Optional[Dict[str, Any]] = None
    ) -> Optional[RuleMatch]:
        rules = self._repository.list_rules(kind=event.kind)
        templates = self._repository.get_templates(
            {rule.template_id for rule in rules if rule.template_id is not None}
        )
        return match(event, rules, templates, variables)

    def match_inbound(self, contact: Contact, text: str, now: datetime) -> Optional[RuleMatch]:
        """Pick the automatic reply for an inbound text, if any.

        The outside-business-hours notice goes first and is sent at most once
        per contact per day; otherwise the first matching keyword rule wins.
        """

        variables = contact_variables(contact)
        notice = self.evaluate(OutsideBusinessHoursEvent(now=now), variables)
        if notice and not self._repository.has_log(
            notice.rule.id, contact.id, since=_start_of_day(now).astimezone(timezone.utc)
        ):
            return notice
        return self.evaluate(KeywordEvent(text=text), variables)

    def record(
        self,
        rule_match: RuleMatch,
        contact_id: UUID,
        *,
        error: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> schemas.AutomationLog:
        status = schemas.AutomationLogStatus.ERROR if error else schemas.AutomationLogStatus.SUCCESS
        return self._repository.add_log(
            schemas.AutomationLogCreate(
                rule_id=rule_match.rule.id,
                contact_id=contact_id,
                status=status,
                message=rule_match.body,
                error=error,
                details=details or {},
            )
        )

    # ------------------------------------------------------------------
    # Flows

    def run_contact_trigger(self, kind: str, contact_id: UUID) -> schemas.AutomationOutcome:
        """Send the welcome rule for ``kind`` (new_contact/first_message) once."""

        contact = self._contacts.get_contact(contact_id)
        if contact is None:
            raise ContactNotFoundError(f"Contact {contact_id} not found")
        event = NewContactEvent() if kind == "new_contact" else FirstMessageEvent()
        rule_match = self.evaluate(event, contact_variables(contact))
        if rule_match is None:
            logger.info("No active %s automation rule", kind)
            return schemas.AutomationOutcome(status="no_rule", contact_id=contact_id)
        if self._repository.has_log(rule_match.rule.id, contact.id):
            logger.info("Welcome message already sent to contact %s", contact.id)
            return schemas.AutomationOutcome(
                status="already_sent", rule_id=rule_match.rule.id, contact_id=contact.id
            )
        return self._deliver(rule_match, contact, details={"trigger": kind})

    def run_birthday_sweep(self, today: Optional[date] = None) -> schemas.BirthdaySweepSummary:
        now = datetime.now(timezone.utc)
        today = today or now.date()
        day_start = datetime(today.year, today.month, today.day, tzinfo=timezone.utc)
        summary = schemas.BirthdaySweepSummary()
        rules = self._repository.list_rules(kind="birthday")
        templates = self._repository.get_templates(
            {rule.template_id for rule in rules if rule.template_id is not None}
        )
        for contact in self._contacts.list_with_birth_date():
            rule_match = match(
                BirthdayEvent(date=today, birth_date=contact.birth_date),
                rules,
                templates,
                contact_variables(contact),
            )
            if contact.birth_date is None or rule_match is None:
                continue
            summary.total_birthdays += 1
            if self._repository.has_log(rule_match.rule.id, contact.id, since=day_start):
                logger.info("Birthday message already sent to contact %s today", contact.id)
                summary.already_sent += 1
                summary.results.append(
                    schemas.AutomationOutcome(
                        status="already_sent", rule_id=rule_match.rule.id, contact_id=contact.id
                    )
                )
                continue
            outcome = self._deliver(
                rule_match,
                contact,
                details={"birth_date": contact.birth_date.isoformat()},
            )
            summary.results.append(outcome)
            if outcome.status == "sent":
                summary.sent += 1
            else:
                summary.failed += 1
            if self._send_delay:
                time.sleep(self._send_delay)
        logger.info(
            "Birthday automation completed: %d sent, %d already sent, %d failed",
            summary.sent,
            summary.already_sent,
            summary.failed,
        )
        return summary

    def run_no_response_sweep(self, now: Optional[datetime] = None) -> schemas.NoResponseSweepSummary:
        now = now or datetime.now(timezone.utc)
        summary = schemas.NoResponseSweepSummary()
        rules = self._repository.list_rules(kind="no_response")
        if not rules:
            return summary
        templates = self._repository.get_templates(
            {rule.template_id for rule in rules if rule.template_id is not None}
        )
        for conversation in self._conversations.list_open():
            last = self._conversations.list_messages(conversation.id, limit=1)
            if not last or last[0].sender_kind != SenderKind.CONTACT:
                continue
            summary.checked += 1
            contact = self._contacts.get_contact(conversation.contact_id)
            if contact is None:
                continue
            elapsed = (now - last[0].created_at).total_seconds() / 60
            rule_match = match(
                NoResponseEvent(minutes_elapsed=elapsed), rules, templates, contact_variables(contact)
            )
            if rule_match is None:
                continue
            if self._repository.has_log(rule_match.rule.id, contact.id, since=last[0].created_at):
                continue
            outcome = self._deliver(
                rule_match, contact, details={"minutes_elapsed": round(elapsed, 1)}
            )
            summary.results.append(outcome)
            if outcome.status == "sent":
                summary.sent += 1
            else:
                summary.failed += 1
        return summary

    def notify_ticket(
        self, ticket: Ticket, event_type: str, old_status: Optional[str] = None
    ) -> schemas.AutomationOutcome:
        contact = self._contacts.get_contact(ticket.contact_id) if ticket.contact_id else None
        if contact is None or not contact.address:
            logger.info("Ticket %s has no contact to notify", ticket.id)
            return schemas.AutomationOutcome(status="skipped", error="No contact to notify")

        variables = contact_variables(contact, ticket_variables(ticket, old_status))
        details = {"ticket_id": str(ticket.id), "event": event_type}
        if event_type == "created":
            rule_match = self.evaluate(TicketCreatedEvent(event="created"), variables)
            if rule_match is not None and rule_match.body:
                return self._deliver(rule_match, contact, details=details)

        text = render(default_ticket_message(event_type), variables)
        result = self._send(contact, text, details)
        ticket_rules = self._repository.list_rules(kind="ticket_created")
        if ticket_rules:
            self.record(
                RuleMatch(rule=ticket_rules[0], body=text),
                contact.id,
                error=result.error,
                details=details,
            )
        return schemas.AutomationOutcome(
            status="sent" if result.delivered_to_channel else "failed",
            rule_id=ticket_rules[0].id if ticket_rules else None,
            contact_id=contact.id,
            message=text,
            error=result.error,
        )

    # ------------------------------------------------------------------
    # Helpers

    def _send(self, contact: Contact, body: str, details: Dict[str, Any]):
        conversation, _ = self._conversations.get_or_create_open(
            contact.id, datetime.now(timezone.utc)
        )
        return self._messenger.deliver(
            conversation, contact, body, SenderKind.AUTOMATED, metadata={"automation": details}
        )

    def _deliver(
        self, rule_match: RuleMatch, contact: Contact, details: Dict[str, Any]
    ) -> schemas.AutomationOutcome:
        if not rule_match.body:
            logger.warning("Automation rule %s resolved to an empty message", rule_match.rule.id)
            return schemas.AutomationOutcome(
                status="skipped", rule_id=rule_match.rule.id, contact_id=contact.id
            )
        result = self._send(contact, rule_match.body, {"rule_id": str(rule_match.rule.id), **details})
        self.record(rule_match, contact.id, error=result.error, details=details)
        return schemas.AutomationOutcome(
            status="sent" if result.delivered_to_channel else "failed",
            rule_id=rule_match.rule.id,
            contact_id=contact.id,
            message=rule_match.body,
            error=result.error,
        )


__all__: List[str] = ["AutomationService", "TemplateNotFoundError"]
