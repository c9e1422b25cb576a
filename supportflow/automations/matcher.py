"""Select the automation rule that applies to an event.

Rules are evaluated in list order (creation order) and the first active rule
whose trigger kind equals the event kind and whose condition holds wins. There
is no scoring and no multi-match. Finding nothing is a normal outcome.
"""

from __future__ import annotations

import calendar
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, ClassVar, Union
from uuid import UUID

from ..templating import render
from .schemas import AutomationRule, Template
from .triggers import (
    BusinessHours,
    BusinessHoursTrigger,
    KeywordTrigger,
    NoResponseTrigger,
    TicketCreatedTrigger,
)

DEFAULT_BODIES: Mapping[str, str] = {
    "new_contact": "Hello {{name}}! Welcome to our support service. How can I help you today?",
    "first_message": "Hello {{name}}! Welcome to our support service. How can I help you today?",
    "birthday": "Happy birthday, {{name}}! 🎂🎉",
}


@dataclass(frozen=True)
class KeywordEvent:
    kind: ClassVar[str] = "keyword"
    text: str


@dataclass(frozen=True)
class NewContactEvent:
    kind: ClassVar[str] = "new_contact"


@dataclass(frozen=True)
class FirstMessageEvent:
    kind: ClassVar[str] = "first_message"


@dataclass(frozen=True)
class NoResponseEvent:
    kind: ClassVar[str] = "no_response"
    minutes_elapsed: float


@dataclass(frozen=True)
class OutsideBusinessHoursEvent:
    kind: ClassVar[str] = "business_hours"
    now: datetime


@dataclass(frozen=True)
class TicketCreatedEvent:
    kind: ClassVar[str] = "ticket_created"
    event: str = "created"


@dataclass(frozen=True)
class BirthdayEvent:
    kind: ClassVar[str] = "birthday"
    date: date
    birth_date: date | None


TriggerEvent = Union[
    KeywordEvent,
    NewContactEvent,
    FirstMessageEvent,
    NoResponseEvent,
    OutsideBusinessHoursEvent,
    TicketCreatedEvent,
    BirthdayEvent,
]


@dataclass(frozen=True)
class RuleMatch:
    rule: AutomationRule
    body: str


def is_birthday(birth_date: date | None, today: date) -> bool:
    """Compare month and day; 29 February falls on 28 February in common years."""

    if birth_date is None:
        return False
    if (birth_date.month, birth_date.day) == (today.month, today.day):
        return True
    return (
        birth_date.month == 2
        and birth_date.day == 29
        and (today.month, today.day) == (2, 28)
        and not calendar.isleap(today.year)
    )


def outside_business_hours(window: BusinessHours, now: datetime) -> bool:
    weekday = (now.weekday() + 1) % 7  # Sunday=0
    if weekday not in window.days:
        return True
    current = now.time().replace(tzinfo=None)
    return current < window.start or current >= window.end


def trigger_applies(rule: AutomationRule, event: TriggerEvent) -> bool:
    trigger = rule.trigger
    if trigger.type != event.kind:
        return False
    if isinstance(trigger, KeywordTrigger) and isinstance(event, KeywordEvent):
        text = event.text.lower()
        return any(keyword in text for keyword in trigger.keywords)
    if isinstance(trigger, NoResponseTrigger) and isinstance(event, NoResponseEvent):
        return trigger.delay_minutes <= event.minutes_elapsed
    if isinstance(trigger, BusinessHoursTrigger) and isinstance(event, OutsideBusinessHoursEvent):
        return outside_business_hours(trigger.business_hours, event.now)
    if isinstance(trigger, TicketCreatedTrigger) and isinstance(event, TicketCreatedEvent):
        return trigger.event is None or trigger.event == event.event
    if isinstance(event, BirthdayEvent):
        return is_birthday(event.birth_date, event.date)
    return True


def resolve_body(
    rule: AutomationRule,
    templates: Mapping[UUID, Template] | None = None,
    variables: Mapping[str, Any] | None = None,
) -> str:
    """Render the rule's template when set, else its literal message."""

    body = None
    if rule.template_id is not None:
        template = (templates or {}).get(rule.template_id)
        if template is not None and template.active:
            body = template.content
    if body is None:
        body = rule.message or DEFAULT_BODIES.get(rule.kind, "")
    return render(body, variables)


def match(
    event: TriggerEvent,
    rules: Sequence[AutomationRule],
    templates: Mapping[UUID, Template] | None = None,
    variables: Mapping[str, Any] | None = None,
) -> RuleMatch | None:
    """Return the first active rule applying to ``event`` with its body."""

    for rule in rules:
        if rule.active and trigger_applies(rule, event):
            return RuleMatch(rule=rule, body=resolve_body(rule, templates, variables))
    return None
