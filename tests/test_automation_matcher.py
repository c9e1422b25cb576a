from datetime import date, datetime, time, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from supportflow.automations.matcher import (
    BirthdayEvent,
    KeywordEvent,
    NewContactEvent,
    NoResponseEvent,
    OutsideBusinessHoursEvent,
    TicketCreatedEvent,
    is_birthday,
    match,
)
from supportflow.automations.schemas import AutomationRule, Template
from supportflow.automations.triggers import BusinessHours, parse_trigger


def _rule(trigger: dict, message: str | None = "reply", active: bool = True, **kwargs) -> AutomationRule:
    return AutomationRule(
        id=uuid4(),
        created_at=datetime.now(timezone.utc),
        name=kwargs.pop("name", "rule"),
        trigger=trigger,
        message=message,
        active=active,
        **kwargs,
    )


def test_keyword_rule_matches_case_insensitive_substring():
    rule = _rule({"type": "keyword", "keywords": ["Férias"]}, message="Leave policy: ...")
    result = match(KeywordEvent(text="Quero saber sobre FÉRIAS"), [rule])
    assert result is not None
    assert result.rule.id == rule.id
    assert result.body == "Leave policy: ..."


def test_first_active_rule_in_order_wins():
    inactive = _rule({"type": "keyword", "keywords": ["salary"]}, message="inactive", active=False)
    first = _rule({"type": "keyword", "keywords": ["salary"]}, message="first")
    second = _rule({"type": "keyword", "keywords": ["salary"]}, message="second")
    rules = [inactive, first, second]
    for _ in range(3):
        assert match(KeywordEvent(text="my salary"), rules).body == "first"


def test_no_match_is_none():
    rule = _rule({"type": "keyword", "keywords": ["vacation"]})
    assert match(KeywordEvent(text="hello"), [rule]) is None
    assert match(NewContactEvent(), [rule]) is None


def test_no_response_delay_must_have_elapsed():
    rule = _rule({"type": "no_response", "delay_minutes": 30})
    assert match(NoResponseEvent(minutes_elapsed=29.5), [rule]) is None
    assert match(NoResponseEvent(minutes_elapsed=30), [rule]) is not None


def test_business_hours_fires_only_outside_window():
    rule = _rule(
        {
            "type": "business_hours",
            "business_hours": {"start": "08:00", "end": "18:00", "days": [1, 2, 3, 4, 5]},
        }
    )
    monday_noon = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
    monday_night = datetime(2024, 3, 4, 19, 0, tzinfo=timezone.utc)
    sunday_noon = datetime(2024, 3, 3, 12, 0, tzinfo=timezone.utc)
    assert match(OutsideBusinessHoursEvent(now=monday_noon), [rule]) is None
    assert match(OutsideBusinessHoursEvent(now=monday_night), [rule]) is not None
    assert match(OutsideBusinessHoursEvent(now=sunday_noon), [rule]) is not None


def test_ticket_trigger_event_filter():
    created_only = _rule({"type": "ticket_created", "event": "created"})
    assert match(TicketCreatedEvent(event="created"), [created_only]) is not None
    assert match(TicketCreatedEvent(event="resolved"), [created_only]) is None


def test_birthday_matches_month_and_day():
    rule = _rule({"type": "birthday"}, message=None)
    event = BirthdayEvent(date=date(2024, 5, 17), birth_date=date(1990, 5, 17))
    result = match(event, [rule], variables={"name": "Ana"})
    assert result.body == "Happy birthday, Ana! 🎂🎉"
    assert match(BirthdayEvent(date=date(2024, 5, 18), birth_date=date(1990, 5, 17)), [rule]) is None


def test_leap_day_birthday_falls_on_28_february_in_common_years():
    assert is_birthday(date(2000, 2, 29), date(2023, 2, 28))
    assert not is_birthday(date(2000, 2, 29), date(2024, 2, 28))
    assert is_birthday(date(2000, 2, 29), date(2024, 2, 29))
    assert not is_birthday(None, date(2024, 2, 29))


def test_template_body_rendered_when_active():
    template = Template(
        id=uuid4(),
        created_at=datetime.now(timezone.utc),
        name="welcome",
        content="Welcome, {{name}}!",
    )
    rule = _rule({"type": "new_contact"}, message="literal", template_id=template.id)
    result = match(NewContactEvent(), [rule], {template.id: template}, {"name": "Bia"})
    assert result.body == "Welcome, Bia!"

    inactive = template.model_copy(update={"active": False})
    result = match(NewContactEvent(), [rule], {template.id: inactive}, {"name": "Bia"})
    assert result.body == "literal"


def test_invalid_trigger_configs_rejected_at_parse_time():
    with pytest.raises(ValidationError):
        parse_trigger({"type": "keyword", "keywords": ["  ", ""]})
    with pytest.raises(ValidationError):
        parse_trigger({"type": "no_response", "delay_minutes": 0})
    with pytest.raises(ValidationError):
        parse_trigger({"type": "unknown"})
    with pytest.raises(ValidationError):
        BusinessHours(start=time(18, 0), end=time(8, 0))
    with pytest.raises(ValidationError):
        BusinessHours(days=[7])


def test_keywords_normalised_on_parse():
    trigger = parse_trigger({"type": "keyword", "keywords": [" Férias ", "férias", "BENEFITS"]})
    assert trigger.keywords == ["férias", "benefits"]
