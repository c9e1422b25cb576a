"""Trigger configurations for automation rules.

Each trigger kind has its own model and the union is discriminated on
``type``, so a rule whose configuration does not fit its kind is rejected when
it is saved instead of surprising the matcher later.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import time
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator


class KeywordTrigger(BaseModel):
    type: Literal["keyword"] = "keyword"
    keywords: list[str]

    @field_validator("keywords")
    @classmethod
    def _normalise_keywords(cls, value: list[str]) -> list[str]:
        cleaned: list[str] = []
        for keyword in value:
            item = keyword.strip().lower()
            if item and item not in cleaned:
                cleaned.append(item)
        if not cleaned:
            raise ValueError("keyword trigger needs at least one keyword")
        return cleaned


class NewContactTrigger(BaseModel):
    type: Literal["new_contact"] = "new_contact"


class FirstMessageTrigger(BaseModel):
    type: Literal["first_message"] = "first_message"


class NoResponseTrigger(BaseModel):
    type: Literal["no_response"] = "no_response"
    delay_minutes: int = Field(gt=0)


class BusinessHours(BaseModel):
    """Opening window; days use Sunday=0 through Saturday=6."""

    start: time = time(8, 0)
    end: time = time(18, 0)
    days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5], min_length=1)

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(value))

    @model_validator(mode="after")
    def _check_window(self) -> "BusinessHours":
        if self.start >= self.end:
            raise ValueError("business hours start must be before end")
        return self


class BusinessHoursTrigger(BaseModel):
    type: Literal["business_hours"] = "business_hours"
    business_hours: BusinessHours = Field(default_factory=BusinessHours)


class TicketCreatedTrigger(BaseModel):
    type: Literal["ticket_created"] = "ticket_created"
    event: Literal["created", "updated", "resolved"] | None = None


class BirthdayTrigger(BaseModel):
    type: Literal["birthday"] = "birthday"


Trigger = Annotated[
    Union[
        KeywordTrigger,
        NewContactTrigger,
        FirstMessageTrigger,
        NoResponseTrigger,
        BusinessHoursTrigger,
        TicketCreatedTrigger,
        BirthdayTrigger,
    ],
    Field(discriminator="type"),
]

_TRIGGER_ADAPTER: TypeAdapter[Trigger] = TypeAdapter(Trigger)


def parse_trigger(config: Mapping[str, Any]) -> Trigger:
    """Validate a raw trigger configuration, raising ``ValueError`` on mismatch."""

    return _TRIGGER_ADAPTER.validate_python(dict(config))
