"""Pydantic schemas for automation rules, templates and logs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from .triggers import Trigger


class TemplateCreate(BaseModel):
    name: str
    content: str
    category: str = "other"
    active: bool = True
    variables: list[str] = Field(default_factory=list)


class Template(TemplateCreate):
    id: UUID
    created_at: datetime


class AutomationRuleCreate(BaseModel):
    name: str
    trigger: Trigger
    message: str | None = None
    template_id: UUID | None = None
    active: bool = True


class AutomationRule(AutomationRuleCreate):
    id: UUID
    created_at: datetime

    @property
    def kind(self) -> str:
        return self.trigger.type


class AutomationLogStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class AutomationLogCreate(BaseModel):
    rule_id: UUID
    contact_id: UUID
    status: AutomationLogStatus
    message: str | None = None
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class AutomationLog(AutomationLogCreate):
    id: UUID
    created_at: datetime


OutcomeStatus = Literal["sent", "already_sent", "failed", "no_rule", "skipped"]


class AutomationOutcome(BaseModel):
    status: OutcomeStatus
    rule_id: UUID | None = None
    contact_id: UUID | None = None
    message: str | None = None
    error: str | None = None


class BirthdaySweepSummary(BaseModel):
    total_birthdays: int = 0
    sent: int = 0
    already_sent: int = 0
    failed: int = 0
    results: list[AutomationOutcome] = Field(default_factory=list)


class NoResponseSweepSummary(BaseModel):
    checked: int = 0
    sent: int = 0
    failed: int = 0
    results: list[AutomationOutcome] = Field(default_factory=list)


class ContactTriggerRequest(BaseModel):
    contact_id: UUID
    trigger_type: Literal["new_contact", "first_message"]
