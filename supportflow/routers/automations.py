"""Automation rule, template and sweep routes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime

from fastapi import APIRouter, HTTPException, status

from ..automations import schemas as automation_schemas
from ..automations.service import TemplateNotFoundError
from ..contacts.repository import ContactNotFoundError
from ..dependencies import Services, open_services
from ..tickets import TicketNotifyRequest

router = APIRouter(prefix="/api/automations", tags=["automations"])


@contextmanager
def _service_context() -> Iterator[Services]:
    try:
        with open_services() as services:
            yield services
    except ContactNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post(
    "/rules",
    response_model=automation_schemas.AutomationRule,
    status_code=status.HTTP_201_CREATED,
)
def create_rule(payload: automation_schemas.AutomationRuleCreate) -> automation_schemas.AutomationRule:
    with _service_context() as services:
        return services.automations.save_rule(payload)


@router.post(
    "/templates",
    response_model=automation_schemas.Template,
    status_code=status.HTTP_201_CREATED,
)
def create_template(payload: automation_schemas.TemplateCreate) -> automation_schemas.Template:
    with _service_context() as services:
        return services.automations.save_template(payload)


@router.post("/birthdays/run", response_model=automation_schemas.BirthdaySweepSummary)
def run_birthdays(today: date | None = None) -> automation_schemas.BirthdaySweepSummary:
    with _service_context() as services:
        return services.automations.run_birthday_sweep(today)


@router.post("/no-response/run", response_model=automation_schemas.NoResponseSweepSummary)
def run_no_response(now: datetime | None = None) -> automation_schemas.NoResponseSweepSummary:
    with _service_context() as services:
        return services.automations.run_no_response_sweep(now)


@router.post("/contacts/trigger", response_model=automation_schemas.AutomationOutcome)
def trigger_contact(payload: automation_schemas.ContactTriggerRequest) -> automation_schemas.AutomationOutcome:
    with _service_context() as services:
        return services.automations.run_contact_trigger(payload.trigger_type, payload.contact_id)


@router.post("/tickets/notify", response_model=automation_schemas.AutomationOutcome)
def notify_ticket(payload: TicketNotifyRequest) -> automation_schemas.AutomationOutcome:
    with _service_context() as services:
        return services.automations.notify_ticket(
            payload.ticket, payload.event_type, payload.old_status
        )
