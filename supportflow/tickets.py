"""Support tickets as seen by the notification automations."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, model_validator


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


SLA_HOURS = {
    TicketPriority.URGENT: 4,
    TicketPriority.HIGH: 8,
    TicketPriority.MEDIUM: 24,
    TicketPriority.LOW: 72,
}

STATUS_LABELS = {
    "open_ai": "Open (assistant)",
    "in_review": "In review",
    "pending": "Pending",
    "done": "Done",
}

PRIORITY_LABELS = {
    TicketPriority.LOW: "Low",
    TicketPriority.MEDIUM: "Medium",
    TicketPriority.HIGH: "High",
    TicketPriority.URGENT: "Urgent",
}

SLA_FORMAT = "%Y-%m-%d %H:%M UTC"

TicketEventType = Literal["created", "updated", "resolved"]


def sla_deadline(priority: TicketPriority | str, now: datetime | None = None) -> datetime:
    """Deadline derived from the priority; unknown priorities get 24 hours."""

    try:
        hours = SLA_HOURS[TicketPriority(priority)]
    except ValueError:
        hours = 24
    return (now or datetime.now(timezone.utc)) + timedelta(hours=hours)


class Ticket(BaseModel):
    id: UUID
    title: str
    status: str = "open_ai"
    priority: TicketPriority = TicketPriority.MEDIUM
    contact_id: UUID | None = None
    protocol: str | None = None
    created_at: datetime | None = None
    sla_deadline: datetime | None = None

    @model_validator(mode="after")
    def _default_sla(self) -> "Ticket":
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)
        if self.sla_deadline is None:
            self.sla_deadline = sla_deadline(self.priority, self.created_at)
        return self

    @property
    def protocol_code(self) -> str:
        return self.protocol or str(self.id)[:8].upper()


class TicketNotifyRequest(BaseModel):
    ticket: Ticket
    event_type: TicketEventType = "created"
    old_status: str | None = None


def status_label(status: str | None) -> str:
    return STATUS_LABELS.get(status or "", status or "")


def _format_deadline(deadline: datetime | None) -> str:
    if deadline is None:
        return ""
    if deadline.tzinfo is not None:
        deadline = deadline.astimezone(timezone.utc)
    return deadline.strftime(SLA_FORMAT)


def ticket_variables(ticket: Ticket, old_status: str | None = None) -> dict[str, str]:
    """Values for the ticket placeholders of the notification texts."""

    deadline = ticket.sla_deadline
    return {
        "protocol": ticket.protocol_code,
        "title": ticket.title,
        "priority": PRIORITY_LABELS[ticket.priority],
        "status": status_label(ticket.status),
        "old_status": status_label(old_status),
        "sla_deadline": _format_deadline(deadline),
    }


def default_ticket_message(event_type: str) -> str:
    """Notification template for a ticket event.

    Ticket fields stay placeholders so that text typed into a ticket is never
    itself treated as a template.
    """

    if event_type == "created":
        return (
            "📋 *Ticket opened*\n\n"
            "Hello {{name}}!\n\n"
            "Your request was registered.\n\n"
            "*Protocol:* {{protocol}}\n"
            "*Subject:* {{title}}\n"
            "*Priority:* {{priority}}\n"
            "*Status:* {{status}}\n"
            "*Expected answer by:* {{sla_deadline}}\n\n"
            "Follow the progress on this channel. We will answer soon!"
        )
    if event_type == "updated":
        return (
            "🔄 *Ticket updated*\n\n"
            "Hello {{name}}!\n\n"
            "Your ticket was updated.\n\n"
            "*Protocol:* {{protocol}}\n"
            "*Subject:* {{title}}\n"
            "*Previous status:* {{old_status}}\n"
            "*New status:* {{status}}\n\n"
            "We keep working on your request!"
        )
    if event_type == "resolved":
        return (
            "✅ *Ticket resolved*\n\n"
            "Hello {{name}}!\n\n"
            "Good news: your request was completed.\n\n"
            "*Protocol:* {{protocol}}\n"
            "*Subject:* {{title}}\n\n"
            "If you need anything else, just send us a message!"
        )
    return "📢 *Ticket notification*\n\nProtocol: {{protocol}}\nStatus: {{status}}"
