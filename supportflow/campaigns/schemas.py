"""Pydantic schemas for broadcast campaigns."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ..contacts.schemas import RecipientFilter


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RecipientStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    BLOCKED = "blocked"
    DELIVERED = "delivered"
    READ = "read"


BLOCKED_REASON = "frequency limit"
INTERRUPTED_REASON = "interrupted"


class RecipientInput(BaseModel):
    """Explicit recipient; ``variables`` override the contact's own fields."""

    address: str
    name: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)


class CampaignRequest(BaseModel):
    name: str
    message: str = Field(min_length=1)
    recipients: list[RecipientInput] = Field(default_factory=list)
    filter: RecipientFilter | None = None
    scheduled_at: datetime | None = None
    bypass_frequency: bool = False
    created_by: str | None = None

    @model_validator(mode="after")
    def _require_audience(self) -> "CampaignRequest":
        if not self.recipients and self.filter is None:
            raise ValueError("Provide recipients or a recipient filter")
        return self


class Campaign(BaseModel):
    id: UUID
    name: str
    message: str
    status: CampaignStatus = CampaignStatus.DRAFT
    scheduled_at: datetime | None = None
    bypass_frequency: bool = False
    created_by: str | None = None
    recipients_total: int = 0
    sent: int = 0
    delivered: int = 0
    read: int = 0
    responded: int = 0
    failed: int = 0
    blocked: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime


class CampaignRecipientCreate(BaseModel):
    address: str
    name: str | None = None
    contact_id: UUID | None = None
    variables: dict[str, Any] = Field(default_factory=dict)


class CampaignRecipient(CampaignRecipientCreate):
    id: UUID
    campaign_id: UUID
    status: RecipientStatus = RecipientStatus.PENDING
    external_id: str | None = None
    error: str | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    created_at: datetime


class CampaignSummary(BaseModel):
    """Outcome of a dispatch; ``failed`` excludes frequency blocks."""

    total: int = 0
    sent: int = 0
    failed: int = 0
    blocked: int = 0
    mock: int = 0
    failed_open: bool = False


class CampaignResult(BaseModel):
    campaign: Campaign
    summary: CampaignSummary | None = None
