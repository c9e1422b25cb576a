"""Pydantic schemas for contacts."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

AUTO_CAPTURED_TAG = "captured-from-channel"


class ContactCreate(BaseModel):
    address: str
    name: str
    role: str | None = None
    department: str | None = None
    registration_id: str | None = None
    email: str | None = None
    birth_date: date | None = None
    tags: list[str] = Field(default_factory=list)
    active: bool = True
    address_verified: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class Contact(ContactCreate):
    id: UUID
    last_message_at: datetime | None = None
    last_campaign_at: datetime | None = None
    messages_sent: int = 0
    created_at: datetime


class RecipientFilter(BaseModel):
    """Department/tag predicate used to pick campaign recipients."""

    department: str | None = None
    tags: list[str] = Field(default_factory=list)
    all: bool = False


class AddressValidationRequest(BaseModel):
    numbers: list[str] = Field(min_length=1)


class AddressCheckResult(BaseModel):
    number: str
    normalized: str
    valid: bool
    exists: bool | None = None
    error: str | None = None


class AddressBatchSummary(BaseModel):
    total: int = 0
    valid: int = 0
    invalid: int = 0
    verified: int = 0
    not_on_channel: int = 0
    unverified: int = 0


class AddressBatchValidation(BaseModel):
    results: list[AddressCheckResult]
    summary: AddressBatchSummary
