"""Bulk message dispatch with frequency gating and per-recipient outcomes."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from ..contacts.addresses import normalize_address
from ..contacts.repository import ContactRepository
from ..contacts.schemas import Contact
from ..channels.sender import OutboundSender
from ..templating import contact_variables, render
from . import schemas
from .frequency import FrequencyGuard
from .repository import CampaignNotFoundError, CampaignRepository
from .schemas import BLOCKED_REASON, CampaignStatus, RecipientStatus

logger = logging.getLogger(__name__)


class CampaignStateError(RuntimeError):
    """Raised when an operation does not fit the campaign's current status."""


class NoRecipientsError(ValueError):
    """Raised when a campaign resolves to an empty audience."""


def _recipient_variables(
    recipient: schemas.CampaignRecipient, contact: Contact | None
) -> dict[str, Any]:
    if contact is not None:
        return contact_variables(contact, recipient.variables)
    full_name = recipient.name or ""
    first = full_name.split()[0] if full_name.split() else ""
    return {"name": first, "full_name": full_name, "address": recipient.address, **recipient.variables}


class BroadcastDispatcher:
    """Create campaigns and push them through the outbound channel.

    Sends are sequential with a fixed pause between them. Every recipient is
    claimed (``pending`` -> ``sending``) before its send and ends in exactly
    one terminal status, so a restarted dispatch only touches recipients that
    were never attempted.
    """

    def __init__(
        self,
        campaigns: CampaignRepository,
        contacts: ContactRepository,
        sender: OutboundSender,
        guard: FrequencyGuard,
        *,
        window_hours: float = 24,
        send_delay_ms: int = 100,
        country_code: str = "55",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._campaigns = campaigns
        self._contacts = contacts
        self._sender = sender
        self._guard = guard
        self._window_hours = window_hours
        self._send_delay = send_delay_ms / 1000
        self._country_code = country_code
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Lifecycle

    def create(
        self, request: schemas.CampaignRequest, now: datetime | None = None
    ) -> schemas.CampaignResult:
        now = now or datetime.now(timezone.utc)
        recipients = self.resolve_recipients(request)
        if not recipients:
            raise NoRecipientsError("Campaign has no recipients")
        campaign = self._campaigns.create_campaign(request, recipients)
        logger.info("Campaign %s created with %d recipients", campaign.id, len(recipients))

        if request.scheduled_at and request.scheduled_at > now:
            campaign = self._campaigns.set_status(campaign.id, CampaignStatus.SCHEDULED)
            logger.info("Campaign %s scheduled for %s", campaign.id, request.scheduled_at.isoformat())
            return schemas.CampaignResult(campaign=campaign)

        summary = self.dispatch(campaign.id, now=now)
        return schemas.CampaignResult(campaign=self._get(campaign.id), summary=summary)

    def cancel(self, campaign_id: UUID) -> schemas.Campaign:
        campaign = self._get(campaign_id)
        if campaign.status not in (CampaignStatus.DRAFT, CampaignStatus.SCHEDULED):
            raise CampaignStateError(
                f"Campaign {campaign_id} cannot be cancelled while {campaign.status.value}"
            )
        logger.info("Campaign %s cancelled", campaign_id)
        return self._campaigns.set_status(campaign_id, CampaignStatus.CANCELLED)

    def run_due(self, now: datetime | None = None) -> list[schemas.CampaignResult]:
        """Dispatch every scheduled campaign whose time has come."""

        now = now or datetime.now(timezone.utc)
        results = []
        for campaign in self._campaigns.list_due(now):
            summary = self.dispatch(campaign.id, now=now)
            results.append(schemas.CampaignResult(campaign=self._get(campaign.id), summary=summary))
        return results

    # ------------------------------------------------------------------
    # Dispatch

    def dispatch(self, campaign_id: UUID, now: datetime | None = None) -> schemas.CampaignSummary:
        campaign = self._get(campaign_id)
        if campaign.status in (CampaignStatus.COMPLETED, CampaignStatus.CANCELLED):
            raise CampaignStateError(
                f"Campaign {campaign_id} is already {campaign.status.value}"
            )
        now = now or datetime.now(timezone.utc)
        if campaign.status == CampaignStatus.SENDING:
            interrupted = self._campaigns.fail_interrupted(campaign_id)
            if interrupted:
                logger.warning(
                    "Campaign %s resumed: %d recipients interrupted mid-send marked failed",
                    campaign_id,
                    interrupted,
                )
        self._campaigns.set_status(campaign_id, CampaignStatus.SENDING, started_at=now)

        pending = self._campaigns.list_recipients(campaign_id, RecipientStatus.PENDING)
        summary = schemas.CampaignSummary()
        allowed_addresses = {r.address for r in pending}
        if not campaign.bypass_frequency:
            check = self._guard.check([r.address for r in pending], self._window_hours, now=now)
            summary.failed_open = check.failed_open
            allowed_addresses = set(check.allowed)

        contacts = self._contacts.get_by_addresses({r.address for r in pending})
        delivered: list[str] = []
        attempted = 0
        for recipient in pending:
            if recipient.address not in allowed_addresses:
                self._campaigns.mark_recipient(
                    recipient.id, RecipientStatus.BLOCKED, error=BLOCKED_REASON
                )
                continue
            if not self._campaigns.claim_recipient(recipient.id):
                continue
            if attempted and self._send_delay:
                self._sleep(self._send_delay)
            attempted += 1

            body = render(campaign.message, _recipient_variables(recipient, contacts.get(recipient.address)))
            try:
                result = self._sender.send(recipient.address, body)
            except Exception as exc:
                logger.error(
                    "Campaign %s: send to %s failed: %s", campaign_id, recipient.address, exc
                )
                self._campaigns.mark_recipient(
                    recipient.id, RecipientStatus.FAILED, error=str(exc)
                )
                continue
            self._campaigns.mark_recipient(
                recipient.id,
                RecipientStatus.SENT,
                at=datetime.now(timezone.utc),
                external_id=result.external_id,
            )
            delivered.append(recipient.address)
            if result.mock:
                summary.mock += 1
            contact = contacts.get(recipient.address)
            if contact is not None:
                self._contacts.record_outbound(contact.id)

        self._guard.stamp_sent(delivered, now)
        self._campaigns.refresh_counters(campaign_id)
        campaign = self._campaigns.set_status(
            campaign_id, CampaignStatus.COMPLETED, completed_at=datetime.now(timezone.utc)
        )
        summary.total = campaign.recipients_total
        summary.sent = campaign.sent
        summary.blocked = campaign.blocked
        summary.failed = campaign.failed - campaign.blocked
        logger.info(
            "Campaign %s completed: %d sent, %d failed, %d blocked",
            campaign_id,
            summary.sent,
            summary.failed,
            summary.blocked,
        )
        return summary

    # ------------------------------------------------------------------
    # Helpers

    def resolve_recipients(
        self, request: schemas.CampaignRequest
    ) -> list[schemas.CampaignRecipientCreate]:
        """Explicit recipients (deduplicated by address) or the filter's contacts."""

        if request.recipients:
            seen: dict[str, schemas.RecipientInput] = {}
            for item in request.recipients:
                address = normalize_address(item.address, self._country_code)
                if address and address not in seen:
                    seen[address] = item
            known = self._contacts.get_by_addresses(seen)
            return [
                schemas.CampaignRecipientCreate(
                    address=address,
                    name=item.name or (known[address].name if address in known else None),
                    contact_id=known[address].id if address in known else None,
                    variables=item.variables,
                )
                for address, item in seen.items()
            ]
        contacts = self._contacts.list_matching(request.filter)
        return [
            schemas.CampaignRecipientCreate(
                address=contact.address, name=contact.name, contact_id=contact.id
            )
            for contact in contacts
        ]

    def _get(self, campaign_id: UUID) -> schemas.Campaign:
        campaign = self._campaigns.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        return campaign
