"""Broadcast campaign API routes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from ..campaigns import schemas as campaign_schemas
from ..campaigns.dispatcher import CampaignStateError, NoRecipientsError
from ..campaigns.repository import CampaignNotFoundError
from ..dependencies import Services, open_services

router = APIRouter(tags=["campaigns"])


@contextmanager
def _service_context() -> Iterator[Services]:
    try:
        with open_services() as services:
            yield services
    except CampaignNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except CampaignStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except NoRecipientsError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post(
    "/api/campaigns",
    response_model=campaign_schemas.CampaignResult,
    status_code=status.HTTP_201_CREATED,
)
def create_campaign(payload: campaign_schemas.CampaignRequest) -> campaign_schemas.CampaignResult:
    """Create a campaign; it is dispatched now unless scheduled for later."""

    with _service_context() as services:
        return services.dispatcher.create(payload)


@router.post(
    "/api/campaigns/run-due",
    response_model=list[campaign_schemas.CampaignResult],
)
def run_due_campaigns(now: datetime | None = None) -> list[campaign_schemas.CampaignResult]:
    with _service_context() as services:
        return services.dispatcher.run_due(now or datetime.now(timezone.utc))


@router.post(
    "/api/campaigns/{campaign_id}/dispatch",
    response_model=campaign_schemas.CampaignSummary,
)
def dispatch_campaign(campaign_id: UUID) -> campaign_schemas.CampaignSummary:
    with _service_context() as services:
        return services.dispatcher.dispatch(campaign_id)


@router.post(
    "/api/campaigns/{campaign_id}/cancel",
    response_model=campaign_schemas.Campaign,
)
def cancel_campaign(campaign_id: UUID) -> campaign_schemas.Campaign:
    with _service_context() as services:
        return services.dispatcher.cancel(campaign_id)
