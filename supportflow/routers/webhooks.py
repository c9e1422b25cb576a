"""Webhook routes for the external messaging channel."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from ..channels import ChannelAdapter, get_adapter
from ..config import get_settings
from ..conversations.models import InboundMessage, StatusEvent
from ..dependencies import Services, open_services

router = APIRouter(tags=["webhooks"])

logger = logging.getLogger(__name__)


@contextmanager
def _service_context() -> Iterator[Services]:
    with open_services() as services:
        yield services


def _adapter(channel: str) -> ChannelAdapter:
    try:
        adapter_cls = get_adapter(channel)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return adapter_cls(country_code=get_settings().default_country_code)


@router.get("/api/webhooks/{channel}", response_class=PlainTextResponse)
def verify_webhook(channel: str, request: Request) -> PlainTextResponse:
    """Registration handshake: echo ``hub.challenge`` when the token matches."""

    adapter = _adapter(channel)
    challenge = adapter.verify_subscription(
        dict(request.query_params), get_settings().whatsapp_verify_token
    )
    if challenge is None:
        logger.warning("Webhook verification failed for channel %s", channel)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")
    return PlainTextResponse(challenge)


def _process(
    messages: list[InboundMessage], statuses: list[StatusEvent]
) -> dict[str, int]:
    counts = {"processed": 0, "duplicates": 0, "ignored": 0, "statuses": 0}
    with _service_context() as services:
        for inbound in messages:
            result = services.pipeline.handle_message(inbound)
            if result.duplicate:
                counts["duplicates"] += 1
            elif result.ignored:
                counts["ignored"] += 1
            else:
                counts["processed"] += 1
        for event in statuses:
            services.pipeline.handle_status(event)
            counts["statuses"] += 1
    return counts


@router.post("/api/webhooks/{channel}")
async def receive_webhook(channel: str, request: Request) -> Response:
    body = await request.body()
    try:
        payload = json.loads(body.decode("utf-8")) if body else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid JSON payload: {exc}") from exc

    adapter = _adapter(channel)
    if not adapter.verify_signature(body, request.headers, get_settings().whatsapp_app_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    messages = list(adapter.parse_incoming(payload))
    statuses = list(adapter.parse_statuses(payload))
    if not messages and not statuses:
        return Response(status_code=status.HTTP_200_OK)

    counts = await run_in_threadpool(_process, messages, statuses)
    return Response(content=json.dumps(counts), media_type="application/json")
