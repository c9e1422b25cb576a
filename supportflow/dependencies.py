"""Service wiring shared by the HTTP routers and background tasks."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from uuid import UUID

import psycopg
from fastapi import HTTPException

from .automations.repository import AutomationRepository, PostgresAutomationRepository
from .automations.service import AutomationService
from .campaigns.dispatcher import BroadcastDispatcher
from .campaigns.frequency import FrequencyGuard
from .campaigns.repository import CampaignRepository, PostgresCampaignRepository
from .channels.sender import OutboundSender, build_sender
from .config import Settings, get_settings
from .contacts.repository import ContactRepository, PostgresContactRepository
from .conversations.outbound import OutboundMessenger
from .conversations.repository import ConversationRepository, PostgresConversationRepository
from .conversations.service import ConversationService
from .core.db import DatabaseNotConfiguredError, get_conn, transaction
from .ingestion.pipeline import ContactTrigger, IngestionPipeline
from .responder.service import AutomatedResponder, build_responder
from .tasks import BackgroundTaskRunner

logger = logging.getLogger(__name__)


@dataclass
class Services:
    contacts: ContactRepository
    conversations: ConversationRepository
    automation_store: AutomationRepository
    campaign_store: CampaignRepository
    automations: AutomationService
    inbox: ConversationService
    dispatcher: BroadcastDispatcher
    pipeline: IngestionPipeline


def build_services(
    contacts: ContactRepository,
    conversations: ConversationRepository,
    automation_store: AutomationRepository,
    campaign_store: CampaignRepository,
    *,
    settings: Settings,
    sender: OutboundSender,
    responder: AutomatedResponder,
    tasks: BackgroundTaskRunner,
    contact_trigger: ContactTrigger | None = None,
    checkpoint: Callable[[], None] | None = None,
) -> Services:
    """Assemble every service over the given stores."""

    messenger = OutboundMessenger(conversations, contacts, sender)
    automations = AutomationService(
        automation_store,
        contacts,
        conversations,
        messenger,
        send_delay_ms=settings.campaign_send_delay_ms,
    )
    dispatcher = BroadcastDispatcher(
        campaign_store,
        contacts,
        sender,
        FrequencyGuard(contacts, enabled=settings.frequency_limit_enabled),
        window_hours=settings.frequency_limit_hours,
        send_delay_ms=settings.campaign_send_delay_ms,
        country_code=settings.default_country_code,
    )
    pipeline = IngestionPipeline(
        contacts,
        conversations,
        automations,
        responder,
        messenger,
        tasks,
        campaigns=campaign_store,
        contact_trigger=contact_trigger,
        checkpoint=checkpoint,
        country_code=settings.default_country_code,
        history_limit=settings.responder_history_limit,
        business_timezone=settings.business_timezone,
    )
    return Services(
        contacts=contacts,
        conversations=conversations,
        automation_store=automation_store,
        campaign_store=campaign_store,
        automations=automations,
        inbox=ConversationService(conversations, contacts, messenger),
        dispatcher=dispatcher,
        pipeline=pipeline,
    )


@lru_cache(maxsize=1)
def get_sender() -> OutboundSender:
    return build_sender(get_settings())


@lru_cache(maxsize=1)
def get_responder() -> AutomatedResponder:
    return build_responder(get_settings())


@lru_cache(maxsize=1)
def get_task_runner() -> BackgroundTaskRunner:
    return BackgroundTaskRunner(max_workers=get_settings().background_workers)


def reset_dependencies() -> None:
    """Drop cached clients; useful in tests when settings change."""

    get_sender.cache_clear()
    get_responder.cache_clear()
    get_task_runner.cache_clear()


def build_postgres_services(conn: psycopg.Connection, settings: Settings | None = None) -> Services:
    settings = settings or get_settings()
    return build_services(
        PostgresContactRepository(conn),
        PostgresConversationRepository(conn),
        PostgresAutomationRepository(conn),
        PostgresCampaignRepository(conn),
        settings=settings,
        sender=get_sender(),
        responder=get_responder(),
        tasks=get_task_runner(),
        contact_trigger=run_contact_trigger,
        checkpoint=conn.commit,
    )


def run_contact_trigger(kind: str, contact_id: UUID) -> None:
    """Welcome automation on its own connection; runs in a worker thread."""

    with transaction() as conn:
        outcome = build_postgres_services(conn).automations.run_contact_trigger(kind, contact_id)
    logger.info("Contact trigger %s for %s finished: %s", kind, contact_id, outcome.status)


@contextmanager
def open_services() -> Iterator[Services]:
    """Yield services over one connection, committing on success."""

    try:
        conn = get_conn()
    except DatabaseNotConfiguredError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except psycopg.Error as exc:  # pragma: no cover - depends on database
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    try:
        yield build_postgres_services(conn)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
