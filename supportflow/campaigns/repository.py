"""Persistence for campaigns and their per-recipient outcomes."""
from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..conversations.models import DeliveryStatus, delivery_advances
from . import schemas
from .schemas import INTERRUPTED_REASON, CampaignStatus, RecipientStatus

_RECEIPT_STATUSES = {
    RecipientStatus.SENT: DeliveryStatus.SENT,
    RecipientStatus.DELIVERED: DeliveryStatus.DELIVERED,
    RecipientStatus.READ: DeliveryStatus.READ,
    RecipientStatus.FAILED: DeliveryStatus.FAILED,
}

_TIMESTAMP_FIELD = {
    RecipientStatus.SENT: "sent_at",
    RecipientStatus.DELIVERED: "delivered_at",
    RecipientStatus.READ: "read_at",
}


class CampaignNotFoundError(RuntimeError):
    """Raised when a campaign could not be located."""


def receipt_advances(current: RecipientStatus, new: DeliveryStatus) -> bool:
    """Whether a channel receipt may move a recipient from ``current``.

    Receipts only arrive for recipients the dispatcher already sent to, so a
    late ``failed`` receipt never undoes that outcome; the caller keeps its
    error text instead.
    """

    if DeliveryStatus(new) == DeliveryStatus.FAILED:
        return False
    previous = _RECEIPT_STATUSES.get(RecipientStatus(current))
    if previous is None:
        return False
    return delivery_advances(previous, new)


def tally(recipients: Iterable[schemas.CampaignRecipient]) -> Dict[str, int]:
    """Campaign counters derived from recipient statuses.

    ``failed`` counts hard failures plus frequency blocks; ``blocked`` repeats
    the blocks on their own.
    """

    counts = {"recipients_total": 0, "sent": 0, "delivered": 0, "read": 0, "failed": 0, "blocked": 0}
    for recipient in recipients:
        counts["recipients_total"] += 1
        status = recipient.status
        if status in (RecipientStatus.SENT, RecipientStatus.DELIVERED, RecipientStatus.READ):
            counts["sent"] += 1
        if status in (RecipientStatus.DELIVERED, RecipientStatus.READ):
            counts["delivered"] += 1
        if status == RecipientStatus.READ:
            counts["read"] += 1
        if status in (RecipientStatus.FAILED, RecipientStatus.BLOCKED):
            counts["failed"] += 1
        if status == RecipientStatus.BLOCKED:
            counts["blocked"] += 1
    return counts


class CampaignRepository(Protocol):
    def create_campaign(
        self, request: schemas.CampaignRequest, recipients: List[schemas.CampaignRecipientCreate]
    ) -> schemas.Campaign: ...

    def get_campaign(self, campaign_id: UUID) -> Optional[schemas.Campaign]: ...

    def list_due(self, now: datetime) -> List[schemas.Campaign]: ...

    def set_status(
        self,
        campaign_id: UUID,
        status: CampaignStatus,
        *,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ) -> schemas.Campaign: ...

    def list_recipients(
        self, campaign_id: UUID, status: Optional[RecipientStatus] = None
    ) -> List[schemas.CampaignRecipient]: ...

    def claim_recipient(self, recipient_id: UUID) -> bool: ...

    def mark_recipient(
        self,
        recipient_id: UUID,
        status: RecipientStatus,
        *,
        at: Optional[datetime] = None,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None: ...

    def fail_interrupted(self, campaign_id: UUID) -> int: ...

    def refresh_counters(self, campaign_id: UUID) -> schemas.Campaign: ...

    def record_receipt(
        self,
        external_id: str,
        status: DeliveryStatus,
        *,
        at: datetime,
        error: Optional[str] = None,
    ) -> Optional[schemas.CampaignRecipient]: ...


class PostgresCampaignRepository:
    """PostgreSQL implementation of :class:`CampaignRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def create_campaign(
        self, request: schemas.CampaignRequest, recipients: List[schemas.CampaignRecipientCreate]
    ) -> schemas.Campaign:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO campaigns
                    (name, message, status, scheduled_at, bypass_frequency, created_by,
                     recipients_total)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    request.name,
                    request.message,
                    CampaignStatus.DRAFT.value,
                    request.scheduled_at,
                    request.bypass_frequency,
                    request.created_by,
                    len(recipients),
                ),
            )
            campaign = cur.fetchone()
            cur.executemany(
                """
                INSERT INTO campaign_recipients
                    (campaign_id, contact_id, address, name, variables, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                [
                    (
                        campaign["id"],
                        recipient.contact_id,
                        recipient.address,
                        recipient.name,
                        Jsonb(recipient.variables),
                        RecipientStatus.PENDING.value,
                    )
                    for recipient in recipients
                ],
            )
        return schemas.Campaign(**campaign)

    def get_campaign(self, campaign_id: UUID) -> Optional[schemas.Campaign]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM campaigns WHERE id = %s", (campaign_id,))
            row = cur.fetchone()
        return schemas.Campaign(**row) if row else None

    def list_due(self, now: datetime) -> List[schemas.Campaign]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM campaigns
                WHERE status = %s AND scheduled_at <= %s
                ORDER BY scheduled_at
                """,
                (CampaignStatus.SCHEDULED.value, now),
            )
            rows = cur.fetchall()
        return [schemas.Campaign(**row) for row in rows]

    def set_status(
        self,
        campaign_id: UUID,
        status: CampaignStatus,
        *,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ) -> schemas.Campaign:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE campaigns
                SET status = %s,
                    started_at = coalesce(started_at, %s),
                    completed_at = coalesce(%s, completed_at),
                    updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (status.value, started_at, completed_at, campaign_id),
            )
            row = cur.fetchone()
        if not row:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        return schemas.Campaign(**row)

    def list_recipients(
        self, campaign_id: UUID, status: Optional[RecipientStatus] = None
    ) -> List[schemas.CampaignRecipient]:
        query = "SELECT * FROM campaign_recipients WHERE campaign_id = %s"
        params: List[Any] = [campaign_id]
        if status is not None:
            query += " AND status = %s"
            params.append(status.value)
        with self._cursor() as cur:
            cur.execute(query + " ORDER BY created_at, id", params)
            rows = cur.fetchall()
        return [schemas.CampaignRecipient(**row) for row in rows]

    def claim_recipient(self, recipient_id: UUID) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE campaign_recipients SET status = %s WHERE id = %s AND status = %s RETURNING id",
                (RecipientStatus.SENDING.value, recipient_id, RecipientStatus.PENDING.value),
            )
            claimed = cur.fetchone() is not None
        # The claim must survive a crash during the send that follows.
        self._conn.commit()
        return claimed

    def mark_recipient(
        self,
        recipient_id: UUID,
        status: RecipientStatus,
        *,
        at: Optional[datetime] = None,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        assignments = ["status = %s", "external_id = coalesce(%s, external_id)", "error = %s"]
        params: List[Any] = [status.value, external_id, error]
        stamp = _TIMESTAMP_FIELD.get(status)
        if stamp:
            assignments.append(f"{stamp} = %s")
            params.append(at or datetime.now(timezone.utc))
        params.append(recipient_id)
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE campaign_recipients SET {', '.join(assignments)} WHERE id = %s",
                params,
            )

    def fail_interrupted(self, campaign_id: UUID) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE campaign_recipients SET status = %s, error = %s
                WHERE campaign_id = %s AND status = %s
                """,
                (
                    RecipientStatus.FAILED.value,
                    INTERRUPTED_REASON,
                    campaign_id,
                    RecipientStatus.SENDING.value,
                ),
            )
            return cur.rowcount

    def refresh_counters(self, campaign_id: UUID) -> schemas.Campaign:
        counts = tally(self.list_recipients(campaign_id))
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE campaigns
                SET recipients_total = %(recipients_total)s, sent = %(sent)s,
                    delivered = %(delivered)s, read = %(read)s, failed = %(failed)s,
                    blocked = %(blocked)s, updated_at = now()
                WHERE id = %(id)s
                RETURNING *
                """,
                {**counts, "id": campaign_id},
            )
            row = cur.fetchone()
        if not row:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        return schemas.Campaign(**row)

    def record_receipt(
        self,
        external_id: str,
        status: DeliveryStatus,
        *,
        at: datetime,
        error: Optional[str] = None,
    ) -> Optional[schemas.CampaignRecipient]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM campaign_recipients WHERE external_id = %s FOR UPDATE",
                (external_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        recipient = schemas.CampaignRecipient(**row)
        if not receipt_advances(recipient.status, status):
            if status == DeliveryStatus.FAILED and error:
                with self._cursor() as cur:
                    cur.execute(
                        "UPDATE campaign_recipients SET error = %s WHERE id = %s RETURNING *",
                        (error, recipient.id),
                    )
                    row = cur.fetchone()
                return schemas.CampaignRecipient(**row) if row else recipient
            return recipient
        self.mark_recipient(
            recipient.id, RecipientStatus(status.value), at=at, error=error or recipient.error
        )
        self.refresh_counters(recipient.campaign_id)
        return self._get_recipient(recipient.id)

    def _get_recipient(self, recipient_id: UUID) -> Optional[schemas.CampaignRecipient]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM campaign_recipients WHERE id = %s", (recipient_id,))
            row = cur.fetchone()
        return schemas.CampaignRecipient(**row) if row else None


class InMemoryCampaignRepository(CampaignRepository):
    def __init__(self) -> None:
        self._campaigns: Dict[UUID, schemas.Campaign] = {}
        self._recipients: Dict[UUID, schemas.CampaignRecipient] = {}
        self._lock = threading.Lock()

    def create_campaign(
        self, request: schemas.CampaignRequest, recipients: List[schemas.CampaignRecipientCreate]
    ) -> schemas.Campaign:
        now = datetime.now(timezone.utc)
        campaign = schemas.Campaign(
            id=uuid4(),
            name=request.name,
            message=request.message,
            scheduled_at=request.scheduled_at,
            bypass_frequency=request.bypass_frequency,
            created_by=request.created_by,
            recipients_total=len(recipients),
            created_at=now,
        )
        self._campaigns[campaign.id] = campaign
        for recipient in recipients:
            record = schemas.CampaignRecipient(
                id=uuid4(), campaign_id=campaign.id, created_at=now, **recipient.model_dump()
            )
            self._recipients[record.id] = record
        return campaign.model_copy()

    def get_campaign(self, campaign_id: UUID) -> Optional[schemas.Campaign]:
        campaign = self._campaigns.get(campaign_id)
        return campaign.model_copy() if campaign else None

    def list_due(self, now: datetime) -> List[schemas.Campaign]:
        due = [
            c.model_copy()
            for c in self._campaigns.values()
            if c.status == CampaignStatus.SCHEDULED and c.scheduled_at and c.scheduled_at <= now
        ]
        due.sort(key=lambda c: c.scheduled_at)
        return due

    def set_status(
        self,
        campaign_id: UUID,
        status: CampaignStatus,
        *,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ) -> schemas.Campaign:
        campaign = self._campaigns.get(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        update: Dict[str, Any] = {"status": status}
        if started_at and not campaign.started_at:
            update["started_at"] = started_at
        if completed_at:
            update["completed_at"] = completed_at
        self._campaigns[campaign_id] = campaign.model_copy(update=update)
        return self._campaigns[campaign_id].model_copy()

    def list_recipients(
        self, campaign_id: UUID, status: Optional[RecipientStatus] = None
    ) -> List[schemas.CampaignRecipient]:
        return [
            r.model_copy()
            for r in self._recipients.values()
            if r.campaign_id == campaign_id and (status is None or r.status == status)
        ]

    def claim_recipient(self, recipient_id: UUID) -> bool:
        with self._lock:
            recipient = self._recipients[recipient_id]
            if recipient.status != RecipientStatus.PENDING:
                return False
            self._recipients[recipient_id] = recipient.model_copy(
                update={"status": RecipientStatus.SENDING}
            )
            return True

    def mark_recipient(
        self,
        recipient_id: UUID,
        status: RecipientStatus,
        *,
        at: Optional[datetime] = None,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        recipient = self._recipients[recipient_id]
        update: Dict[str, Any] = {"status": status, "error": error}
        if external_id:
            update["external_id"] = external_id
        stamp = _TIMESTAMP_FIELD.get(status)
        if stamp:
            update[stamp] = at or datetime.now(timezone.utc)
        self._recipients[recipient_id] = recipient.model_copy(update=update)

    def fail_interrupted(self, campaign_id: UUID) -> int:
        stuck = self.list_recipients(campaign_id, RecipientStatus.SENDING)
        for recipient in stuck:
            self.mark_recipient(recipient.id, RecipientStatus.FAILED, error=INTERRUPTED_REASON)
        return len(stuck)

    def refresh_counters(self, campaign_id: UUID) -> schemas.Campaign:
        campaign = self._campaigns.get(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        counts = tally(self.list_recipients(campaign_id))
        self._campaigns[campaign_id] = campaign.model_copy(update=counts)
        return self._campaigns[campaign_id].model_copy()

    def record_receipt(
        self,
        external_id: str,
        status: DeliveryStatus,
        *,
        at: datetime,
        error: Optional[str] = None,
    ) -> Optional[schemas.CampaignRecipient]:
        recipient = next(
            (r for r in self._recipients.values() if r.external_id == external_id), None
        )
        if recipient is None:
            return None
        if receipt_advances(recipient.status, status):
            self.mark_recipient(
                recipient.id, RecipientStatus(status.value), at=at, error=error or recipient.error
            )
            self.refresh_counters(recipient.campaign_id)
        elif status == DeliveryStatus.FAILED and error:
            self._recipients[recipient.id] = recipient.model_copy(update={"error": error})
        return self._recipients[recipient.id].model_copy()
