from datetime import datetime, timedelta, timezone

import pytest

from supportflow.campaigns.dispatcher import CampaignStateError, NoRecipientsError
from supportflow.campaigns.schemas import (
    CampaignRequest,
    CampaignStatus,
    RecipientStatus,
)
from supportflow.contacts.schemas import ContactCreate, RecipientFilter
from supportflow.conversations.models import DeliveryStatus, StatusEvent

ADDRESSES = ["5511900000001", "5511900000002", "5511900000003"]


def _add_contacts(services, **overrides):
    return [
        services.contacts.add(
            ContactCreate(address=address, name=f"Person {i} Silva", department="HR"), **overrides
        )
        for i, address in enumerate(ADDRESSES, start=1)
    ]


def _request(**kwargs) -> CampaignRequest:
    return CampaignRequest(
        name="Benefits",
        message="Hi {{name}}, new benefits for {{department}}!",
        recipients=[{"address": address} for address in ADDRESSES],
        **kwargs,
    )


def test_second_send_failure_is_isolated(services, sender):
    _add_contacts(services)
    sender.fail_on.add(ADDRESSES[1])

    result = services.dispatcher.create(_request())

    summary = result.summary
    assert (summary.total, summary.sent, summary.failed, summary.blocked) == (3, 2, 1, 0)
    assert result.campaign.status == CampaignStatus.COMPLETED
    statuses = {
        r.address: r.status
        for r in services.campaign_store.list_recipients(result.campaign.id)
    }
    assert statuses == {
        ADDRESSES[0]: RecipientStatus.SENT,
        ADDRESSES[1]: RecipientStatus.FAILED,
        ADDRESSES[2]: RecipientStatus.SENT,
    }
    assert sender.sent[0] == (ADDRESSES[0], "Hi Person, new benefits for HR!")


def test_frequency_blocks_count_as_failures_on_campaign(services, sender):
    now = datetime.now(timezone.utc)
    contacts = _add_contacts(services)
    services.contacts.stamp_campaign([contacts[0].address], now - timedelta(hours=1))

    result = services.dispatcher.create(_request(), now=now)

    assert result.summary.sent == 2
    assert result.summary.blocked == 1
    assert result.summary.failed == 0
    assert result.campaign.failed == 1
    assert result.campaign.blocked == 1
    assert [address for address, _ in sender.sent] == ADDRESSES[1:]
    stamped = services.contacts.get_by_addresses(ADDRESSES)
    assert stamped[ADDRESSES[1]].last_campaign_at == now


def test_bypass_frequency_sends_everyone(services, sender):
    now = datetime.now(timezone.utc)
    _add_contacts(services, last_campaign_at=now)
    result = services.dispatcher.create(_request(bypass_frequency=True), now=now)
    assert result.summary.sent == 3
    assert result.summary.blocked == 0


def test_scheduled_campaign_waits_and_can_be_cancelled(services, sender):
    _add_contacts(services)
    later = datetime.now(timezone.utc) + timedelta(hours=3)

    result = services.dispatcher.create(_request(scheduled_at=later))

    assert result.summary is None
    assert result.campaign.status == CampaignStatus.SCHEDULED
    assert sender.sent == []
    cancelled = services.dispatcher.cancel(result.campaign.id)
    assert cancelled.status == CampaignStatus.CANCELLED
    with pytest.raises(CampaignStateError):
        services.dispatcher.cancel(result.campaign.id)
    with pytest.raises(CampaignStateError):
        services.dispatcher.dispatch(result.campaign.id)


def test_run_due_dispatches_scheduled_campaigns(services, sender):
    _add_contacts(services)
    later = datetime.now(timezone.utc) + timedelta(hours=3)
    scheduled = services.dispatcher.create(_request(scheduled_at=later)).campaign

    assert services.dispatcher.run_due(later - timedelta(minutes=1)) == []
    results = services.dispatcher.run_due(later + timedelta(minutes=1))

    assert [r.campaign.id for r in results] == [scheduled.id]
    assert results[0].summary.sent == 3


def test_completed_campaign_cannot_be_cancelled(services):
    _add_contacts(services)
    result = services.dispatcher.create(_request())
    with pytest.raises(CampaignStateError):
        services.dispatcher.cancel(result.campaign.id)


def test_filter_selects_active_contacts(services, sender):
    _add_contacts(services)
    services.contacts.add(ContactCreate(address="5511900000009", name="Other", department="IT"))
    services.contacts.add(
        ContactCreate(address="5511900000010", name="Gone", department="HR", active=False)
    )
    request = CampaignRequest(
        name="HR only", message="Hello {{name}}", filter=RecipientFilter(department="HR")
    )
    result = services.dispatcher.create(request)
    assert result.summary.total == 3
    assert sorted(address for address, _ in sender.sent) == ADDRESSES


def test_empty_audience_rejected(services):
    request = CampaignRequest(name="Nobody", message="x", filter=RecipientFilter(department="None"))
    with pytest.raises(NoRecipientsError):
        services.dispatcher.create(request)


def test_request_needs_an_audience():
    with pytest.raises(ValueError):
        CampaignRequest(name="x", message="y")


def test_restart_marks_interrupted_recipients_failed(services, sender):
    _add_contacts(services)
    later = datetime.now(timezone.utc) + timedelta(hours=1)
    campaign = services.dispatcher.create(_request(scheduled_at=later)).campaign
    store = services.campaign_store
    first = store.list_recipients(campaign.id)[0]
    # Simulate a crash after the first recipient was claimed.
    store.set_status(campaign.id, CampaignStatus.SENDING)
    assert store.claim_recipient(first.id)

    summary = services.dispatcher.dispatch(campaign.id)

    assert summary.sent == 2
    assert summary.failed == 1
    failed = store.list_recipients(campaign.id, RecipientStatus.FAILED)
    assert [(r.id, r.error) for r in failed] == [(first.id, "interrupted")]
    assert first.address not in [address for address, _ in sender.sent]


def test_explicit_recipients_are_normalised_and_deduplicated(services, sender):
    request = CampaignRequest(
        name="Dedup",
        message="Hi {{name}} {{code}}",
        recipients=[
            {"address": "(11) 90000-0001", "name": "Ana Lima", "variables": {"code": "A1"}},
            {"address": "+55 11 90000-0001"},
        ],
    )
    result = services.dispatcher.create(request)
    assert result.summary.total == 1
    assert sender.sent == [("5511900000001", "Hi Ana A1")]


def test_delivery_receipts_update_counters(services, sender):
    _add_contacts(services)
    result = services.dispatcher.create(_request())
    recipient = services.campaign_store.list_recipients(result.campaign.id)[0]

    services.pipeline.handle_status(
        StatusEvent(channel="whatsapp", external_id=recipient.external_id, status=DeliveryStatus.READ)
    )
    services.pipeline.handle_status(
        StatusEvent(
            channel="whatsapp", external_id=recipient.external_id, status=DeliveryStatus.DELIVERED
        )
    )
    campaign = services.campaign_store.get_campaign(result.campaign.id)
    assert campaign.read == 1
    assert campaign.delivered == 1
    assert campaign.sent == 3


def test_late_failed_receipt_keeps_sent_counter(services, sender):
    _add_contacts(services)
    result = services.dispatcher.create(_request())
    recipient = services.campaign_store.list_recipients(result.campaign.id)[0]

    status = services.pipeline.handle_status(
        StatusEvent(
            channel="whatsapp",
            external_id=recipient.external_id,
            status=DeliveryStatus.FAILED,
            error="Message undeliverable",
        )
    )

    assert status.campaign_recipient_updated is False
    campaign = services.campaign_store.get_campaign(result.campaign.id)
    assert campaign.sent == 3
    assert campaign.failed == 0
    stored = services.campaign_store.list_recipients(result.campaign.id)[0]
    assert stored.status == RecipientStatus.SENT
    assert stored.error == "Message undeliverable"
