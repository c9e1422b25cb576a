from datetime import datetime, timedelta, timezone

from supportflow.campaigns.frequency import FrequencyGuard
from supportflow.contacts.repository import InMemoryContactRepository
from supportflow.contacts.schemas import ContactCreate

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _repo_with(**stamps) -> InMemoryContactRepository:
    repo = InMemoryContactRepository()
    repo.add(ContactCreate(address="551100000001", name="Recent"), **stamps)
    repo.add(ContactCreate(address="551100000002", name="Quiet"))
    return repo


def test_recent_campaign_blocks_within_window():
    repo = _repo_with(last_campaign_at=NOW - timedelta(hours=2))
    guard = FrequencyGuard(repo)

    result = guard.check(["551100000001", "551100000002"], 24, now=NOW)
    assert result.blocked == ["551100000001"]
    assert result.allowed == ["551100000002"]

    result = guard.check(["551100000001", "551100000002"], 1, now=NOW)
    assert result.blocked == []
    assert result.allowed == ["551100000001", "551100000002"]


def test_recent_inbound_message_also_blocks():
    repo = _repo_with(last_message_at=NOW - timedelta(hours=5))
    result = FrequencyGuard(repo).check(["551100000001"], 6, now=NOW)
    assert result.blocked == ["551100000001"]


def test_partition_is_complete_and_disjoint():
    repo = _repo_with(last_campaign_at=NOW - timedelta(minutes=10))
    recipients = ["551100000002", "551100000001", "551199999999"]
    result = FrequencyGuard(repo).check(recipients, 24, now=NOW)
    assert set(result.allowed) | set(result.blocked) == set(recipients)
    assert not set(result.allowed) & set(result.blocked)
    assert result.allowed == ["551100000002", "551199999999"]


def test_disabled_or_zero_window_is_identity():
    repo = _repo_with(last_campaign_at=NOW)
    recipients = ["551100000001", "551100000002"]
    assert FrequencyGuard(repo, enabled=False).check(recipients, 24, now=NOW).allowed == recipients
    assert FrequencyGuard(repo).check(recipients, 0, now=NOW).allowed == recipients


class _BrokenRepository(InMemoryContactRepository):
    def find_recently_contacted(self, addresses, cutoff):
        raise ConnectionError("database unavailable")


def test_lookup_failure_fails_open(caplog):
    guard = FrequencyGuard(_BrokenRepository())
    with caplog.at_level("ERROR"):
        result = guard.check(["551100000001"], 24, now=NOW)
    assert result.allowed == ["551100000001"]
    assert result.blocked == []
    assert result.failed_open is True
    assert "Frequency lookup failed" in caplog.text


def test_stamp_sent_only_touches_given_addresses():
    repo = _repo_with()
    FrequencyGuard(repo).stamp_sent(["551100000002"], NOW)
    stamped = repo.get_by_addresses(["551100000001", "551100000002"])
    assert stamped["551100000002"].last_campaign_at == NOW
    assert stamped["551100000001"].last_campaign_at is None
