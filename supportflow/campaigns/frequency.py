"""Minimum spacing between bulk messages to the same contact."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from ..contacts.repository import ContactRepository

logger = logging.getLogger(__name__)


@dataclass
class FrequencyCheck:
    allowed: list[str] = field(default_factory=list)
    blocked: list[str] = field(default_factory=list)
    failed_open: bool = False


class FrequencyGuard:
    """Split recipients into allowed and blocked by their last contact time.

    A recipient is blocked when its last campaign or its last inbound message
    falls inside the window. When the lookup itself fails every recipient is
    allowed (fail open) and the check is flagged so callers can report it.
    """

    def __init__(self, contacts: ContactRepository, *, enabled: bool = True) -> None:
        self._contacts = contacts
        self.enabled = enabled

    def check(
        self,
        addresses: Sequence[str],
        window_hours: float,
        now: datetime | None = None,
    ) -> FrequencyCheck:
        recipients = list(addresses)
        if not self.enabled or window_hours <= 0 or not recipients:
            return FrequencyCheck(allowed=recipients)

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=window_hours)
        try:
            recent = self._contacts.find_recently_contacted(recipients, cutoff)
        except Exception:
            logger.exception(
                "Frequency lookup failed; allowing all %d recipients", len(recipients)
            )
            return FrequencyCheck(allowed=recipients, failed_open=True)

        result = FrequencyCheck()
        for address in recipients:
            (result.blocked if address in recent else result.allowed).append(address)
        if result.blocked:
            logger.info(
                "Frequency limit blocked %d of %d recipients (window=%sh)",
                len(result.blocked),
                len(recipients),
                window_hours,
            )
        return result

    def stamp_sent(self, addresses: Iterable[str], now: datetime | None = None) -> None:
        """Record the campaign time on recipients that actually received it."""

        sent = list(addresses)
        if sent:
            self._contacts.stamp_campaign(sent, now or datetime.now(timezone.utc))
