"""Channel address normalization.

Addresses are stored in a canonical digit-only international form so that the
same phone number typed in different ways resolves to one contact.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .schemas import AddressBatchSummary, AddressBatchValidation, AddressCheckResult

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class AddressValidation:
    address: str
    normalized: str
    valid: bool
    error: str | None = None


def normalize_address(raw: str, country_code: str = "55") -> str:
    """Return the canonical digit-only form of ``raw``.

    Leading zeros are dropped, the country code is prefixed to national
    numbers (at most 11 digits) that lack it and a 12 digit Brazilian mobile
    number (local part starting with 6-9) gets its ninth digit inserted.
    """

    cleaned = _NON_DIGITS.sub("", raw or "").lstrip("0")
    if not cleaned:
        return ""
    if country_code and len(cleaned) <= 11 and not cleaned.startswith(country_code):
        cleaned = country_code + cleaned
    if country_code == "55" and len(cleaned) == 12 and cleaned[4] in "6789":
        cleaned = cleaned[:4] + "9" + cleaned[4:]
    return cleaned


def validate_address(raw: str, country_code: str = "55") -> AddressValidation:
    """Apply basic length and area-code checks to ``raw``."""

    digits = _NON_DIGITS.sub("", raw or "")
    normalized = normalize_address(raw, country_code)
    if len(digits) < 10:
        return AddressValidation(raw, normalized, False, "number too short")
    if len(digits) > 15:
        return AddressValidation(raw, normalized, False, "number too long")
    if digits.startswith("55"):
        national = digits[2:]
        area_code = int(national[:2])
        if area_code < 11 or area_code > 99:
            return AddressValidation(raw, normalized, False, "invalid area code")
        local = national[2:]
        if len(local) < 8 or len(local) > 9:
            return AddressValidation(raw, normalized, False, "invalid local number")
    return AddressValidation(raw, normalized, True)


ExistenceCheck = Callable[[str], bool | None]


def validate_addresses(
    numbers: Iterable[str],
    country_code: str = "55",
    check_exists: ExistenceCheck | None = None,
) -> AddressBatchValidation:
    """Validate a batch of raw numbers.

    ``check_exists`` is only asked about numbers that pass the local checks;
    ``exists`` stays ``None`` when no check is available or it cannot answer.
    """

    results: list[AddressCheckResult] = []
    for number in numbers:
        check = validate_address(number, country_code)
        exists = check_exists(check.normalized) if check.valid and check_exists else None
        results.append(
            AddressCheckResult(
                number=number,
                normalized=check.normalized,
                valid=check.valid,
                exists=exists,
                error=check.error,
            )
        )
    summary = AddressBatchSummary(
        total=len(results),
        valid=sum(1 for r in results if r.valid),
        invalid=sum(1 for r in results if not r.valid),
        verified=sum(1 for r in results if r.exists is True),
        not_on_channel=sum(1 for r in results if r.exists is False),
        unverified=sum(1 for r in results if r.exists is None),
    )
    logger.info(
        "Validated %d addresses: %d valid, %d verified", summary.total, summary.valid, summary.verified
    )
    return AddressBatchValidation(results=results, summary=summary)
