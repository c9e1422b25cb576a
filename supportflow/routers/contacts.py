"""Contact address validation routes."""

from __future__ import annotations

from fastapi import APIRouter

from ..config import get_settings
from ..contacts.addresses import validate_addresses
from ..contacts.schemas import AddressBatchValidation, AddressValidationRequest
from ..dependencies import get_sender

router = APIRouter(prefix="/api/contacts", tags=["contacts"])


@router.post("/validate", response_model=AddressBatchValidation)
def validate_numbers(payload: AddressValidationRequest) -> AddressBatchValidation:
    """Check a batch of numbers locally and, with channel credentials, remotely."""

    sender = get_sender()
    return validate_addresses(
        payload.numbers,
        get_settings().default_country_code,
        check_exists=getattr(sender, "check_exists", None),
    )
