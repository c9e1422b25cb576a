"""Contact schemas, address normalization and persistence."""

from . import schemas
from .addresses import normalize_address, validate_address, validate_addresses
from .repository import (
    ContactNotFoundError,
    ContactRepository,
    InMemoryContactRepository,
    PostgresContactRepository,
)

__all__ = [
    "ContactNotFoundError",
    "ContactRepository",
    "InMemoryContactRepository",
    "PostgresContactRepository",
    "normalize_address",
    "schemas",
    "validate_address",
    "validate_addresses",
]
