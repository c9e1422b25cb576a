"""Database helpers for psycopg connections."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import psycopg

from ..config import get_settings

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "schema.sql"


class DatabaseNotConfiguredError(RuntimeError):
    """Raised when ``DATABASE_URL`` is missing."""


def get_conn(dsn: str | None = None) -> psycopg.Connection:
    """Open a connection to ``dsn`` or the configured ``DATABASE_URL``."""

    effective = dsn or get_settings().database_url
    if not effective:
        raise DatabaseNotConfiguredError("DATABASE_URL not configured")
    return psycopg.connect(effective)


@contextmanager
def transaction(dsn: str | None = None) -> Iterator[psycopg.Connection]:
    """Yield a connection committed on success and rolled back on error."""

    conn = get_conn(dsn)
    try:
        yield conn
        conn.commit()
    except Exception:
        logger.exception("Rolling back failed transaction")
        conn.rollback()
        raise
    finally:
        conn.close()


def ensure_schema(conn: psycopg.Connection, schema_sql_path: Path = SCHEMA_PATH) -> None:
    """Create missing tables and indexes.

    ``schema.sql`` only uses ``IF NOT EXISTS`` statements, so this can run on
    every start.
    """

    with conn.cursor() as cur:
        cur.execute(schema_sql_path.read_text(encoding="utf-8"))
    conn.commit()
