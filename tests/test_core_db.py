"""Tests for database helpers."""

import pytest

from supportflow.config import reset_settings_cache
from supportflow.core.db import SCHEMA_PATH, DatabaseNotConfiguredError, ensure_schema, get_conn


class FakeCursor:
    def __init__(self, executed):
        self.executed = executed

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql):
        self.executed.append(sql)


class FakeConnection:
    def __init__(self):
        self.executed = []
        self.commits = 0

    def cursor(self):
        return FakeCursor(self.executed)

    def commit(self):
        self.commits += 1


def test_get_conn_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    reset_settings_cache()
    with pytest.raises(DatabaseNotConfiguredError):
        get_conn()
    reset_settings_cache()


def test_ensure_schema_runs_idempotent_script():
    conn = FakeConnection()
    ensure_schema(conn)
    [sql] = conn.executed
    assert conn.commits == 1
    assert "CREATE TABLE IF NOT EXISTS campaign_recipients" in sql
    assert "conversations_one_open_per_contact" in sql
    assert "DROP " not in sql.upper()


def test_schema_file_ships_with_package():
    assert SCHEMA_PATH.name == "schema.sql"
    assert SCHEMA_PATH.exists()
