import json
import logging
import tempfile
from pathlib import Path
from logging.handlers import TimedRotatingFileHandler

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from supportflow.app_logging import APP_LOGGER_NAME, JsonFormatter, _scrub, init_logging


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


@pytest.fixture
def log_dir(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("LOG_DIR", tmpdir)
        yield Path(tmpdir)


def test_timed_rotating_handler_configuration(log_dir, monkeypatch):
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    app_logger = _clear_handlers(APP_LOGGER_NAME)
    access_logger = _clear_handlers("uvicorn.access")

    init_logging()

    app_handler = next(
        h for h in app_logger.handlers if isinstance(h, TimedRotatingFileHandler)
    )
    assert app_handler.when == "MIDNIGHT"
    assert app_handler.backupCount == 5

    access_handler = next(
        h for h in access_logger.handlers if isinstance(h, TimedRotatingFileHandler)
    )
    assert access_handler.backupCount == 5

    app_logger.handlers.clear()
    access_logger.handlers.clear()


def test_init_logging_replaces_existing_access_handlers(log_dir):
    access_logger = _clear_handlers("uvicorn.access")
    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging(FastAPI())

    assert stream_handler not in access_logger.handlers
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)
    access_logger.handlers.clear()
    logging.getLogger(APP_LOGGER_NAME).handlers.clear()


def test_log_files_and_redaction(log_dir, app_factory):
    _clear_handlers(APP_LOGGER_NAME)
    _clear_handlers("uvicorn.access")
    app = app_factory(log_dir, log_request_bodies=True)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    logging.getLogger("supportflow.campaigns.dispatcher").info("hello dispatcher")

    with TestClient(app) as client:
        resp = client.post(
            "/echo",
            json={"token": "secret", "entry": [{"app_secret": "x", "value": 1}]},
            headers={"Authorization": "Bearer secret", "X-Hub-Signature-256": "sha256=abc"},
        )
        assert resp.status_code == 200
        client.get(
            "/api/webhooks/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "topsecret", "hub.challenge": "1"},
        )

    for logger in (app_logger, logging.getLogger("uvicorn.access")):
        for handler in logger.handlers:
            handler.flush()

    app_log = log_dir / "app.log"
    assert "hello dispatcher" in app_log.read_text()

    lines = (log_dir / "access.log").read_text().splitlines()
    echo = json.loads(lines[-2].split(": ", 1)[1])
    assert echo["headers"]["authorization"] == "***"
    assert echo["headers"]["x-hub-signature-256"] == "***"
    assert echo["body"]["token"] == "***"
    assert echo["body"]["entry"][0]["app_secret"] == "***"

    handshake = json.loads(lines[-1].split(": ", 1)[1])
    assert handshake["query"]["hub.verify_token"] == "***"
    assert handshake["query"]["hub.challenge"] == "1"
    assert "topsecret" not in lines[-1]

    app_logger.handlers.clear()
    logging.getLogger("uvicorn.access").handlers.clear()


def test_json_formatter_includes_logger_name():
    record = logging.LogRecord(
        "supportflow.ingestion", logging.WARNING, __file__, 1, "hello %s", ("world",), None
    )
    data = json.loads(JsonFormatter().format(record))
    assert data["logger"] == "supportflow.ingestion"
    assert data["message"] == "hello world"
    assert data["level"] == "WARNING"


def test_channel_addresses_are_masked():
    payload = {
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "contacts": [{"wa_id": "5511987654321"}],
                            "messages": [{"from": "5511987654321", "text": {"body": "hi"}}],
                        }
                    }
                ]
            }
        ]
    }
    value = _scrub(payload)["entry"][0]["changes"][0]["value"]
    assert value["contacts"][0]["wa_id"] == "*********4321"
    assert value["messages"][0]["from"] == "*********4321"
    assert value["messages"][0]["text"] == {"body": "hi"}
