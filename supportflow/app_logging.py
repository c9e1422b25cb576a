"""Application and access logging setup.

- ``app.log`` receives every ``supportflow.*`` logger; ``access.log`` receives
  one JSON line per HTTP request. Both rotate at midnight.
- ``LOG_JSON=true`` switches both files to JSON lines.
- Webhook traffic carries customer phone numbers and the provider sends its
  verify token in the query string. Secrets are replaced with ``***`` and
  channel addresses keep only their last four digits before anything is
  written.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

APP_LOGGER_NAME = "supportflow"
ACCESS_LOGGER_NAME = "uvicorn.access"

SENSITIVE_FIELDS = {
    "authorization",
    "cookie",
    "set-cookie",
    "token",
    "access_token",
    "verify_token",
    "hub.verify_token",
    "x-hub-signature-256",
    "app_secret",
}

# Keys under which the channel puts customer addresses.
ADDRESS_FIELDS = {"from", "to", "wa_id", "recipient_id", "address"}

_SKIP_PATHS = {"/api/health", "/api/metrics"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


def mask_address(value: object) -> object:
    """Keep the last four characters of a channel address."""

    if not isinstance(value, str) or len(value) <= 4:
        return value
    return "*" * (len(value) - 4) + value[-4:]


def _scrub(data: object) -> object:
    """Recursively mask secrets and channel addresses in dicts and lists."""

    if isinstance(data, dict):
        scrubbed: dict[Any, object] = {}
        for key, value in data.items():
            name = str(key).lower()
            if name in SENSITIVE_FIELDS:
                scrubbed[key] = "***"
            elif name in ADDRESS_FIELDS:
                scrubbed[key] = mask_address(value)
            else:
                scrubbed[key] = _scrub(value)
        return scrubbed
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


async def _capture_body(request: Request) -> object | None:
    """Read the request body for logging and replay it to the route."""

    body_bytes = await request.body()

    async def receive() -> dict:  # pragma: no cover - internal
        return {"type": "http.request", "body": body_bytes, "more_body": False}

    request._receive = receive  # type: ignore[attr-defined]
    if not body_bytes:
        return None
    try:
        return _scrub(json.loads(body_bytes))
    except ValueError:
        return body_bytes.decode("utf-8", errors="replace")


def _install_access_logging(app: FastAPI) -> None:
    """Add the request id and access log middleware to ``app``."""

    log_request_bodies = os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true"
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in _SKIP_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        start = time.time()
        body_content = await _capture_body(request) if log_request_bodies else None

        response = await call_next(request)

        client_ip = request.headers.get("X-Forwarded-For")
        if not client_ip and request.client is not None:
            client_ip = request.client.host
        log_data: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 2),
            "client_ip": client_ip,
            "headers": _scrub(dict(request.headers)),
        }
        if request.query_params:
            log_data["query"] = _scrub(dict(request.query_params))
        if body_content is not None:
            log_data["body"] = body_content

        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(log_data, default=str, ensure_ascii=False))
        return response


def _rotating_handler(
    log_dir: str,
    filename: str,
    formatter: logging.Formatter,
    retention_days: int,
    rotate_utc: bool,
) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        os.path.join(log_dir, filename),
        when="midnight",
        backupCount=retention_days,
        utc=rotate_utc,
    )
    handler.setFormatter(formatter)
    return handler


def init_logging(app: FastAPI | None = None) -> None:
    """Attach file handlers to the app and access loggers.

    The app logger keeps existing handlers (repeated calls do not duplicate
    lines); the access logger's handlers are always replaced so uvicorn's
    default console output does not double every request.
    """

    log_dir = os.getenv("LOG_DIR", "logs")
    log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    formatter = _get_formatter(os.getenv("LOG_JSON", "false").lower() == "true")
    retention_days = int(os.getenv("LOG_RETENTION_DAYS", "7"))
    rotate_utc = os.getenv("LOG_ROTATE_UTC", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(
            _rotating_handler(log_dir, "app.log", formatter, retention_days, rotate_utc)
        )
    app_logger.setLevel(log_level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(
        _rotating_handler(log_dir, "access.log", formatter, retention_days, rotate_utc)
    )
    access_logger.setLevel(log_level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)
