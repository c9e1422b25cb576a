import json
import logging

from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from supportflow.app_logging import _install_access_logging


def _create_app() -> FastAPI:
    app = FastAPI()

    @app.post("/api/webhooks/whatsapp")
    async def webhook(request: Request):
        return {"rid": request.state.request_id}

    @app.get("/api/health")
    async def health():  # pragma: no cover - simple
        return {"status": "ok"}

    _install_access_logging(app)
    return app


def test_access_logging_request_id_and_scrubbing(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _create_app()

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post(
            "/api/webhooks/whatsapp",
            json={"access_token": "secret", "a": 1},
            headers={"X-Request-Id": "abc", "Authorization": "Bearer secret"},
        )

        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json() == {"rid": "abc"}

        record = caplog.records[0]
        data = json.loads(record.getMessage())
        assert data["request_id"] == "abc"
        assert data["status"] == 200
        assert data["headers"]["authorization"] == "***"
        assert data["body"]["access_token"] == "***"
        assert data["body"]["a"] == 1

        caplog.clear()
        client.get("/api/health")
        assert len(caplog.records) == 0


def test_request_id_generated_when_missing(caplog):
    app = _create_app()
    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post("/api/webhooks/whatsapp", json={})
        assert len(resp.headers["X-Request-Id"]) == 32
        data = json.loads(caplog.records[0].getMessage())
        assert "body" not in data
