import pathlib
import sys

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from supportflow.app_logging import init_logging
from supportflow.automations.repository import InMemoryAutomationRepository
from supportflow.campaigns.repository import InMemoryCampaignRepository
from supportflow.channels.sender import SendError, SendResult
from supportflow.config import Settings
from supportflow.contacts.repository import InMemoryContactRepository
from supportflow.conversations.repository import InMemoryConversationRepository
from supportflow.dependencies import build_services
from supportflow.responder.service import ResponderReply
from supportflow.tasks import InlineTaskRunner


class FakeSender:
    """Records sends; addresses in ``fail_on`` raise like a provider error."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()

    def send(self, address: str, text: str) -> SendResult:
        if address in self.fail_on:
            raise SendError(f"provider rejected {address}")
        self.sent.append((address, text))
        return SendResult(external_id=f"wamid.{len(self.sent)}")


class FakeResponder:
    def __init__(self) -> None:
        self.text = "Hi! How can I help you?"
        self.needs_human = False
        self.error: Exception | None = None
        self.calls: list[tuple[list, dict]] = []

    def reply(self, history, context) -> ResponderReply:
        self.calls.append((list(history), dict(context)))
        if self.error is not None:
            raise self.error
        return ResponderReply(text=self.text, needs_human_transfer=self.needs_human)


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def responder() -> FakeResponder:
    return FakeResponder()


@pytest.fixture
def settings() -> Settings:
    return Settings(campaign_send_delay_ms=0, business_timezone="UTC")


@pytest.fixture
def services(settings, sender, responder):
    """Every service wired over in-memory stores and fake collaborators."""

    return build_services(
        InMemoryContactRepository(),
        InMemoryConversationRepository(),
        InMemoryAutomationRepository(),
        InMemoryCampaignRepository(),
        settings=settings,
        sender=sender,
        responder=responder,
        tasks=InlineTaskRunner(),
    )


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        @app.get("/api/webhooks/whatsapp")
        async def handshake(request: Request):
            return {"ok": True}

        init_logging(app)
        return app

    return _create_app
