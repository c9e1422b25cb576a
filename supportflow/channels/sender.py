"""Outbound message delivery through the channel provider API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import uuid4

import requests

from ..config import Settings

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


class SendError(RuntimeError):
    """Raised when the provider rejects or never answers a send request."""

    def __init__(self, message: str, *, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


@dataclass(frozen=True)
class SendResult:
    external_id: str | None
    mock: bool = False


class OutboundSender(Protocol):
    """Send a plain text message to a channel address."""

    def send(self, address: str, text: str) -> SendResult: ...


class WhatsAppCloudSender:
    """Deliver text messages through the WhatsApp Cloud API.

    Each request carries an explicit timeout. A timeout is reported as a
    :class:`SendError` and is never retried here: the provider may already
    have accepted the message and a second attempt could double-send.
    """

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        *,
        api_version: str = "v18.0",
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        base = f"{GRAPH_API_BASE}/{api_version}/{phone_number_id}"
        self._url = f"{base}/messages"
        self._contacts_url = f"{base}/contacts"
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout
        self.session = session or requests.Session()

    def build_payload(self, address: str, text: str) -> dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": address,
            "type": "text",
            "text": {"body": text},
        }

    def send(self, address: str, text: str) -> SendResult:
        try:
            response = self.session.post(
                self._url,
                json=self.build_payload(address, text),
                headers=self._headers,
                timeout=self._timeout,
            )
        except requests.Timeout as exc:
            raise SendError(f"Timed out sending to {address}", timeout=True) from exc
        except requests.RequestException as exc:
            raise SendError(f"Request to channel API failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400:
            detail = (data.get("error") or {}).get("message") or response.text
            raise SendError(f"Channel API returned {response.status_code}: {detail}")
        messages = data.get("messages") or [{}]
        return SendResult(external_id=messages[0].get("id"))

    def check_exists(self, address: str) -> bool | None:
        """Ask the provider whether ``address`` has a channel account.

        Returns ``None`` when the provider could not answer; a lookup failure
        never invalidates the address.
        """

        try:
            response = self.session.post(
                self._contacts_url,
                json={"blocking": "wait", "contacts": [f"+{address}"], "force_check": True},
                headers=self._headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Existence check for %s failed: %s", address, exc)
            return None
        if response.status_code >= 400:
            logger.warning(
                "Existence check for %s returned %s", address, response.status_code
            )
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        contacts = data.get("contacts") or [{}]
        return contacts[0].get("status") == "valid"


class MockSender:
    """Stand-in used when no channel credentials are configured.

    Messages are logged instead of sent and get synthetic ids so the rest of
    the flow (status recording, counters) behaves the same way.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send(self, address: str, text: str) -> SendResult:
        self.sent.append((address, text))
        logger.info("[MOCK] Message to %s: %s", address, text[:100])
        return SendResult(external_id=f"mock-{uuid4().hex}", mock=True)


def build_sender(settings: Settings, session: requests.Session | None = None) -> OutboundSender:
    """Return a real sender when credentials exist, otherwise a mock one."""

    if not settings.channel_configured:
        logger.warning("WhatsApp credentials not configured; outbound messages are mocked")
        return MockSender()
    return WhatsAppCloudSender(
        settings.whatsapp_access_token or "",
        settings.whatsapp_phone_number_id or "",
        api_version=settings.whatsapp_api_version,
        timeout=settings.send_timeout_seconds,
        session=session,
    )
