"""Base abstractions for chat channel adapters."""

from __future__ import annotations

import hmac
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from ..conversations.models import InboundMessage, StatusEvent


class ChannelAdapter(ABC):
    """Abstract base class encapsulating channel-specific behaviour."""

    #: Lowercase channel identifier used in routes and configuration.
    channel_name: str

    def __init__(self, *, country_code: str = "55") -> None:
        self.country_code = country_code

    @abstractmethod
    def parse_incoming(self, payload: Mapping[str, Any]) -> Iterable[InboundMessage]:
        """Convert a webhook payload into inbound messages."""

    def parse_statuses(self, payload: Mapping[str, Any]) -> Iterable[StatusEvent]:
        """Extract delivery receipts from a webhook payload.

        Channels without receipts keep the default, which yields nothing.
        """

        return ()

    def verify_signature(
        self, body: bytes, headers: Mapping[str, str], secret: str | None
    ) -> bool:
        """Validate authenticity of the webhook payload.

        Adapters can override this to implement signature checks. The default
        implementation returns ``True``.
        """

        return True

    def verify_subscription(
        self, params: Mapping[str, str], verify_token: str
    ) -> str | None:
        """Answer the provider's registration handshake.

        Returns the challenge to echo back when the shared token matches,
        ``None`` otherwise.
        """

        if not verify_token:
            return None
        mode = params.get("hub.mode")
        token = (params.get("hub.verify_token") or "").strip()
        if mode == "subscribe" and hmac.compare_digest(
            token.encode("utf-8"), verify_token.encode("utf-8")
        ):
            return params.get("hub.challenge") or ""
        return None
