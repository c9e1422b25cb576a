"""WhatsApp channel adapter."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..contacts.addresses import normalize_address
from ..conversations.models import DeliveryStatus, InboundMessage, MessageType, StatusEvent
from .base import ChannelAdapter

_MEDIA_TYPES = {"image", "audio", "video", "document", "sticker"}

_MEDIA_PLACEHOLDERS = {
    "image": "[Image received]",
    "audio": "[Audio received]",
    "video": "[Video received]",
    "sticker": "[Sticker received]",
}


def _parse_timestamp(raw: Any) -> datetime:
    if raw:
        try:
            return datetime.fromtimestamp(int(raw), tz=timezone.utc)
        except (ValueError, TypeError, OverflowError):
            pass
    return datetime.now(timezone.utc)


class WhatsAppAdapter(ChannelAdapter):
    channel_name = "whatsapp"

    def verify_signature(
        self, body: bytes, headers: Mapping[str, str], secret: str | None
    ) -> bool:
        if not secret:
            return True
        received = headers.get("X-Hub-Signature-256") or headers.get("x-hub-signature-256")
        if not received:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        expected = f"sha256={digest}"
        return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))

    def _values(self, payload: Mapping[str, Any]) -> Iterable[Mapping[str, Any]]:
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                yield change.get("value") or {}

    def parse_incoming(self, payload: Mapping[str, Any]) -> Iterable[InboundMessage]:
        for value in self._values(payload):
            contacts = {c.get("wa_id"): c for c in value.get("contacts") or []}
            for message in value.get("messages") or []:
                sender = message.get("from") or ""
                if not sender:
                    continue
                profile = contacts.get(sender, {}).get("profile") or {}
                message_type = message.get("type") or "text"
                attachment = None
                kind = MessageType.TEXT
                if message_type == "text":
                    text = (message.get("text") or {}).get("body", "")
                elif message_type in _MEDIA_TYPES:
                    media = message.get(message_type) or {}
                    attachment = {"type": message_type, **media}
                    kind = MessageType.ATTACHMENT
                    if message_type == "document":
                        text = f"[Document: {media.get('filename') or 'file'}]"
                    else:
                        text = media.get("caption") or _MEDIA_PLACEHOLDERS[message_type]
                elif message_type == "interactive":
                    interactive = message.get("interactive") or {}
                    reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
                    text = reply.get("title") or ""
                else:
                    text = f"[{message_type} received]"
                yield InboundMessage(
                    channel=self.channel_name,
                    external_id=str(message.get("id") or ""),
                    address=normalize_address(sender, self.country_code),
                    text=text,
                    message_type=kind,
                    sender_name=profile.get("name"),
                    attachment=attachment,
                    metadata={
                        "wa_timestamp": message.get("timestamp"),
                        "wa_type": message_type,
                        "wa_business_account": value.get("metadata") or {},
                    },
                    sent_at=_parse_timestamp(message.get("timestamp")),
                )

    def parse_statuses(self, payload: Mapping[str, Any]) -> Iterable[StatusEvent]:
        for value in self._values(payload):
            for status in value.get("statuses") or []:
                try:
                    delivery = DeliveryStatus(status.get("status"))
                except ValueError:
                    continue
                errors = status.get("errors") or []
                yield StatusEvent(
                    channel=self.channel_name,
                    external_id=str(status.get("id") or ""),
                    status=delivery,
                    recipient=status.get("recipient_id"),
                    error=(errors[0].get("title") if errors else None),
                    at=_parse_timestamp(status.get("timestamp")),
                )
