"""Automated responder backed by an LLM chat completion."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from openai import OpenAI

from ..config import Settings
from .prompts import build_system_prompt, history_to_chat, split_handoff

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "Sorry, I could not process your message right now. "
    "I am transferring you to one of our agents."
)


class ResponderError(RuntimeError):
    """Raised when the responder cannot produce a reply."""


@dataclass(frozen=True)
class ResponderReply:
    text: str
    needs_human_transfer: bool = False


class AutomatedResponder(Protocol):
    def reply(
        self, history: Sequence[Any], context: Mapping[str, Any]
    ) -> ResponderReply: ...


class OpenAIResponder:
    """Generate replies with the OpenAI chat completions API."""

    def __init__(
        self,
        client: Any,
        *,
        model: str = "gpt-4o-mini",
        system_prompt: str | None = None,
        max_tokens: int = 1000,
    ) -> None:
        self._client = client
        self._model = model
        self._system_prompt = system_prompt
        self._max_tokens = max_tokens

    def reply(
        self, history: Sequence[Any], context: Mapping[str, Any]
    ) -> ResponderReply:
        messages = [
            {"role": "system", "content": build_system_prompt(context, self._system_prompt)},
            *history_to_chat(history),
        ]
        try:
            completion = self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                max_tokens=self._max_tokens,
            )
        except Exception as exc:
            raise ResponderError(f"Chat completion failed: {exc}") from exc
        content = (completion.choices[0].message.content or "") if completion.choices else ""
        text, needs_human = split_handoff(content)
        if not text:
            raise ResponderError("Chat completion returned an empty reply")
        logger.info(
            "Responder reply generated (needs_human=%s, length=%d)", needs_human, len(text)
        )
        return ResponderReply(text=text, needs_human_transfer=needs_human)


class HandoffResponder:
    """Responder used when no LLM is configured: every chat goes to a human."""

    def __init__(self, text: str = FALLBACK_REPLY) -> None:
        self._text = text

    def reply(
        self, history: Sequence[Any], context: Mapping[str, Any]
    ) -> ResponderReply:
        return ResponderReply(text=self._text, needs_human_transfer=True)


def safe_reply(
    responder: AutomatedResponder,
    history: Sequence[Any],
    context: Mapping[str, Any],
) -> ResponderReply:
    """Call ``responder`` converting any failure into a hand-off reply."""

    try:
        return responder.reply(history, context)
    except Exception:
        logger.exception("Automated responder failed; handing conversation to a human")
        return ResponderReply(text=FALLBACK_REPLY, needs_human_transfer=True)


def build_responder(settings: Settings) -> AutomatedResponder:
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not configured; conversations go straight to agents")
        return HandoffResponder()
    return OpenAIResponder(
        OpenAI(api_key=settings.openai_api_key),
        model=settings.openai_model,
        system_prompt=settings.system_prompt,
    )
