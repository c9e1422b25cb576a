"""Prompt helpers for the automated responder."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from ..conversations.models import SenderKind

#: Marker the model places in a reply when a human must take over.
HANDOFF_MARKER = "[TRANSFER_TO_HUMAN]"

DEFAULT_SYSTEM_PROMPT = (
    "You are the virtual assistant of a customer support desk. Be polite, "
    "concise and professional. Answer questions about documents, leave, "
    "benefits, career progression and administrative procedures. Never invent "
    "deadlines or amounts. If you cannot answer, or the request needs a person, "
    f"start your reply with {HANDOFF_MARKER}. Reply in the customer's language."
)

_CONTEXT_LABELS: Mapping[str, str] = {
    "name": "Name",
    "registration_id": "Registration",
    "department": "Department",
    "current_request": "Open request",
}


def build_system_prompt(context: Mapping[str, Any] | None, custom_prompt: str | None = None) -> str:
    """Return the system prompt personalised with the contact context."""

    prompt = custom_prompt or DEFAULT_SYSTEM_PROMPT
    if custom_prompt and HANDOFF_MARKER not in custom_prompt:
        prompt = f"{prompt}\n\nWhen a human must take over, start your reply with {HANDOFF_MARKER}."
    lines = [
        f"- {label}: {context[key]}"
        for key, label in _CONTEXT_LABELS.items()
        if context and context.get(key)
    ]
    if lines:
        prompt = prompt + "\n\nCurrent contact:\n" + "\n".join(lines)
    return prompt


def history_to_chat(history: Sequence[Any]) -> list[dict[str, str]]:
    """Map stored messages to chat-completion roles."""

    chat: list[dict[str, str]] = []
    for message in history:
        role = "user" if message.sender_kind == SenderKind.CONTACT else "assistant"
        if message.body:
            chat.append({"role": role, "content": message.body})
    return chat


def split_handoff(text: str) -> tuple[str, bool]:
    """Strip the hand-off marker from ``text`` and report whether it was present."""

    needs_human = HANDOFF_MARKER in text
    return text.replace(HANDOFF_MARKER, "").strip(), needs_human
