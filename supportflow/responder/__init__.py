"""Automated responder adapters."""

from .prompts import HANDOFF_MARKER, build_system_prompt
from .service import (
    FALLBACK_REPLY,
    AutomatedResponder,
    HandoffResponder,
    OpenAIResponder,
    ResponderError,
    ResponderReply,
    build_responder,
    safe_reply,
)

__all__ = [
    "FALLBACK_REPLY",
    "HANDOFF_MARKER",
    "AutomatedResponder",
    "HandoffResponder",
    "OpenAIResponder",
    "ResponderError",
    "ResponderReply",
    "build_responder",
    "build_system_prompt",
    "safe_reply",
]
