"""Placeholder substitution for chat message bodies.

Bodies are plain chat text containing ``{{name}}`` placeholders. Rendering is
pure and total: unknown variables become empty strings and anything that is
not a well formed placeholder (for example a lone ``{{``) is left untouched.
No markup escaping is applied.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def render(body: str, variables: Mapping[str, Any] | None = None) -> str:
    """Replace every ``{{name}}`` in ``body`` with ``variables[name]``."""

    values = variables or {}

    def _substitute(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_substitute, body)


def extract_variable_names(body: str) -> list[str]:
    """Return the distinct placeholder names of ``body`` in first-seen order."""

    names: list[str] = []
    for match in _PLACEHOLDER.finditer(body):
        name = match.group(1)
        if name not in names:
            names.append(name)
    return names


def contact_variables(
    contact: Any, extra: Mapping[str, Any] | None = None
) -> dict[str, str]:
    """Build the variable map for a contact.

    ``name`` is the first name, ``full_name`` the stored display name. Keys in
    ``extra`` (explicit recipient fields) override contact-derived values.
    """

    variables: dict[str, str] = {}
    if contact is not None:
        full_name = (getattr(contact, "name", None) or "").strip()
        variables.update(
            {
                "name": full_name.split(" ")[0] if full_name else "",
                "full_name": full_name,
                "role": getattr(contact, "role", None) or "",
                "department": getattr(contact, "department", None) or "",
                "registration_id": getattr(contact, "registration_id", None) or "",
                "email": getattr(contact, "email", None) or "",
                "address": getattr(contact, "address", None) or "",
            }
        )
    for key, value in (extra or {}).items():
        if value is not None:
            variables[key] = str(value)
    return variables
