from .matcher import RuleMatch, match
from .repository import (
    AutomationRepository,
    InMemoryAutomationRepository,
    PostgresAutomationRepository,
)
from .service import AutomationService, TemplateNotFoundError
from .triggers import parse_trigger

__all__ = [
    "AutomationRepository",
    "AutomationService",
    "InMemoryAutomationRepository",
    "PostgresAutomationRepository",
    "RuleMatch",
    "TemplateNotFoundError",
    "match",
    "parse_trigger",
]
