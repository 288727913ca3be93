"""Triggers: start flow runs manually, on a timer or on a matching page load."""

from replaykit.triggers.manager import TriggerManager, validate_trigger
from replaykit.triggers.store import TriggerStore
from replaykit.triggers.types import (
    TriggerFireContext,
    TriggerKind,
    TriggerSpec,
    UrlMatchKind,
    UrlMatchRule,
)

__all__ = [
    "TriggerFireContext",
    "TriggerKind",
    "TriggerManager",
    "TriggerSpec",
    "TriggerStore",
    "UrlMatchKind",
    "UrlMatchRule",
    "validate_trigger",
]
