"""Selector resolution with fallback tiers."""

from replaykit.selectors.engine import (
    LocatedElement,
    SelectorEngine,
    expand_aria,
    fallback_info,
    is_composite,
)

__all__ = ["LocatedElement", "SelectorEngine", "expand_aria", "fallback_info", "is_composite"]
