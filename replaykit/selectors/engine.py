"""Resolve a :class:`TargetLocator` to a live element ref through the browser bridge."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

import structlog

from replaykit.browser.bridge import COMPOSITE_SEPARATOR, BrowserBridge, ContentAction
from replaykit.flow.types import SelectorCandidate, SelectorType, TargetLocator

logger = structlog.get_logger(__name__)

RESOLVED_BY_REF = "ref"

_ARIA_PATTERN = re.compile(r"^(\w+)\s*\[\s*name\s*=\s*([^\]]+)\]$")

# Per-role selector templates for "role[name=...]" aria candidates
_ARIA_TEMPLATES: dict[str, tuple[str, ...]] = {
    "textbox": ('[role="textbox"][aria-label={name}]', "input[aria-label={name}]", "textarea[aria-label={name}]"),
    "button": ('[role="button"][aria-label={name}]', "button[aria-label={name}]"),
    "link": ('[role="link"][aria-label={name}]', "a[aria-label={name}]"),
}


@dataclass
class LocatedElement:
    ref: str
    center: dict[str, float]
    resolved_by: str  # SelectorType value or "ref"
    frame_id: int | None = None


def is_composite(selector: str) -> bool:
    return COMPOSITE_SEPARATOR in selector


def expand_aria(value: str) -> list[str]:
    """
    Expand ``role[name=value]`` into attribute selectors.

    Known roles map to their native elements; any other role falls back to a
    single ``[role=..][aria-label=..]`` selector. Unparseable values expand to
    nothing.
    """
    m = _ARIA_PATTERN.match(value.strip())
    if not m:
        return []
    role, name = m.group(1), re.sub(r"^['\"]|['\"]$", "", m.group(2))
    quoted = json.dumps(name, ensure_ascii=False)
    templates = _ARIA_TEMPLATES.get(role)
    if templates:
        return [t.format(name=quoted) for t in templates]
    return [f"[role={json.dumps(role)}][aria-label={quoted}]"]


def _resolved(reply: Any) -> bool:
    return isinstance(reply, dict) and bool(reply.get("success") and reply.get("ref") and reply.get("center"))


class SelectorEngine:
    """
    Tiered element lookup.

    Order, first hit wins:

    1. ``target.selector`` as CSS
    2. non-text candidates in list order (css/attr query, aria expansion, xpath)
    3. text candidates, narrowed by ``target.tag``
    4. the cached ``target.ref``, if still valid in this page lifecycle

    A miss is ``None``, never an exception.
    """

    def __init__(self, bridge: BrowserBridge) -> None:
        self._bridge = bridge
        self.log = logger.bind(component="selector_engine")

    async def _send(self, tab_id: int, message: dict, frame_id: int | None) -> Any:
        try:
            return await self._bridge.send(tab_id, message, frame_id)
        except (LookupError, ValueError) as e:
            self.log.debug("bridge_send_failed", action=message.get("action"), error=str(e))
            return None

    async def _ensure_ref(
        self, tab_id: int, selector: str, frame_id: int | None
    ) -> tuple[str, dict, int | None] | None:
        composite = is_composite(selector)
        # Composite selectors bridge from the top frame into the child
        reply = await self._send(
            tab_id,
            {"action": ContentAction.ENSURE_REF_FOR_SELECTOR, "selector": selector},
            None if composite else frame_id,
        )
        if not _resolved(reply):
            return None
        located_frame = frame_id
        if composite:
            located_frame = None
            href = reply.get("href")
            if href:
                for frame in await self._bridge.list_frames(tab_id):
                    if frame.url == href:
                        located_frame = frame.frame_id
                        break
        return reply["ref"], reply["center"], located_frame

    async def _try_candidate(
        self, tab_id: int, c: SelectorCandidate, frame_id: int | None
    ) -> LocatedElement | None:
        if c.type in (SelectorType.CSS, SelectorType.ATTR):
            ensured = await self._ensure_ref(tab_id, c.value, frame_id)
            if ensured:
                ref, center, fid = ensured
                return LocatedElement(ref, center, c.type.value, fid)
        elif c.type == SelectorType.ARIA:
            for sel in expand_aria(c.value):
                reply = await self._send(
                    tab_id, {"action": ContentAction.ENSURE_REF_FOR_SELECTOR, "selector": sel}, frame_id
                )
                if _resolved(reply):
                    return LocatedElement(reply["ref"], reply["center"], c.type.value, frame_id)
        elif c.type == SelectorType.XPATH:
            reply = await self._send(
                tab_id,
                {"action": ContentAction.ENSURE_REF_FOR_SELECTOR, "selector": c.value, "isXPath": True},
                frame_id,
            )
            if _resolved(reply):
                return LocatedElement(reply["ref"], reply["center"], c.type.value, frame_id)
        return None

    async def locate(
        self, tab_id: int, target: TargetLocator, frame_id: int | None = None
    ) -> LocatedElement | None:
        primary = (target.selector or "").strip()
        if primary:
            ensured = await self._ensure_ref(tab_id, primary, frame_id)
            if ensured:
                ref, center, fid = ensured
                return LocatedElement(ref, center, SelectorType.CSS.value, fid)

        for c in target.candidates:
            if c.type == SelectorType.TEXT:
                continue
            located = await self._try_candidate(tab_id, c, frame_id)
            if located:
                return located

        tag = (target.tag or "").strip()
        for c in target.candidates:
            if c.type != SelectorType.TEXT:
                continue
            reply = await self._send(
                tab_id,
                {
                    "action": ContentAction.ENSURE_REF_FOR_SELECTOR,
                    "useText": True,
                    "text": c.value,
                    "tagName": tag,
                },
                frame_id,
            )
            if _resolved(reply):
                return LocatedElement(reply["ref"], reply["center"], c.type.value, frame_id)

        if target.ref:
            reply = await self._send(
                tab_id, {"action": ContentAction.RESOLVE_REF, "ref": target.ref}, frame_id
            )
            if isinstance(reply, dict) and reply.get("success") and reply.get("center"):
                return LocatedElement(target.ref, reply["center"], RESOLVED_BY_REF, frame_id)

        return None


def fallback_info(target: TargetLocator, located: LocatedElement | None) -> tuple[bool, str | None, str | None]:
    """
    Compare ``located.resolved_by`` with the first candidate's declared type.

    Returns ``(fallback_used, from_type, to_type)``. Resolution by cached ref
    is not reported as a fallback.
    """
    first = target.first_type
    if located is None or first is None or located.resolved_by == RESOLVED_BY_REF:
        return False, None, None
    if located.resolved_by == first.value:
        return False, None, None
    return True, first.value, located.resolved_by
