"""Conventions shared by DOM-touching step handlers."""

from __future__ import annotations

from typing import Any

import structlog

from replaykit.browser.bridge import ContentAction
from replaykit.browser.executor import ToolName, ToolResult
from replaykit.core.errors import ElementResolutionError, ExecutorError
from replaykit.flow.types import LogStatus, RunLogEntry, SelectorType, TargetLocator
from replaykit.runtime.types import ExecCtx
from replaykit.selectors.engine import LocatedElement, fallback_info

logger = structlog.get_logger(__name__)


def clamp(value: Any, lo: float, hi: float, default: float | None = None) -> Any:
    """Clamp a numeric config value; non-numeric or falsy input uses ``default`` (or ``lo``)."""
    try:
        v = float(value) if value else None
    except (TypeError, ValueError):
        v = None
    if v is None:
        v = default if default is not None else lo
    v = max(lo, min(v, hi))
    return int(v) if float(v).is_integer() else v


def has_candidates(step: dict) -> bool:
    target = step.get("target")
    return isinstance(target, dict) and bool(target.get("candidates"))


async def active_tab_id(ctx: ExecCtx) -> int:
    tab = await ctx.services.bridge.active_tab()
    if tab is None:
        raise ExecutorError("Active tab not found")
    return tab.id


async def call_tool(
    ctx: ExecCtx, name: ToolName, args: dict[str, Any], error: str | None = None
) -> ToolResult:
    """Invoke an executor tool; ``is_error`` becomes :class:`ExecutorError`."""
    ctx.check_terminated()
    result = await ctx.services.executor.call_tool(name, args)
    if result.is_error:
        raise ExecutorError(error or result.text() or f"{name.value} failed", tool=name.value)
    return result


async def read_page(ctx: ExecCtx) -> None:
    """Refresh the executor's page snapshot so fresh refs can be minted."""
    await ctx.services.executor.call_tool(ToolName.READ_PAGE, {})


async def send_content(
    ctx: ExecCtx, tab_id: int, message: dict[str, Any], frame_id: int | None = None
) -> Any:
    """Message the content side of a frame; transport failures read as no reply."""
    try:
        return await ctx.services.bridge.send(tab_id, message, frame_id)
    except (LookupError, ValueError) as e:
        logger.debug("content_send_failed", action=message.get("action"), error=str(e))
        return None


async def locate_target(
    ctx: ExecCtx, tab_id: int, raw_target: dict | None
) -> tuple[TargetLocator, LocatedElement | None, int | None]:
    """Resolve a target; returns ``(target, located, effective_frame_id)``."""
    target = TargetLocator.from_dict(raw_target)
    located = await ctx.services.selectors.locate(tab_id, target, ctx.frame_id)
    frame_id = located.frame_id if located and located.frame_id is not None else ctx.frame_id
    return target, located, frame_id


async def ensure_visible(
    ctx: ExecCtx, tab_id: int, located: LocatedElement | None, frame_id: int | None
) -> None:
    """Raise when a resolved ref has no layout box (hidden or zero-sized)."""
    if located is None:
        return
    reply = await send_content(
        ctx, tab_id, {"action": ContentAction.RESOLVE_REF, "ref": located.ref}, frame_id
    )
    rect = reply.get("rect") if isinstance(reply, dict) else None
    if not rect or rect.get("width", 0) <= 0 or rect.get("height", 0) <= 0:
        raise ElementResolutionError("element not visible")


def first_css_or_attr(target: TargetLocator) -> str | None:
    for c in target.candidates:
        if c.type in (SelectorType.CSS, SelectorType.ATTR):
            return c.value
    return None


def element_args(target: TargetLocator, located: LocatedElement | None) -> dict[str, Any]:
    """``ref``/``selector`` args for an executor call; the CSS fallback only applies without a ref."""
    ref = located.ref if located else target.ref
    selector = first_css_or_attr(target) if located is None else None
    if not ref and not selector:
        raise ElementResolutionError("element not found")
    return {"ref": ref, "selector": selector}


def log_fallback(
    ctx: ExecCtx, step_id: str, target: TargetLocator, located: LocatedElement | None
) -> None:
    used, from_type, to_type = fallback_info(target, located)
    if not used:
        return
    ctx.logger(
        RunLogEntry(
            step_id=step_id,
            status=LogStatus.SUCCESS,
            message=f"Selector fallback used ({from_type} -> {to_type})",
            fallback_used=True,
            fallback_from=from_type,
            fallback_to=to_type,
        )
    )


def log_warning(ctx: ExecCtx, step_id: str, message: str) -> None:
    ctx.logger(RunLogEntry(step_id=step_id, status=LogStatus.WARNING, message=message))
