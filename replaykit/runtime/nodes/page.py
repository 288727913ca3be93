"""Page-level steps: downloads, screenshots, synthetic events, attributes and frame scope."""

from __future__ import annotations

from replaykit.browser.bridge import ContentAction
from replaykit.browser.executor import ToolName
from replaykit.core.errors import ElementResolutionError
from replaykit.flow.types import LogStatus, NodeType, RunLogEntry
from replaykit.runtime.common import (
    active_tab_id,
    call_tool,
    clamp,
    first_css_or_attr,
    has_candidates,
    locate_target,
    read_page,
    send_content,
)
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult

_DISPATCH_EVENT_JS = """
([selector, type, bubbles, cancelable]) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    el.dispatchEvent(new Event(type, { bubbles, cancelable }));
    return true;
}
"""

_SET_ATTRIBUTE_JS = """
([selector, name, value, remove]) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    if (remove) el.removeAttribute(name);
    else el.setAttribute(name, value == null ? '' : String(value));
    return true;
}
"""


async def _resolve_css(ctx: ExecCtx, step: Step, label: str) -> tuple[str, int | None]:
    """Reduce a target to a CSS selector usable from page script."""
    tab_id = await active_tab_id(ctx)
    await read_page(ctx)
    target, located, frame_id = await locate_target(ctx, tab_id, step.get("target"))
    selector = first_css_or_attr(target) if located is None else None
    if not selector and located is not None:
        reply = await send_content(
            ctx, tab_id, {"action": ContentAction.RESOLVE_REF, "ref": located.ref}, frame_id
        )
        if isinstance(reply, dict):
            selector = reply.get("selector")
    if not selector:
        raise ElementResolutionError(f"{label}: selector not resolved")
    return selector, frame_id


class HandleDownloadNode(NodeRuntime):
    type = NodeType.HANDLE_DOWNLOAD.value

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        args = {
            "filenameContains": s.get("filenameContains") or None,
            "timeoutMs": clamp(s.get("timeoutMs"), 1000, 300000, default=60000),
            "waitForComplete": s.get("waitForComplete") is not False,
        }
        result = await call_tool(ctx, ToolName.HANDLE_DOWNLOAD, args, error="handleDownload failed")
        payload = result.json()
        if s.get("saveAs") and isinstance(payload, dict) and payload.get("download"):
            ctx.vars[s["saveAs"]] = payload["download"]
        return ExecResult()


class ScreenshotNode(NodeRuntime):
    type = NodeType.SCREENSHOT.value

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        args = {"name": "workflow", "storeBase64": True}
        if s.get("fullPage"):
            args["fullPage"] = True
        if isinstance(s.get("selector"), str) and s["selector"].strip():
            args["selector"] = s["selector"]
        result = await call_tool(ctx, ToolName.SCREENSHOT, args, error="screenshot failed")
        payload = result.json()
        if s.get("saveAs") and isinstance(payload, dict) and payload.get("base64Data"):
            ctx.vars[s["saveAs"]] = payload["base64Data"]
        return ExecResult()


class TriggerEventNode(NodeRuntime):
    type = NodeType.TRIGGER_EVENT.value

    def validate(self, step: Step) -> ValidationResult:
        if has_candidates(step) and isinstance(step.get("event"), str) and step["event"]:
            return ValidationResult.passed()
        return ValidationResult.failed("triggerEvent: target and event are required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        selector, frame_id = await _resolve_css(ctx, s, "triggerEvent")
        await call_tool(
            ctx,
            ToolName.EVALUATE,
            {
                "code": _DISPATCH_EVENT_JS,
                "arg": [selector, str(s["event"]).strip(), s.get("bubbles") is not False, s.get("cancelable") is True],
                "frameId": frame_id,
            },
            error="triggerEvent failed",
        )
        return ExecResult()


class SetAttributeNode(NodeRuntime):
    type = NodeType.SET_ATTRIBUTE.value

    def validate(self, step: Step) -> ValidationResult:
        if has_candidates(step) and isinstance(step.get("name"), str) and step["name"]:
            return ValidationResult.passed()
        return ValidationResult.failed("setAttribute: target and name are required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        selector, frame_id = await _resolve_css(ctx, s, "setAttribute")
        await call_tool(
            ctx,
            ToolName.EVALUATE,
            {
                "code": _SET_ATTRIBUTE_JS,
                "arg": [selector, str(s["name"]), s.get("value"), s.get("remove") is True],
                "frameId": frame_id,
            },
            error="setAttribute failed",
        )
        return ExecResult()


class SwitchFrameNode(NodeRuntime):
    """
    Change ``ctx.frame_id`` for subsequent steps.

    ``frame.index`` picks among non-top frames (clamped into range);
    ``frame.urlContains`` matches on URL. No match returns to the top frame.
    """

    type = NodeType.SWITCH_FRAME.value

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        spec = step.get("frame") if isinstance(step.get("frame"), dict) else {}
        tab_id = await active_tab_id(ctx)
        frames = await ctx.services.bridge.list_frames(tab_id)

        target = None
        index = spec.get("index")
        if isinstance(index, (int, float)) and not isinstance(index, bool):
            children = [f for f in frames if f.frame_id != 0]
            if children:
                target = children[max(0, min(len(children) - 1, int(index)))]
        url_part = str(spec.get("urlContains") or "").strip()
        if target is None and url_part:
            target = next((f for f in frames if url_part in f.url), None)

        ctx.frame_id = target.frame_id if target is not None and target.frame_id != 0 else None
        await read_page(ctx)
        ctx.logger(
            RunLogEntry(
                step_id=step["id"],
                status=LogStatus.SUCCESS,
                message=f"frameId={ctx.frame_id if ctx.frame_id is not None else 'top'}",
            )
        )
        return ExecResult()
