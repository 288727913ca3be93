from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType, TargetLocator
from replaykit.runtime.common import call_tool, first_css_or_attr
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step


class ScrollNode(NodeRuntime):
    """
    Scroll the page or an element.

    Modes: ``offset`` scrolls the window, ``element`` brings the target into
    view, ``container`` scrolls inside the target. Anything else falls back to
    a mouse-wheel scroll whose direction follows the sign of ``offset.y``.
    """

    type = NodeType.SCROLL.value

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        offset = s.get("offset") or {}
        top, left = offset.get("y"), offset.get("x")
        mode = s.get("mode")
        selector = first_css_or_attr(TargetLocator.from_dict(s.get("target")))
        frame_id = ctx.frame_id

        if mode == "offset" and not s.get("target"):
            args = {"top": _num(top), "left": _num(left), "frameId": frame_id}
        elif mode == "element" and selector:
            args = {"selector": selector, "mode": "element", "frameId": frame_id}
        elif mode == "container" and selector:
            args = {
                "selector": selector,
                "mode": "container",
                "top": _num(top),
                "left": _num(left),
                "frameId": frame_id,
            }
        else:
            direction = "up" if top is not None and _num(top) < 0 else "down"
            args = {"direction": direction, "amount": 3}
        await call_tool(ctx, ToolName.SCROLL, args, error="scroll failed")
        return ExecResult()


def _num(value) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
