"""click / dblclick."""

from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType
from replaykit.runtime.common import (
    active_tab_id,
    call_tool,
    clamp,
    element_args,
    ensure_visible,
    has_candidates,
    locate_target,
    log_fallback,
    read_page,
)
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult


class ClickNode(NodeRuntime):
    type = NodeType.CLICK.value
    double = False

    def validate(self, step: Step) -> ValidationResult:
        if has_candidates(step):
            return ValidationResult.passed()
        return ValidationResult.failed("Missing target selector candidate")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        tab_id = await active_tab_id(ctx)
        await read_page(ctx)
        s = expand_templates_deep(step, ctx.vars)
        target, located, frame_id = await locate_target(ctx, tab_id, s.get("target"))
        await ensure_visible(ctx, tab_id, located, frame_id)

        args = element_args(target, located)
        args.update(
            waitForNavigation=False,
            timeout=clamp(s.get("timeoutMs"), 1000, 30000, default=10000),
            frameId=frame_id,
        )
        if self.double:
            args["double"] = True
        await call_tool(ctx, ToolName.CLICK, args, error=f"{self.type} failed")
        log_fallback(ctx, step["id"], target, located)
        return ExecResult()


class DblClickNode(ClickNode):
    type = NodeType.DBLCLICK.value
    double = True
