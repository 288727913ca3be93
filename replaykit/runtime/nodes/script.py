"""script: inline page evaluation, or deferral to the end of the run."""

from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType
from replaykit.runtime.common import call_tool
from replaykit.runtime.templates import apply_assign, expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step

SCRIPT_WHEN_AFTER = "after"


async def evaluate_script(ctx: ExecCtx, code: str) -> object:
    result = await call_tool(
        ctx, ToolName.EVALUATE, {"code": code, "frameId": ctx.frame_id}, error="script failed"
    )
    payload = result.json() or {}
    return payload.get("result")


class ScriptNode(NodeRuntime):
    type = NodeType.SCRIPT.value

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        if s.get("when") == SCRIPT_WHEN_AFTER:
            return ExecResult(defer_after_script=s)
        code = str(s.get("code") or "")
        if not code.strip():
            return ExecResult()
        value = await evaluate_script(ctx, code)
        if s.get("saveAs"):
            ctx.vars[s["saveAs"]] = value
        if isinstance(s.get("assign"), dict):
            apply_assign(ctx.vars, value, s["assign"])
        return ExecResult()
