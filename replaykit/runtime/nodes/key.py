from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType
from replaykit.runtime.common import call_tool
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult


class KeyNode(NodeRuntime):
    type = NodeType.KEY.value

    def validate(self, step: Step) -> ValidationResult:
        if str(step.get("keys") or "").strip():
            return ValidationResult.passed()
        return ValidationResult.failed("key: keys is required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        args = {"keys": s["keys"]}
        # Focus the first candidate before typing
        candidates = (s.get("target") or {}).get("candidates") or []
        if candidates and candidates[0].get("value"):
            args["selector"] = candidates[0]["value"]
        if ctx.frame_id is not None:
            args["frameId"] = ctx.frame_id
        await call_tool(ctx, ToolName.KEYBOARD, args, error="key failed")
        return ExecResult()
