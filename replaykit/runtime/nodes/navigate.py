from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType
from replaykit.runtime.common import call_tool
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult


class NavigateNode(NodeRuntime):
    type = NodeType.NAVIGATE.value

    def validate(self, step: Step) -> ValidationResult:
        if step.get("url"):
            return ValidationResult.passed()
        return ValidationResult.failed("URL is missing")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        url = expand_templates_deep(step["url"], ctx.vars)
        await call_tool(ctx, ToolName.NAVIGATE, {"url": url}, error=f"navigate failed: {url}")
        return ExecResult()
