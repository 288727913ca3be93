from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType
from replaykit.runtime.common import call_tool
from replaykit.runtime.templates import apply_assign, expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult


class HttpNode(NodeRuntime):
    """Issue a request from the page context; ``saveAs``/``assign`` capture the response."""

    type = NodeType.HTTP.value

    def validate(self, step: Step) -> ValidationResult:
        if step.get("url"):
            return ValidationResult.passed()
        return ValidationResult.failed("http: url is required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        result = await call_tool(
            ctx,
            ToolName.NETWORK_REQUEST,
            {
                "url": s["url"],
                "method": s.get("method") or "GET",
                "headers": s.get("headers") or {},
                "body": s.get("body"),
                "formData": s.get("formData"),
            },
            error="http request failed",
        )
        payload = result.json()
        if s.get("saveAs"):
            ctx.vars[s["saveAs"]] = payload
        if isinstance(s.get("assign"), dict):
            apply_assign(ctx.vars, payload, s["assign"])
        return ExecResult()
