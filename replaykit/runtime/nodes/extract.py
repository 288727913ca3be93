from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType
from replaykit.runtime.common import call_tool
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult

_EXTRACT_JS = """
([selector, attr]) => {
    const el = document.querySelector(selector);
    if (!el) return null;
    if (attr === 'text' || attr === 'textContent') return (el.textContent || '').trim();
    return el.getAttribute ? el.getAttribute(attr) : null;
}
"""


class ExtractNode(NodeRuntime):
    """Read a value from the page, by ``js`` expression or ``selector`` + ``attr``."""

    type = NodeType.EXTRACT.value

    def validate(self, step: Step) -> ValidationResult:
        if str(step.get("js") or "").strip() or step.get("selector"):
            return ValidationResult.passed()
        return ValidationResult.failed("extract: js or selector is required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        js = str(s.get("js") or "").strip()
        if js:
            args = {"code": js, "frameId": ctx.frame_id}
        else:
            args = {
                "code": _EXTRACT_JS,
                "arg": [str(s["selector"]), str(s.get("attr") or "text")],
                "frameId": ctx.frame_id,
            }
        result = await call_tool(ctx, ToolName.EVALUATE, args, error="extract failed")
        payload = result.json() or {}
        if s.get("saveAs"):
            ctx.vars[s["saveAs"]] = payload.get("result")
        return ExecResult()
