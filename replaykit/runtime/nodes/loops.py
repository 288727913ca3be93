"""foreach / while / loopElements: emit control directives for the control-flow runner."""

from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType
from replaykit.runtime.common import call_tool
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import (
    ExecCtx,
    ExecResult,
    ForeachControl,
    NodeRuntime,
    Step,
    ValidationResult,
    WhileControl,
)

DEFAULT_WHILE_ITERATIONS = 100

# CSS path for each match, same shape the bridge uses to describe refs
_COLLECT_PATHS_JS = """
(sel) => {
    const toCss = (node) => {
        try {
            if (node.id) {
                const idSel = '#' + CSS.escape(node.id);
                if (document.querySelectorAll(idSel).length === 1) return idSel;
            }
        } catch (e) {}
        let path = '';
        let current = node;
        while (current && current.tagName !== 'BODY') {
            let part = current.tagName.toLowerCase();
            const parent = current.parentElement;
            if (parent) {
                const siblings = Array.from(parent.children).filter(c => c.tagName === current.tagName);
                if (siblings.length > 1) part += ':nth-of-type(' + (siblings.indexOf(current) + 1) + ')';
            }
            path = path ? part + ' > ' + path : part;
            current = parent;
        }
        return path ? 'body > ' + path : 'body';
    };
    try { return Array.from(document.querySelectorAll(sel)).map(toCss); } catch (e) { return []; }
}
"""


def _non_empty_str(value) -> bool:
    return isinstance(value, str) and bool(value)


class ForeachNode(NodeRuntime):
    type = NodeType.FOREACH.value

    def validate(self, step: Step) -> ValidationResult:
        if _non_empty_str(step.get("listVar")) and _non_empty_str(step.get("subflowId")):
            return ValidationResult.passed()
        return ValidationResult.failed("foreach: listVar and subflowId are required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        item_var = step.get("itemVar") if _non_empty_str(step.get("itemVar")) else "item"
        try:
            requested = int(step.get("concurrency") or 1)
        except (TypeError, ValueError):
            requested = 1
        limit = ctx.services.settings.max_foreach_concurrency
        return ExecResult(
            control=ForeachControl(
                list_var=step["listVar"],
                item_var=item_var,
                subflow_id=step["subflowId"],
                concurrency=max(1, min(limit, requested)),
            )
        )


class WhileNode(NodeRuntime):
    type = NodeType.WHILE.value

    def validate(self, step: Step) -> ValidationResult:
        if step.get("condition") and _non_empty_str(step.get("subflowId")):
            return ValidationResult.passed()
        return ValidationResult.failed("while: condition and subflowId are required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        try:
            requested = int(step.get("maxIterations") or DEFAULT_WHILE_ITERATIONS)
        except (TypeError, ValueError):
            requested = DEFAULT_WHILE_ITERATIONS
        cap = ctx.services.settings.max_while_iterations
        return ExecResult(
            control=WhileControl(
                condition=step["condition"],
                subflow_id=step["subflowId"],
                max_iterations=max(1, min(cap, requested)),
            )
        )


class LoopElementsNode(NodeRuntime):
    """Collect a CSS path per element matching ``selector`` and iterate a subflow over them."""

    type = NodeType.LOOP_ELEMENTS.value

    def validate(self, step: Step) -> ValidationResult:
        if _non_empty_str(step.get("selector")) and _non_empty_str(step.get("subflowId")):
            return ValidationResult.passed()
        return ValidationResult.failed("loopElements: selector and subflowId are required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        result = await call_tool(
            ctx,
            ToolName.EVALUATE,
            {"code": _COLLECT_PATHS_JS, "arg": str(s["selector"]), "frameId": ctx.frame_id},
            error="loopElements: element lookup failed",
        )
        paths = (result.json() or {}).get("result")
        list_var = str(s.get("saveAs") or "elements")
        item_var = str(s.get("itemVar") or "item")
        ctx.vars[list_var] = paths if isinstance(paths, list) else []
        return ExecResult(
            control=ForeachControl(list_var=list_var, item_var=item_var, subflow_id=str(s["subflowId"]))
        )
