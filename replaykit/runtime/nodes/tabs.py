"""openTab / switchTab / closeTab."""

from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.core.errors import ExecutorError
from replaykit.flow.types import NodeType
from replaykit.runtime.common import call_tool
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult


class OpenTabNode(NodeRuntime):
    type = NodeType.OPEN_TAB.value

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        await call_tool(
            ctx,
            ToolName.OPEN_TAB,
            {"url": s.get("url") or None, "newWindow": bool(s.get("newWindow"))},
            error="openTab failed",
        )
        # New tabs start at the top frame
        ctx.frame_id = None
        return ExecResult()


class SwitchTabNode(NodeRuntime):
    type = NodeType.SWITCH_TAB.value

    def validate(self, step: Step) -> ValidationResult:
        if step.get("tabId") or step.get("urlContains") or step.get("titleContains"):
            return ValidationResult.passed()
        return ValidationResult.failed("switchTab: tabId, urlContains or titleContains is required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        tab_id = s.get("tabId")
        if not tab_id:
            url_part, title_part = s.get("urlContains"), s.get("titleContains")
            for tab in await ctx.services.bridge.list_tabs():
                if (url_part and str(url_part) in tab.url) or (
                    title_part and str(title_part) in tab.title
                ):
                    tab_id = tab.id
                    break
        if not tab_id:
            raise ExecutorError("switchTab: no matching tab", tool=ToolName.SWITCH_TAB.value)
        await call_tool(ctx, ToolName.SWITCH_TAB, {"tabId": int(tab_id)}, error="switchTab failed")
        ctx.frame_id = None
        return ExecResult()


class CloseTabNode(NodeRuntime):
    type = NodeType.CLOSE_TAB.value

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        args = {}
        if isinstance(s.get("tabIds"), list) and s["tabIds"]:
            args["tabIds"] = s["tabIds"]
        if s.get("url"):
            args["url"] = s["url"]
        await call_tool(ctx, ToolName.CLOSE_TABS, args, error="closeTab failed")
        return ExecResult()
