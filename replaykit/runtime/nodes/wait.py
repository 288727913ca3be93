"""wait: selector, text, navigation, network idle or a plain sleep."""

from __future__ import annotations

from replaykit.browser.bridge import ContentAction
from replaykit.core.errors import ElementResolutionError
from replaykit.flow.types import NodeType
from replaykit.runtime.common import active_tab_id, clamp, send_content
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult
from replaykit.runtime.waits import (
    race_termination,
    sleep_cooperative,
    wait_for_navigation,
    wait_for_network_idle,
)


class WaitNode(NodeRuntime):
    type = NodeType.WAIT.value

    def validate(self, step: Step) -> ValidationResult:
        if isinstance(step.get("condition"), dict) and step["condition"]:
            return ValidationResult.passed()
        return ValidationResult.failed("Missing wait condition")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        cond = s["condition"]
        max_wait = ctx.services.settings.max_wait_ms

        if "text" in cond:
            await self._content_wait(
                ctx,
                {
                    "action": ContentAction.WAIT_FOR_TEXT,
                    "text": cond["text"],
                    "appear": cond.get("appear") is not False,
                    "timeout": clamp(s.get("timeoutMs"), 0, max_wait, default=10000),
                },
                "wait text failed",
            )
        elif "networkIdle" in cond:
            total = clamp(
                s.get("timeoutMs"), 1000, max_wait, default=ctx.services.settings.default_wait_ms
            )
            idle = min(1500, max(500, total // 3))
            await wait_for_network_idle(ctx, total, idle)
        elif "navigation" in cond:
            await wait_for_navigation(ctx, s.get("timeoutMs"))
        elif "sleep" in cond:
            try:
                ms = max(0.0, float(cond.get("sleep") or 0))
            except (TypeError, ValueError):
                ms = 0.0
            await sleep_cooperative(ctx, min(ms, max_wait))
        elif "selector" in cond:
            await self._content_wait(
                ctx,
                {
                    "action": ContentAction.WAIT_FOR_SELECTOR,
                    "selector": cond["selector"],
                    "visible": cond.get("visible") is not False,
                    "timeout": clamp(s.get("timeoutMs"), 0, max_wait, default=10000),
                },
                "wait selector failed",
            )
        return ExecResult()

    @staticmethod
    async def _content_wait(ctx: ExecCtx, message: dict, error: str) -> None:
        tab_id = await active_tab_id(ctx)
        reply = await race_termination(ctx, send_content(ctx, tab_id, message, ctx.frame_id))
        if not isinstance(reply, dict) or reply.get("success") is not True:
            raise ElementResolutionError(error)
