"""assert: textPresent, exists, visible, attribute equals/matches."""

from __future__ import annotations

import re

from replaykit.browser.bridge import ContentAction
from replaykit.core.errors import AssertionFailedError
from replaykit.flow.types import NodeType
from replaykit.runtime.common import active_tab_id, log_warning, read_page, send_content
from replaykit.runtime.templates import expand_templates_deep
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult
from replaykit.runtime.waits import race_termination


class AssertNode(NodeRuntime):
    """
    Check page state.

    ``failStrategy: "warn"`` downgrades a failed check to a warning entry and
    marks the result ``already_logged``; the default ``"stop"`` raises.
    """

    type = NodeType.ASSERT.value

    def validate(self, step: Step) -> ValidationResult:
        spec = step.get("assert")
        if not spec or not isinstance(spec, dict):
            return ValidationResult.failed("Missing assertion condition")
        if "attribute" in spec:
            attr = spec.get("attribute") or {}
            if not attr.get("selector") or not attr.get("name"):
                return ValidationResult.failed("assert.attribute: selector and name are required")
        return ValidationResult.passed()

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        s = expand_templates_deep(step, ctx.vars)
        message = await self._check(ctx, s)
        if message is None:
            return ExecResult()
        if (s.get("failStrategy") or "stop") == "warn":
            log_warning(ctx, step["id"], message)
            return ExecResult(already_logged=True)
        raise AssertionFailedError(message)

    async def _check(self, ctx: ExecCtx, s: Step) -> str | None:
        """Return the failure message, or None when the assertion holds."""
        spec = s["assert"]
        tab_id = await active_tab_id(ctx)

        if "textPresent" in spec:
            reply = await race_termination(
                ctx,
                send_content(
                    ctx,
                    tab_id,
                    {
                        "action": ContentAction.WAIT_FOR_TEXT,
                        "text": spec["textPresent"],
                        "appear": True,
                        "timeout": s.get("timeoutMs") or 5000,
                    },
                    ctx.frame_id,
                ),
            )
            if not isinstance(reply, dict) or not reply.get("success"):
                return "assert text failed"
            return None

        if "exists" in spec or "visible" in spec:
            selector = spec.get("exists") or spec.get("visible")
            await read_page(ctx)
            reply = await send_content(
                ctx,
                tab_id,
                {"action": ContentAction.ENSURE_REF_FOR_SELECTOR, "selector": selector},
                ctx.frame_id,
            )
            if not isinstance(reply, dict) or not reply.get("success"):
                return "assert selector not found"
            if "visible" in spec and not reply.get("center"):
                return "assert visible failed"
            return None

        if "attribute" in spec:
            attr = spec["attribute"]
            name = attr["name"]
            await read_page(ctx)
            reply = await send_content(
                ctx,
                tab_id,
                {
                    "action": ContentAction.GET_ATTRIBUTE_FOR_SELECTOR,
                    "selector": attr["selector"],
                    "name": name,
                },
                ctx.frame_id,
            )
            if not isinstance(reply, dict) or not reply.get("success"):
                return "assert attribute: element not found"
            actual = reply.get("value")
            if attr.get("equals") is not None:
                expected = str(attr["equals"])
                if str(actual) != expected:
                    return f"assert attribute equals failed: {name} actual={actual} expected={expected}"
            elif attr.get("matches") is not None:
                pattern = str(attr["matches"])
                try:
                    if not re.search(pattern, str(actual)):
                        return f"assert attribute matches failed: {name} actual={actual} regex={pattern}"
                except re.error:
                    return f"invalid regex for attribute matches: {pattern}"
            elif actual is None:
                return f"assert attribute failed: {name} missing"
        return None
