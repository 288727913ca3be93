"""fill, with automatic file upload for ``<input type=file>``."""

from __future__ import annotations

from replaykit.browser.bridge import ContentAction
from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType
from replaykit.runtime.common import (
    active_tab_id,
    call_tool,
    element_args,
    ensure_visible,
    first_css_or_attr,
    has_candidates,
    locate_target,
    log_fallback,
    read_page,
    send_content,
)
from replaykit.runtime.templates import interpolate
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult


class FillNode(NodeRuntime):
    type = NodeType.FILL.value

    def validate(self, step: Step) -> ValidationResult:
        if has_candidates(step) and "value" in step:
            return ValidationResult.passed()
        return ValidationResult.failed("Missing target selector candidate or input value")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        tab_id = await active_tab_id(ctx)
        await read_page(ctx)
        target, located, frame_id = await locate_target(ctx, tab_id, step.get("target"))
        raw = step.get("value")
        value = interpolate(raw, ctx.vars) if isinstance(raw, str) else raw
        await ensure_visible(ctx, tab_id, located, frame_id)

        # A resolved ref is checked directly; otherwise the first css/attr candidate
        if located is not None:
            element = {"ref": located.ref}
        else:
            css = first_css_or_attr(target)
            element = {"selector": css} if css else None
        if element and await self._is_file_input(ctx, tab_id, element, frame_id):
            args = dict(element)
            args.update(filePath="" if value is None else str(value), frameId=frame_id)
            await call_tool(ctx, ToolName.FILE_UPLOAD, args, error="file upload failed")
            log_fallback(ctx, step["id"], target, located)
            return ExecResult()

        if located is not None:
            await send_content(
                ctx, tab_id, {"action": ContentAction.SCROLL_INTO_VIEW, "ref": located.ref}, frame_id
            )
            await send_content(ctx, tab_id, {"action": ContentAction.FOCUS_BY_REF, "ref": located.ref}, frame_id)

        args = element_args(target, located)
        args.update(value=value, frameId=frame_id)
        await call_tool(ctx, ToolName.FILL, args, error="fill failed")
        log_fallback(ctx, step["id"], target, located)
        return ExecResult()

    @staticmethod
    async def _is_file_input(
        ctx: ExecCtx, tab_id: int, element: dict[str, str], frame_id: int | None
    ) -> bool:
        message = {"action": ContentAction.GET_ATTRIBUTE_FOR_SELECTOR, "name": "type"}
        message.update(element)
        reply = await send_content(ctx, tab_id, message, frame_id)
        value = reply.get("value") if isinstance(reply, dict) else None
        return str(value or "").lower() == "file"
