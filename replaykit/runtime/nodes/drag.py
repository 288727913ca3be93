from __future__ import annotations

from replaykit.browser.executor import ToolName
from replaykit.flow.types import NodeType, TargetLocator
from replaykit.runtime.common import active_tab_id, call_tool
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult


class DragNode(NodeRuntime):
    type = NodeType.DRAG.value

    def validate(self, step: Step) -> ValidationResult:
        path = step.get("path")
        if (step.get("start") and step.get("end")) or (isinstance(path, list) and len(path) >= 2):
            return ValidationResult.passed()
        return ValidationResult.failed("drag: start/end targets or a path of two points is required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        start_ref = end_ref = None
        if step.get("start") and step.get("end"):
            tab_id = await active_tab_id(ctx)
            start = TargetLocator.from_dict(step["start"])
            end = TargetLocator.from_dict(step["end"])
            located_start = await ctx.services.selectors.locate(tab_id, start, ctx.frame_id)
            located_end = await ctx.services.selectors.locate(tab_id, end, ctx.frame_id)
            start_ref = located_start.ref if located_start else start.ref
            end_ref = located_end.ref if located_end else end.ref

        args = {"startRef": start_ref, "ref": end_ref}
        path = step.get("path")
        if (not start_ref or not end_ref) and isinstance(path, list) and len(path) >= 2:
            args["startCoordinates"] = {"x": float(path[0]["x"]), "y": float(path[0]["y"])}
            args["coordinates"] = {"x": float(path[-1]["x"]), "y": float(path[-1]["y"])}
        await call_tool(ctx, ToolName.DRAG, args, error="drag failed")
        return ExecResult()
