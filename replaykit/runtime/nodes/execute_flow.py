from __future__ import annotations

from replaykit.core.errors import ExecutorError, FlowNotFoundError, RunPausedError
from replaykit.flow.types import NodeType
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult


class ExecuteFlowNode(NodeRuntime):
    """
    Run another stored flow.

    Inline (the default) executes the referenced graph inside the current
    context, sharing ``vars`` after merging ``args``. ``inline: false`` starts
    an independent run and waits for it.
    """

    type = NodeType.EXECUTE_FLOW.value

    def validate(self, step: Step) -> ValidationResult:
        if isinstance(step.get("flowId"), str) and step["flowId"]:
            return ValidationResult.passed()
        return ValidationResult.failed("flowId is required")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        services = ctx.services
        flow = services.flows.get(step["flowId"]) if services.flows is not None else None
        if flow is None:
            raise FlowNotFoundError(step["flowId"])
        args = step.get("args") if isinstance(step.get("args"), dict) else {}

        if step.get("inline") is False:
            if services.run_separate is None:
                raise ExecutorError("executeFlow: separate runs are not available")
            result = await services.run_separate(flow.id, dict(args))
            if not result.success:
                raise ExecutorError(f"executeFlow: run {result.run_id} failed: {result.error or 'unknown'}")
            return ExecResult()

        if services.run_inline is None:
            raise ExecutorError("executeFlow: inline runs are not available")
        if not flow.nodes:
            raise ExecutorError(f"executeFlow: flow {flow.id} has no nodes")
        ctx.vars.update(args)
        paused_at = await services.run_inline(ctx, flow)
        if paused_at is not None:
            raise RunPausedError(step["id"])
        return ExecResult()
