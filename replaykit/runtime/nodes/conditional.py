"""if: branch selection by label."""

from __future__ import annotations

from replaykit.flow.types import EdgeLabel, NodeType
from replaykit.runtime.expression import evaluate, evaluate_condition
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step, ValidationResult


class IfNode(NodeRuntime):
    """
    Pick the outgoing edge label.

    With ``branches``, the first branch whose ``expr`` is truthy wins and its
    ``label`` (or ``case:<id>``) is returned; otherwise ``else`` or
    ``"default"``. The legacy single ``condition`` yields ``"true"`` or
    ``"false"``.
    """

    type = NodeType.IF.value

    def validate(self, step: Step) -> ValidationResult:
        branches = step.get("branches")
        if (isinstance(branches, list) and branches) or step.get("condition"):
            return ValidationResult.passed()
        return ValidationResult.failed("Missing condition or branches")

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        branches = step.get("branches")
        if isinstance(branches, list) and branches:
            for br in branches:
                if not isinstance(br, dict):
                    continue
                expr = str(br.get("expr") or "").strip()
                if expr and evaluate(expr, ctx.vars):
                    label = br.get("label") or f"case:{br.get('id') or 'match'}"
                    return ExecResult(next_label=str(label))
            if "else" in step:
                return ExecResult(next_label=str(step["else"] or EdgeLabel.DEFAULT))
            return ExecResult(next_label=EdgeLabel.DEFAULT)

        matched = evaluate_condition(step.get("condition"), ctx.vars)
        return ExecResult(next_label=EdgeLabel.TRUE if matched else EdgeLabel.FALSE)
