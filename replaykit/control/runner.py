"""Interpret ``foreach`` / ``while`` control directives returned by step handlers."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Literal

import structlog

from replaykit.runtime.expression import evaluate_condition
from replaykit.runtime.types import ControlDirective, ExecCtx, ForeachControl, WhileControl

logger = structlog.get_logger(__name__)

ControlOutcome = Literal["ok", "paused"]
# Runs one named subflow in the given context; returns the paused node id, if any
SubflowFn = Callable[[str, ExecCtx], Awaitable[Any]]
ConditionFn = Callable[[Any, dict], bool]


class ControlFlowRunner:
    """
    Loop interpreter.

    Sequential ``foreach`` writes each item into the shared ``ctx.vars``.
    Parallel ``foreach`` gives every item a shallow copy of ``ctx.vars``:
    the item variable is private to its branch, nested objects are shared,
    and nothing is merged back afterwards.
    """

    def __init__(
        self,
        run_subflow: SubflowFn,
        max_concurrency: int = 16,
        evaluate: ConditionFn = evaluate_condition,
    ) -> None:
        self._run_subflow = run_subflow
        self._max_concurrency = max(1, max_concurrency)
        self._evaluate = evaluate
        self.log = logger.bind(component="control_flow")

    async def run(self, control: ControlDirective | None, ctx: ExecCtx) -> ControlOutcome:
        kind = getattr(control, "kind", None)
        if isinstance(control, ForeachControl):
            return await self._foreach(control, ctx)
        if isinstance(control, WhileControl):
            return await self._while(control, ctx)
        self.log.debug("unknown_control_kind", kind=kind)
        return "ok"

    def _outcome(self, ctx: ExecCtx) -> ControlOutcome:
        return "paused" if ctx.is_paused() else "ok"

    async def _foreach(self, control: ForeachControl, ctx: ExecCtx) -> ControlOutcome:
        items = ctx.vars.get(control.list_var)
        items = list(items) if isinstance(items, (list, tuple)) else []
        concurrency = max(1, min(self._max_concurrency, int(control.concurrency or 1)))

        if concurrency <= 1:
            for item in items:
                ctx.vars[control.item_var] = item
                await self._run_subflow(control.subflow_id, ctx)
                if ctx.is_paused():
                    return "paused"
            return self._outcome(ctx)

        cursor = 0

        async def worker() -> None:
            nonlocal cursor
            while cursor < len(items) and not ctx.is_paused():
                item = items[cursor]
                cursor += 1
                child = ctx.branch(dict(ctx.vars))
                child.vars[control.item_var] = item
                await self._run_subflow(control.subflow_id, child)

        n_workers = min(concurrency, len(items))
        self.log.debug("foreach_parallel", items=len(items), workers=n_workers)
        tasks = [asyncio.ensure_future(worker()) for _ in range(n_workers)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return self._outcome(ctx)

    async def _while(self, control: WhileControl, ctx: ExecCtx) -> ControlOutcome:
        iterations = 0
        while iterations < control.max_iterations and self._evaluate(control.condition, ctx.vars):
            await self._run_subflow(control.subflow_id, ctx)
            if ctx.is_paused():
                return "paused"
            iterations += 1
        if iterations >= control.max_iterations:
            self.log.info("while_iteration_cap", max_iterations=control.max_iterations)
        return self._outcome(ctx)
