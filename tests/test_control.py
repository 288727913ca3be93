"""Unit tests for ControlFlowRunner (foreach / while)."""

from __future__ import annotations

import asyncio

import pytest
from conftest import make_ctx

from replaykit.control.runner import ControlFlowRunner
from replaykit.runtime.types import ForeachControl, WhileControl


class Recorder:
    """Subflow double that records what each invocation saw."""

    def __init__(self, delay: float = 0.0, on_call=None) -> None:
        self.delay = delay
        self.on_call = on_call
        self.seen: list = []
        self.active = 0
        self.peak = 0

    async def __call__(self, subflow_id, ctx):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            self.seen.append((subflow_id, ctx.vars.get("item"), ctx))
            if self.on_call:
                self.on_call(ctx)
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return None


class TestForeach:
    async def test_sequential_writes_item_into_shared_vars(self):
        sub = Recorder()
        ctx = make_ctx(vars={"items": ["a", "b", "c"]})
        outcome = await ControlFlowRunner(sub).run(ForeachControl(list_var="items", subflow_id="sf"), ctx)
        assert outcome == "ok"
        assert [item for _, item, _ in sub.seen] == ["a", "b", "c"]
        assert ctx.vars["item"] == "c"
        assert all(c is ctx for _, _, c in sub.seen)

    async def test_concurrency_is_bounded_by_items_and_cap(self):
        sub = Recorder(delay=0.01)
        ctx = make_ctx(vars={"items": [1, 2, 3, 4, 5]})
        control = ForeachControl(list_var="items", subflow_id="sf", concurrency=1000)
        outcome = await ControlFlowRunner(sub, max_concurrency=16).run(control, ctx)
        assert outcome == "ok"
        assert sub.peak <= 5
        assert sorted(item for _, item, _ in sub.seen) == [1, 2, 3, 4, 5]

    async def test_concurrency_cap_applies_to_long_lists(self):
        sub = Recorder(delay=0.005)
        ctx = make_ctx(vars={"items": list(range(40))})
        control = ForeachControl(list_var="items", subflow_id="sf", concurrency=1000)
        await ControlFlowRunner(sub, max_concurrency=16).run(control, ctx)
        assert 1 < sub.peak <= 16
        assert sorted(item for _, item, _ in sub.seen) == list(range(40))

    async def test_parallel_branches_get_shallow_copies(self):
        def touch(child):
            child.vars["shared"]["hits"].append(child.vars["item"])
            child.vars["scalar"] = "changed"

        sub = Recorder(on_call=touch)
        ctx = make_ctx(vars={"items": ["x", "y"], "shared": {"hits": []}, "scalar": "orig"})
        await ControlFlowRunner(sub).run(ForeachControl(list_var="items", subflow_id="sf", concurrency=2), ctx)
        assert "item" not in ctx.vars
        assert ctx.vars["scalar"] == "orig"
        assert sorted(ctx.vars["shared"]["hits"]) == ["x", "y"]

    async def test_missing_list_runs_nothing(self):
        sub = Recorder()
        outcome = await ControlFlowRunner(sub).run(ForeachControl(list_var="nope", subflow_id="sf"), make_ctx())
        assert outcome == "ok"
        assert sub.seen == []

    async def test_pause_stops_iteration(self):
        sub = Recorder(on_call=lambda c: c.token.pause())
        ctx = make_ctx(vars={"items": [1, 2, 3]})
        outcome = await ControlFlowRunner(sub).run(ForeachControl(list_var="items", subflow_id="sf"), ctx)
        assert outcome == "paused"
        assert len(sub.seen) == 1

    async def test_branch_failure_propagates(self):
        async def failing(subflow_id, ctx):
            if ctx.vars["item"] == 2:
                raise RuntimeError("item 2 broke")
            await asyncio.sleep(0.01)

        ctx = make_ctx(vars={"items": [1, 2, 3]})
        with pytest.raises(RuntimeError, match="item 2 broke"):
            await ControlFlowRunner(failing).run(
                ForeachControl(list_var="items", subflow_id="sf", concurrency=3), ctx
            )


class TestWhile:
    async def test_stops_at_max_iterations(self):
        sub = Recorder()
        ctx = make_ctx(vars={"go": True})
        control = WhileControl(condition="vars.go", subflow_id="sf", max_iterations=10)
        outcome = await ControlFlowRunner(sub).run(control, ctx)
        assert outcome == "ok"
        assert len(sub.seen) == 10

    async def test_stops_when_condition_turns_false(self):
        def count(child):
            child.vars["n"] += 1

        sub = Recorder(on_call=count)
        ctx = make_ctx(vars={"n": 0})
        control = WhileControl(condition={"expression": "vars.n < 3"}, subflow_id="sf")
        await ControlFlowRunner(sub).run(control, ctx)
        assert ctx.vars["n"] == 3

    async def test_custom_evaluator(self):
        sub = Recorder()
        calls = []

        def evaluate(condition, variables):
            calls.append(condition)
            return len(calls) <= 2

        control = WhileControl(condition="anything", subflow_id="sf")
        await ControlFlowRunner(sub, evaluate=evaluate).run(control, make_ctx())
        assert len(sub.seen) == 2

    async def test_pause_inside_body(self):
        sub = Recorder(on_call=lambda c: c.token.pause())
        control = WhileControl(condition="true", subflow_id="sf", max_iterations=5)
        outcome = await ControlFlowRunner(sub).run(control, make_ctx())
        assert outcome == "paused"
        assert len(sub.seen) == 1


async def test_unknown_directive_is_ok():
    assert await ControlFlowRunner(Recorder()).run(None, make_ctx()) == "ok"
