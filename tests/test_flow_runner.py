"""Unit tests for FlowRunner traversal, retries and subflows."""

from __future__ import annotations

import pytest
from conftest import make_ctx, make_services, make_settings

from replaykit.core.errors import RunCanceledError, StepValidationError
from replaykit.events.bus import EventsBus
from replaykit.events.store import InMemoryEventsStore
from replaykit.events.types import EventsQuery, RunEventType
from replaykit.flow.types import Edge, EdgeLabel, Flow, LogStatus, NodeBase, Subflow
from replaykit.replay.after_scripts import AfterScriptQueue
from replaykit.replay.flow_runner import FlowRunner, main_path
from replaykit.replay.retry import Backoff, RetryPolicy, with_retry
from replaykit.runtime.registry import NodeRegistry
from replaykit.runtime.types import ExecResult, ForeachControl, NodeRuntime


class ScriptedNode(NodeRuntime):
    """``script`` handler whose behaviour is looked up by step id."""

    type = "script"

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.behaviour: dict = {}

    async def run(self, ctx, step):
        self.calls.append(step["id"])
        action = self.behaviour.get(step["id"])
        if action is None:
            return ExecResult()
        if isinstance(action, Exception):
            raise action
        return action(ctx, step)


def node(node_id: str, **config) -> NodeBase:
    return NodeBase(id=node_id, type="script", config=config)


def chain(*ids: str) -> list[Edge]:
    return [Edge(id=f"e_{i}_{a}_{b}", from_=a, to=b) for i, (a, b) in enumerate(zip(ids, ids[1:]))]


class TestMainPath:
    def test_branch_targets_are_excluded(self):
        nodes = [node("a"), node("b"), node("yes"), node("c")]
        edges = chain("a", "b", "c") + [Edge(id="t", from_="b", to="yes", label=EdgeLabel.TRUE)]
        assert [n.id for n in main_path(nodes, edges)] == ["a", "b", "c"]

    def test_no_edges_keeps_array_order(self):
        assert [n.id for n in main_path([node("a"), node("b")], [])] == ["a", "b"]


class TestRetry:
    async def test_exponential_delays(self):
        delays: list[float] = []
        attempts = []

        async def run():
            attempts.append(1)
            raise RuntimeError("flaky")

        async def sleep(ms):
            delays.append(ms)

        policy = RetryPolicy.from_step({"retry": {"count": 2, "intervalMs": 100, "backoff": "exp"}})
        assert policy.backoff == Backoff.EXP
        with pytest.raises(RuntimeError, match="flaky"):
            await with_retry(run, policy, sleep=sleep)
        assert len(attempts) == 3
        assert delays == [100, 200]

    async def test_non_retryable_errors_raise_immediately(self):
        attempts = []

        async def run():
            attempts.append(1)
            raise StepValidationError("click", ["bad"])

        with pytest.raises(StepValidationError):
            await with_retry(run, RetryPolicy(count=5))
        assert len(attempts) == 1

    def test_malformed_policy_means_no_retry(self):
        assert RetryPolicy.from_step({"retry": {"count": "many"}}).count == 0
        assert RetryPolicy.from_step({}).count == 0


class TestFlowRunner:
    def setup_method(self):
        self.handler = ScriptedNode()
        self.registry = NodeRegistry({"script": self.handler})
        self.settings = make_settings()
        self.events = EventsBus(InMemoryEventsStore())
        self.entries: list = []
        self.ctx = make_ctx(make_services(settings=self.settings), entries=self.entries)

    def runner(self, flow: Flow, **kw) -> FlowRunner:
        return FlowRunner(flow, self.registry, self.settings, events=self.events, **kw)

    async def run(self, nodes, edges, subflows=None, **kw):
        flow = Flow(id="f1", name="t", nodes=nodes, edges=edges, subflows=subflows or {})
        return await self.runner(flow, **kw).run_graph(self.ctx, nodes, edges)

    def statuses(self, step_id: str) -> list[LogStatus]:
        return [e.status for e in self.entries if e.step_id == step_id]

    # ------------------------------------------------------------------ traversal

    async def test_linear_flow_runs_in_edge_order(self):
        nodes = [node("c"), node("a"), node("b")]
        assert await self.run(nodes, chain("a", "b", "c")) is None
        assert self.handler.calls == ["a", "b", "c"]
        assert self.statuses("a") == [LogStatus.SUCCESS]

    async def test_label_jump_detours_then_rejoins(self):
        self.handler.behaviour["cond"] = lambda ctx, step: ExecResult(next_label=EdgeLabel.TRUE)
        nodes = [node("start"), node("cond"), node("yes"), node("end")]
        edges = chain("start", "cond", "end") + [
            Edge(id="t", from_="cond", to="yes", label=EdgeLabel.TRUE),
            Edge(id="back", from_="yes", to="end"),
        ]
        await self.run(nodes, edges)
        assert self.handler.calls == ["start", "cond", "yes", "end"]

    async def test_missing_label_edge_warns_and_continues(self):
        self.handler.behaviour["cond"] = lambda ctx, step: ExecResult(next_label=EdgeLabel.FALSE)
        nodes = [node("cond"), node("yes"), node("end")]
        edges = chain("cond", "end") + [Edge(id="t", from_="cond", to="yes", label=EdgeLabel.TRUE)]
        await self.run(nodes, edges)
        assert self.handler.calls == ["cond", "end"]
        warning = next(e for e in self.entries if e.status == LogStatus.WARNING)
        assert "No edge for label 'false'" in warning.message

    async def test_disabled_node_is_skipped(self):
        nodes = [node("a"), node("b"), node("c")]
        nodes[1].disabled = True
        await self.run(nodes, chain("a", "b", "c"))
        assert self.handler.calls == ["a", "c"]
        skipped = [e for e in await self._events() if e.type == RunEventType.NODE_SKIPPED]
        assert [e.node_id for e in skipped] == ["b"]

    async def test_failure_follows_on_error_edge(self):
        self.handler.behaviour["a"] = RuntimeError("boom")
        nodes = [node("a"), node("b"), node("recover")]
        edges = chain("a", "b") + [Edge(id="err", from_="a", to="recover", label=EdgeLabel.ON_ERROR)]
        await self.run(nodes, edges)
        assert self.handler.calls == ["a", "recover"]
        assert self.statuses("a") == [LogStatus.FAILED]

    async def test_failure_without_route_propagates(self):
        self.handler.behaviour["b"] = RuntimeError("boom")
        with pytest.raises(RuntimeError, match="boom"):
            await self.run([node("a"), node("b"), node("c")], chain("a", "b", "c"))
        assert self.handler.calls == ["a", "b"]

    async def test_cycle_guard(self):
        self.settings = make_settings(max_iterations=5)
        self.handler.behaviour["a"] = lambda ctx, step: ExecResult(next_label="loop")
        nodes = [node("a")]
        edges = [Edge(id="self", from_="a", to="a", label="loop")]
        assert await self.run(nodes, edges) is None
        assert len(self.handler.calls) == 5
        assert "Flow exceeded 5 iterations - possible cycle" in self.entries[-1].message

    async def test_cancel_raises(self):
        self.ctx.token.cancel()
        with pytest.raises(RunCanceledError):
            await self.run([node("a")], [])

    async def test_pause_returns_current_node(self):
        self.handler.behaviour["a"] = lambda ctx, step: (ctx.token.pause(), ExecResult())[1]
        assert await self.run([node("a"), node("b")], chain("a", "b")) == "b"

    # ------------------------------------------------------------------ retries

    async def test_retries_are_logged_then_failure_keeps_original_message(self):
        self.handler.behaviour["a"] = RuntimeError("element missing")
        nodes = [node("a", retry={"count": 2, "intervalMs": 10, "backoff": "exp"})]
        with pytest.raises(RuntimeError):
            await self.run(nodes, [])
        assert self.handler.calls == ["a", "a", "a"]
        assert self.statuses("a") == [LogStatus.RETRYING, LogStatus.RETRYING, LogStatus.FAILED]
        assert self.entries[-1].message == "element missing"
        retrying = [e for e in await self._events() if e.type == RunEventType.NODE_RETRYING]
        assert [e.data["attempt"] for e in retrying] == [1, 2]

    # ------------------------------------------------------------------ events / side effects

    async def test_node_lifecycle_events(self):
        await self.run([node("a")], [])
        events = await self._events()
        assert [e.type for e in events] == [RunEventType.NODE_STARTED, RunEventType.NODE_SUCCEEDED]
        assert [e.seq for e in events] == [1, 2]

    async def test_deferred_script_is_queued(self):
        queue = AfterScriptQueue(self.entries.append)
        self.handler.behaviour["a"] = lambda ctx, step: ExecResult(defer_after_script={"code": "x()"})
        await self.run([node("a")], [], after_scripts=queue)
        assert len(queue) == 1

    # ------------------------------------------------------------------ subflows

    async def test_foreach_runs_subflow_per_item(self):
        seen = []
        self.handler.behaviour["loop"] = lambda ctx, step: ExecResult(
            control=ForeachControl(list_var="items", subflow_id="body")
        )
        self.handler.behaviour["inner"] = lambda ctx, step: (seen.append(ctx.vars["item"]), ExecResult())[1]
        self.ctx.vars["items"] = [1, 2, 3]
        subflows = {"body": Subflow(nodes=[node("inner")], edges=[])}
        await self.run([node("loop"), node("after")], chain("loop", "after"), subflows=subflows)
        assert seen == [1, 2, 3]
        assert self.handler.calls[-1] == "after"

    async def test_missing_subflow_is_a_no_op(self):
        self.handler.behaviour["loop"] = lambda ctx, step: ExecResult(
            control=ForeachControl(list_var="items", subflow_id="ghost")
        )
        self.ctx.vars["items"] = [1]
        await self.run([node("loop")], [])
        assert self.handler.calls == ["loop"]

    async def _events(self):
        return await self.events.list(EventsQuery(run_id="run_test"))
