"""End-to-end replay through ReplayManager with a scripted browser."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeBridge, make_executor, make_services, make_settings

from replaykit.core.errors import FlowNotFoundError, ReplayError
from replaykit.events.bus import EventsBus
from replaykit.events.store import InMemoryEventsStore
from replaykit.events.types import RunEventType
from replaykit.flow.graph import rechain
from replaykit.flow.store import FlowStore
from replaykit.flow.types import Flow, LogStatus, NodeBase, VariableDef, VariableRules
from replaykit.replay.manager import ReplayManager
from replaykit.runtime.registry import NodeRegistry
from replaykit.runtime.types import ExecResult, NodeRuntime


class GateNode(NodeRuntime):
    """``script`` handler that records calls and can block on a gate per step id."""

    type = "script"

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.entered = asyncio.Event()

    async def run(self, ctx, step):
        self.calls.append(step["id"])
        gate = self.gates.get(step["id"])
        if gate is not None:
            self.entered.set()
            await gate.wait()
        if step.get("save"):
            ctx.vars[step["save"]] = step["id"]
        return ExecResult()


def linear_flow(flow_id: str, *nodes: NodeBase, variables=None) -> Flow:
    nodes = list(nodes)
    return Flow(id=flow_id, name=flow_id, nodes=nodes, edges=rechain(nodes), variables=variables or [])


def script(node_id: str, **config) -> NodeBase:
    return NodeBase(id=node_id, type="script", config=config)


class TestReplayManager:
    def setup_method(self):
        self.settings = make_settings()
        self.store = FlowStore(store_dir=self.settings.store_dir)
        self.bridge = FakeBridge()
        self.executor = make_executor()
        self.events = EventsBus(InMemoryEventsStore())
        self.handler = GateNode()
        services = make_services(bridge=self.bridge, executor=self.executor, settings=self.settings)
        self.manager = ReplayManager(
            self.store,
            services,
            self.events,
            registry=NodeRegistry({"script": self.handler}),
            settings=self.settings,
        )

    async def event_types(self, run_id: str) -> list[str]:
        return [e.type.value for e in await self.manager.list_events(run_id)]

    # ------------------------------------------------------------------ success / failure

    async def test_successful_run(self):
        self.store.save(
            linear_flow(
                "f1",
                NodeBase(id="nav", type="navigate", config={"url": "https://example.com/{page}"}),
                script("s1", save="out"),
            )
        )
        result = await self.manager.run("f1", {"page": "home"})
        assert result.success is True
        assert result.summary.total == 2
        assert result.summary.success == 2
        assert result.summary.failed == 0
        assert result.outputs["out"] == "s1"
        assert result.url == "https://example.com/"
        assert self.executor.call_tool.await_args_list[0].args[1] == {"url": "https://example.com/home"}

        events = await self.manager.list_events(result.run_id)
        assert [e.seq for e in events] == list(range(1, len(events) + 1))
        assert events[0].type == RunEventType.RUN_QUEUED
        assert events[1].type == RunEventType.RUN_STARTED
        assert events[-1].type == RunEventType.RUN_SUCCEEDED

    async def test_run_is_persisted(self):
        self.store.save(linear_flow("f1", script("s1")))
        result = await self.manager.run("f1")
        runs = self.store.list_runs("f1")
        assert [r.id for r in runs] == [result.run_id]
        assert runs[0].success is True

    async def test_failed_step_fails_run(self):
        self.store.save(linear_flow("f1", NodeBase(id="nav", type="navigate", config={})))
        result = await self.manager.run("f1")
        assert result.success is False
        assert result.error == "URL is missing"
        assert result.summary.failed == 1
        assert result.logs[-1].status == LogStatus.FAILED
        assert (await self.event_types(result.run_id))[-1] == "run.failed"

    async def test_invalid_variables_fail_before_any_step(self):
        required = VariableDef(key="user", rules=VariableRules(required=True))
        self.store.save(linear_flow("f1", script("s1"), variables=[required]))
        result = await self.manager.run("f1")
        assert result.success is False
        assert result.error == "variable 'user' is required"
        assert self.handler.calls == []
        assert await self.event_types(result.run_id) == ["run.queued", "run.failed"]

    async def test_sensitive_variables_are_not_output(self):
        secret = VariableDef(key="password", sensitive=True)
        self.store.save(linear_flow("f1", script("s1"), variables=[secret]))
        result = await self.manager.run("f1", {"password": "hunter2", "user": "ada"})
        assert "password" not in result.outputs
        assert result.outputs["user"] == "ada"

    async def test_finished_runs_are_pruned(self):
        self.store.save(linear_flow("f1", script("s1")))
        result = await self.manager.run("f1")
        assert self.manager._runners == {}
        assert self.manager._tasks == {}
        again = await self.manager.wait(result.run_id)
        assert again.success is True
        with pytest.raises(ReplayError):
            await self.manager.pause(result.run_id)

    async def test_paused_run_is_kept_until_final(self):
        self.handler.gates["a"] = asyncio.Event()
        self.store.save(linear_flow("f1", script("a"), script("b")))
        run_id = await self.manager.enqueue("f1")
        await self.handler.entered.wait()
        await self.manager.pause(run_id)
        self.handler.gates["a"].set()
        await self.manager.wait(run_id)
        assert run_id in self.manager._runners

        await self.manager.resume(run_id)
        await self.manager.wait(run_id)
        assert run_id not in self.manager._runners
        assert run_id not in self.manager._tasks

    async def test_unknown_flow(self):
        with pytest.raises(FlowNotFoundError):
            await self.manager.enqueue("missing")
        with pytest.raises(ReplayError):
            await self.manager.wait("run_nope")

    # ------------------------------------------------------------------ pause / resume / cancel

    async def test_pause_then_resume_continues_from_next_node(self):
        self.handler.gates["a"] = asyncio.Event()
        self.store.save(linear_flow("f1", script("a"), script("b")))
        run_id = await self.manager.enqueue("f1")
        await self.handler.entered.wait()
        await self.manager.pause(run_id)
        self.handler.gates["a"].set()

        paused = await self.manager.wait(run_id)
        assert paused.paused is True
        assert paused.paused_at == "b"
        assert self.handler.calls == ["a"]

        await self.manager.resume(run_id)
        result = await self.manager.wait(run_id)
        assert result.success is True
        assert self.handler.calls == ["a", "b"]
        types = await self.event_types(run_id)
        assert types.index("run.paused") < types.index("run.resumed") < types.index("run.succeeded")

    async def test_cancel_running(self):
        self.handler.gates["a"] = asyncio.Event()
        self.store.save(linear_flow("f1", script("a"), script("b")))
        run_id = await self.manager.enqueue("f1")
        await self.handler.entered.wait()
        await self.manager.cancel(run_id)
        self.handler.gates["a"].set()
        result = await self.manager.wait(run_id)
        assert result.success is False
        assert result.error == "Terminated"
        assert self.handler.calls == ["a"]
        assert (await self.event_types(run_id))[-1] == "run.canceled"

    async def test_cancel_paused(self):
        self.handler.gates["a"] = asyncio.Event()
        self.store.save(linear_flow("f1", script("a"), script("b")))
        run_id = await self.manager.enqueue("f1")
        await self.handler.entered.wait()
        await self.manager.pause(run_id)
        self.handler.gates["a"].set()
        await self.manager.wait(run_id)

        await self.manager.cancel(run_id)
        result = await self.manager.wait(run_id)
        assert result.error == "Terminated"
        assert self.handler.calls == ["a"]

    async def test_runs_execute_one_at_a_time(self):
        self.handler.gates["a"] = asyncio.Event()
        self.store.save(linear_flow("f1", script("a")))
        self.store.save(linear_flow("f2", script("z")))
        first = await self.manager.enqueue("f1")
        second = await self.manager.enqueue("f2")
        await self.handler.entered.wait()
        await asyncio.sleep(0.02)
        assert self.handler.calls == ["a"]
        self.handler.gates["a"].set()
        await self.manager.wait(first)
        await self.manager.wait(second)
        assert self.handler.calls == ["a", "z"]

    async def test_subscribe_filters_by_run(self):
        self.store.save(linear_flow("f1", script("s1")))
        received = []
        unsubscribe = self.manager.subscribe(received.append, run_id="run_other")
        await self.manager.run("f1")
        unsubscribe()
        assert received == []

    # ------------------------------------------------------------------ executeFlow

    async def test_execute_flow_inline_shares_vars(self):
        self.store.save(linear_flow("child", script("c1", save="from_child")))
        self.store.save(
            linear_flow(
                "parent",
                NodeBase(id="x", type="executeFlow", config={"flowId": "child", "args": {"k": 1}}),
                script("p2"),
            )
        )
        result = await self.manager.run("parent")
        assert result.success is True
        assert self.handler.calls == ["c1", "p2"]
        assert result.outputs["from_child"] == "c1"
        assert result.outputs["k"] == 1

    async def test_execute_flow_separate_run(self):
        self.store.save(linear_flow("child", script("c1", save="from_child")))
        self.store.save(
            linear_flow(
                "parent",
                NodeBase(id="x", type="executeFlow", config={"flowId": "child", "inline": False}),
            )
        )
        result = await self.manager.run("parent")
        assert result.success is True
        assert self.handler.calls == ["c1"]
        assert "from_child" not in result.outputs
        assert len(self.store.list_runs("child")) == 1
