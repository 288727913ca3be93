"""Run queue: enqueue by flow id, pause/resume/cancel, event subscriptions."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Any

import structlog

from replaykit.core.config import EngineSettings, get_settings
from replaykit.core.errors import FlowNotFoundError, ReplayError
from replaykit.events.bus import EventsBus
from replaykit.events.types import (
    EventsFilter,
    EventsQuery,
    Listener,
    RunEvent,
    RunEventInput,
    RunEventType,
    Unsubscribe,
)
from replaykit.flow.store import FlowStore
from replaykit.flow.types import RunResult
from replaykit.replay.runner import ReplayRunner, new_run_id
from replaykit.runtime.registry import NodeRegistry
from replaykit.runtime.types import RuntimeServices

logger = structlog.get_logger(__name__)

# Final results kept for late wait() calls after a run is pruned
MAX_FINISHED_RESULTS = 100


class ReplayManager:
    """
    Owns every run started through it.

    Runs execute one at a time against the shared browser; queued runs wait
    on a lock in enqueue order.
    """

    def __init__(
        self,
        store: FlowStore,
        services: RuntimeServices,
        events: EventsBus,
        registry: NodeRegistry | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._store = store
        self._services = services
        self._events = events
        self._registry = registry or NodeRegistry()
        self._settings = settings or get_settings()
        self._runners: dict[str, ReplayRunner] = {}
        self._tasks: dict[str, asyncio.Task[RunResult]] = {}
        self._finished: OrderedDict[str, RunResult] = OrderedDict()
        self._lock = asyncio.Lock()
        self.log = logger.bind(component="replay_manager")

    # ------------------------------------------------------------------
    # Starting runs
    # ------------------------------------------------------------------

    async def enqueue(self, flow_id: str, args: dict[str, Any] | None = None) -> str:
        """Queue a run of ``flow_id`` and return its run id immediately."""
        flow = self._store.get(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)

        run_id = new_run_id()
        runner = ReplayRunner(
            flow, self._services, self._registry, self._events, self._store, run_id=run_id
        )
        self._runners[run_id] = runner
        await self._events.append(
            RunEventInput(run_id=run_id, type=RunEventType.RUN_QUEUED, data={"flowId": flow_id})
        )
        self.log.info("run_queued", run_id=run_id, flow_id=flow_id)
        self._tasks[run_id] = asyncio.create_task(self._guarded(run_id, runner.run(dict(args or {}))))
        return run_id

    async def run(self, flow_id: str, args: dict[str, Any] | None = None) -> RunResult:
        run_id = await self.enqueue(flow_id, args)
        return await self.wait(run_id)

    async def wait(self, run_id: str) -> RunResult:
        """Wait for the current leg of ``run_id``; a paused run returns its paused result."""
        task = self._tasks.get(run_id)
        if task is None:
            finished = self._finished.get(run_id)
            if finished is None:
                raise ReplayError(f"unknown run {run_id}")
            return finished
        return await task

    async def _guarded(self, run_id: str, work) -> RunResult:
        async with self._lock:
            return await self._settle(run_id, work)

    async def _settle(self, run_id: str, work) -> RunResult:
        """Await one leg of a run; a final result drops the run's runner and task."""
        result = await work
        if not result.paused:
            self._runners.pop(run_id, None)
            self._tasks.pop(run_id, None)
            self._finished[run_id] = result
            while len(self._finished) > MAX_FINISHED_RESULTS:
                self._finished.popitem(last=False)
        return result

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def _runner(self, run_id: str) -> ReplayRunner:
        runner = self._runners.get(run_id)
        if runner is None:
            raise ReplayError(f"unknown run {run_id}")
        return runner

    def _active(self, run_id: str) -> bool:
        task = self._tasks.get(run_id)
        return task is not None and not task.done()

    async def pause(self, run_id: str) -> None:
        runner = self._runner(run_id)
        runner.token.pause()
        self.log.info("run_pause_requested", run_id=run_id)

    async def resume(self, run_id: str) -> None:
        runner = self._runner(run_id)
        await self._events.append(RunEventInput(run_id=run_id, type=RunEventType.RUN_RESUMED))
        if runner.paused_at is not None and not self._active(run_id):
            self._tasks[run_id] = asyncio.create_task(self._guarded(run_id, runner.resume()))
        else:
            # Still parked inside a step; clearing the flag lets it continue
            runner.token.resume()
        self.log.info("run_resumed", run_id=run_id)

    async def cancel(self, run_id: str) -> None:
        runner = self._runner(run_id)
        if runner.paused_at is not None and not self._active(run_id):
            self._tasks[run_id] = asyncio.create_task(self._settle(run_id, runner.abort()))
        else:
            runner.token.cancel()
        self.log.info("run_cancel_requested", run_id=run_id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener, run_id: str | None = None) -> Unsubscribe:
        return self._events.subscribe(listener, EventsFilter(run_id=run_id) if run_id else None)

    async def list_events(
        self, run_id: str, from_seq: int | None = None, limit: int | None = None
    ) -> list[RunEvent]:
        return await self._events.list(EventsQuery(run_id=run_id, from_seq=from_seq, limit=limit))
