"""Graph traversal: topological main path, label jumps, retries and subflows."""

from __future__ import annotations

import time
from typing import Any

import structlog

from replaykit.control.runner import ControlFlowRunner
from replaykit.core.config import EngineSettings
from replaykit.core.errors import RunCanceledError, RunPausedError
from replaykit.events.bus import EventsBus
from replaykit.events.types import RunEventInput, RunEventType
from replaykit.flow.graph import (
    default_edges_only,
    filter_valid_edges,
    find_edge_by_label,
    node_to_step,
    topo_order,
)
from replaykit.flow.types import Edge, EdgeLabel, Flow, LogStatus, NodeBase, NodeType, RunLogEntry
from replaykit.replay.after_scripts import AfterScriptQueue
from replaykit.replay.retry import RetryPolicy, with_retry
from replaykit.replay.run_logger import RunLogger
from replaykit.runtime.registry import NodeRegistry
from replaykit.runtime.types import ExecCtx, ExecResult, Step
from replaykit.runtime.waits import sleep_cooperative, wait_for_navigation, wait_for_network_idle

logger = structlog.get_logger(__name__)

_CLICK_TYPES = (NodeType.CLICK.value, NodeType.DBLCLICK.value)


def main_path(nodes: list[NodeBase], edges: list[Edge]) -> list[NodeBase]:
    """
    Nodes on the default-edge path, in topological order.

    Roots are nodes without any incoming edge; when a cycle leaves no roots,
    every node is treated as one. Nodes only reachable through labelled edges
    (branch targets) are excluded.
    """
    defaults = default_edges_only(edges)
    targets = {e.to for e in edges}
    roots = [n.id for n in nodes if n.id not in targets] or [n.id for n in nodes]

    adjacency: dict[str, list[str]] = {}
    for e in defaults:
        adjacency.setdefault(e.from_, []).append(e.to)
    reachable: set[str] = set()
    stack = list(roots)
    while stack:
        nid = stack.pop()
        if nid in reachable:
            continue
        reachable.add(nid)
        stack.extend(adjacency.get(nid, []))

    return [n for n in topo_order(nodes, defaults) if n.id in reachable]


class FlowRunner:
    """
    Executes a flow's graph (or one of its subflows) inside an :class:`ExecCtx`.

    The main path is walked in topological order. A node returning a
    ``next_label`` jumps along the matching edge; off-path nodes then follow
    their default edge until the walk rejoins the main path or runs out. A
    failed node follows its ``onError`` edge when it has one, otherwise the
    error propagates.
    """

    def __init__(
        self,
        flow: Flow,
        registry: NodeRegistry,
        settings: EngineSettings,
        run_logger: RunLogger | None = None,
        events: EventsBus | None = None,
        after_scripts: AfterScriptQueue | None = None,
    ) -> None:
        self.flow = flow
        self._registry = registry
        self._settings = settings
        self._run_logger = run_logger
        self._events = events
        self._after_scripts = after_scripts
        self.control = ControlFlowRunner(self.run_subflow, settings.max_foreach_concurrency)
        self.log = logger.bind(component="flow_runner", flow_id=flow.id)

    # ------------------------------------------------------------------
    # Graph walking
    # ------------------------------------------------------------------

    async def run_subflow(self, subflow_id: str, ctx: ExecCtx) -> str | None:
        sub = self.flow.subflows.get(subflow_id)
        if sub is None or not sub.nodes:
            self.log.debug("subflow_empty", subflow_id=subflow_id)
            return None
        return await self.run_graph(ctx, sub.nodes, sub.edges)

    async def run_graph(
        self,
        ctx: ExecCtx,
        nodes: list[NodeBase],
        edges: list[Edge],
        start_at: str | None = None,
    ) -> str | None:
        """
        Execute ``nodes``/``edges`` from the first main-path node or ``start_at``.

        Returns the id of the node the run paused at, or None when the walk
        finished. Raises :class:`RunCanceledError` on cancellation and the
        node's error when a failure has nowhere to route.
        """
        edges = filter_valid_edges(nodes, edges)
        by_id = {n.id: n for n in nodes}
        order = main_path(nodes, edges)
        position = {n.id: i for i, n in enumerate(order)}

        current: str | None = start_at if start_at in by_id else (order[0].id if order else None)
        guard = 0
        while current is not None:
            if guard >= self._settings.max_iterations:
                self._log_entry(
                    current,
                    LogStatus.WARNING,
                    f"Flow exceeded {self._settings.max_iterations} iterations - possible cycle",
                    ctx=ctx,
                )
                return None
            guard += 1

            ctx.check_terminated()
            if ctx.is_paused():
                return current

            node = by_id[current]
            label: str | None = None
            if node.disabled:
                await self._publish(ctx, RunEventType.NODE_SKIPPED, node.id)
            else:
                try:
                    result = await self.execute_node(ctx, node)
                except RunPausedError:
                    return node.id
                except RunCanceledError:
                    raise
                except Exception:
                    on_error = find_edge_by_label(edges, node.id, EdgeLabel.ON_ERROR)
                    if on_error is None:
                        raise
                    self.log.info("routing_on_error", node_id=node.id, to=on_error.to)
                    current = on_error.to
                    continue

                if result.control is not None:
                    outcome = await self.control.run(result.control, ctx)
                    if outcome == "paused":
                        return node.id
                label = result.next_label

            current = self._next(ctx, node, label, edges, order, position)
        return None

    def _next(
        self,
        ctx: ExecCtx,
        node: NodeBase,
        label: str | None,
        edges: list[Edge],
        order: list[NodeBase],
        position: dict[str, int],
    ) -> str | None:
        if label and label != EdgeLabel.DEFAULT:
            edge = find_edge_by_label(edges, node.id, label)
            if edge is not None:
                return edge.to
            available = [e.label or EdgeLabel.DEFAULT for e in edges if e.from_ == node.id]
            if available:
                self._log_entry(
                    node.id,
                    LogStatus.WARNING,
                    f"No edge for label '{label}'. Available: [{', '.join(available)}]",
                    ctx=ctx,
                )

        if node.id in position:
            idx = position[node.id] + 1
            return order[idx].id if idx < len(order) else None
        # Off the main path: follow the default edge back toward it
        edge = find_edge_by_label(edges, node.id, EdgeLabel.DEFAULT)
        return edge.to if edge is not None else None

    # ------------------------------------------------------------------
    # Single node
    # ------------------------------------------------------------------

    async def execute_node(self, ctx: ExecCtx, node: NodeBase) -> ExecResult:
        """Run one node under its retry policy, logging and publishing its lifecycle."""
        step = node_to_step(node)
        policy = RetryPolicy.from_step(step)
        started = time.monotonic()
        await self._publish(ctx, RunEventType.NODE_STARTED, node.id, {"type": node.type})

        waits_after = node.type in _CLICK_TYPES and isinstance(step.get("after"), dict)

        async def attempt() -> ExecResult:
            before_url = None
            if waits_after:
                tab = await ctx.services.bridge.active_tab()
                before_url = tab.url if tab else None
            result = await self._registry.execute_step(ctx, step)
            if waits_after:
                await self._after_click(ctx, step, before_url)
            return result

        async def on_retry(attempt_no: int, err: Exception) -> None:
            self._log_entry(node.id, LogStatus.RETRYING, str(err), ctx=ctx)
            await self._publish(
                ctx,
                RunEventType.NODE_RETRYING,
                node.id,
                {"attempt": attempt_no + 1, "error": str(err)},
            )

        async def pause_aware_sleep(ms: float) -> None:
            await sleep_cooperative(ctx, ms)

        try:
            result = await with_retry(attempt, policy, on_retry, sleep=pause_aware_sleep)
        except (RunPausedError, RunCanceledError):
            raise
        except Exception as e:
            took = _elapsed_ms(started)
            self._log_entry(node.id, LogStatus.FAILED, str(e), took_ms=took, ctx=ctx)
            await self._capture_failure(ctx, node.id)
            await self._publish(ctx, RunEventType.NODE_FAILED, node.id, {"error": str(e), "tookMs": took})
            raise

        took = _elapsed_ms(started)
        if not result.already_logged:
            self._log_entry(node.id, LogStatus.SUCCESS, took_ms=took, ctx=ctx)
        if result.defer_after_script is not None and self._after_scripts is not None:
            self._after_scripts.enqueue(result.defer_after_script)
        await self._publish(ctx, RunEventType.NODE_SUCCEEDED, node.id, {"tookMs": took})
        return result

    async def _after_click(self, ctx: ExecCtx, step: Step, before_url: str | None) -> None:
        after = step.get("after") or {}
        if after.get("waitForNavigation"):
            await wait_for_navigation(ctx, step.get("timeoutMs"), before_url)
        elif after.get("waitForNetworkIdle"):
            total = min(step.get("timeoutMs") or self._settings.default_wait_ms, self._settings.max_wait_ms)
            await wait_for_network_idle(ctx, total, self._settings.network_idle_sample_ms)

    async def _capture_failure(self, ctx: ExecCtx, node_id: str) -> None:
        if self._run_logger is None or not self._settings.capture_failure_screenshots:
            return
        image = await self._run_logger.screenshot_on_failure(ctx.services.executor)
        if image:
            await self._publish(ctx, RunEventType.ARTIFACT_SCREENSHOT, node_id, {"bytes": len(image)})

    # ------------------------------------------------------------------
    # Logging / events
    # ------------------------------------------------------------------

    def _log_entry(
        self,
        step_id: str,
        status: LogStatus,
        message: str | None = None,
        took_ms: float | None = None,
        ctx: ExecCtx | None = None,
    ) -> None:
        entry = RunLogEntry(step_id=step_id, status=status, message=message, took_ms=took_ms)
        if ctx is not None:
            ctx.logger(entry)
        elif self._run_logger is not None:
            self._run_logger.push(entry)
        else:
            self.log.warning("unlogged_entry", step_id=step_id, status=status.value, message=message)

    async def _publish(
        self, ctx: ExecCtx, type: RunEventType, node_id: str | None, data: dict[str, Any] | None = None
    ) -> None:
        if self._events is None or ctx.run_id is None:
            return
        await self._events.append(
            RunEventInput(run_id=ctx.run_id, type=type, node_id=node_id, data=data or {})
        )


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 1)
