"""One replay run: variables, graph execution, after-scripts, summary and persistence."""

from __future__ import annotations

import time
import uuid
from dataclasses import replace
from typing import Any

import structlog

from replaykit.core.errors import FlowNotFoundError, ReplayError, RunCanceledError
from replaykit.events.bus import EventsBus
from replaykit.events.types import RunEventInput, RunEventType
from replaykit.flow.graph import validate_variables
from replaykit.flow.store import FlowStore
from replaykit.flow.types import Flow, LogStatus, RunResult, RunSummary
from replaykit.replay.after_scripts import AfterScriptQueue
from replaykit.replay.flow_runner import FlowRunner
from replaykit.replay.run_logger import RunLogger, iso_now
from replaykit.runtime.registry import NodeRegistry
from replaykit.runtime.types import ExecCtx, RunToken, RuntimeServices

logger = structlog.get_logger(__name__)


def new_run_id() -> str:
    return f"run_{uuid.uuid4().hex[:12]}"


class ReplayRunner:
    """
    Drives a single run of ``flow``.

    A paused run keeps its context; :meth:`resume` continues from the node
    the walk stopped at. Nested ``executeFlow`` steps reuse this runner's
    logger, token and after-script queue.
    """

    def __init__(
        self,
        flow: Flow,
        services: RuntimeServices,
        registry: NodeRegistry,
        events: EventsBus | None = None,
        store: FlowStore | None = None,
        run_id: str | None = None,
        token: RunToken | None = None,
    ) -> None:
        self.flow = flow
        self.run_id = run_id or new_run_id()
        self.token = token or RunToken()
        self._base_services = services
        self._registry = registry
        self._events = events
        self._store = store
        self._settings = services.settings

        self.run_logger = RunLogger(self.run_id, flow.id, store)
        self.after_scripts = AfterScriptQueue(self.run_logger)
        self.services = replace(
            services,
            flows=services.flows if services.flows is not None else store,
            run_inline=self._run_inline,
            run_separate=self._run_separate,
        )
        self.flow_runner = FlowRunner(
            flow, registry, self._settings, self.run_logger, events, self.after_scripts
        )
        self.ctx: ExecCtx | None = None
        self.paused_at: str | None = None
        self.result: RunResult | None = None
        self._started_at = iso_now()
        self._started = time.monotonic()
        self.log = logger.bind(component="replay_runner", run_id=self.run_id, flow_id=flow.id)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, args: dict[str, Any] | None = None) -> RunResult:
        resolved, errors = validate_variables(self.flow.variables, args)
        if errors:
            message = "; ".join(errors)
            self.log.warning("variables_invalid", errors=errors)
            await self._publish(RunEventType.RUN_FAILED, data={"error": message})
            self.result = RunResult(run_id=self.run_id, success=False, error=message)
            return self.result

        self.ctx = ExecCtx(
            vars=resolved,
            logger=self.run_logger,
            services=self.services,
            token=self.token,
            run_id=self.run_id,
        )
        self.log.info("run_started", nodes=len(self.flow.nodes))
        await self._publish(RunEventType.RUN_STARTED, data={"flowId": self.flow.id})
        return await self._execute(None)

    async def resume(self) -> RunResult:
        """Continue a paused run from the node it stopped at."""
        if self.ctx is None or self.paused_at is None:
            raise ReplayError(f"run {self.run_id} is not paused")
        start_at, self.paused_at = self.paused_at, None
        self.token.resume()
        self.log.info("run_resuming", node_id=start_at)
        return await self._execute(start_at)

    async def abort(self) -> RunResult:
        """Finalize a paused run as canceled without executing anything else."""
        self.token.cancel()
        self.paused_at = None
        return await self._finish(success=False, error="Terminated", canceled=True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, start_at: str | None) -> RunResult:
        assert self.ctx is not None
        error: str | None = None
        canceled = False
        paused_at: str | None = None
        try:
            paused_at = await self.flow_runner.run_graph(
                self.ctx, self.flow.nodes, self.flow.edges, start_at
            )
            if paused_at is None:
                await self.after_scripts.flush(self.ctx)
        except RunCanceledError as e:
            canceled = True
            error = str(e)
        except Exception as e:
            error = str(e) or type(e).__name__
            self.log.warning("run_error", error=error, error_type=type(e).__name__)

        if paused_at is not None and error is None:
            self.paused_at = paused_at
            self.log.info("run_paused", node_id=paused_at)
            await self._publish(RunEventType.RUN_PAUSED, node_id=paused_at)
            self.result = await self._build_result(success=False, paused_at=paused_at)
            return self.result

        return await self._finish(success=error is None, error=error, canceled=canceled)

    async def _finish(self, success: bool, error: str | None, canceled: bool = False) -> RunResult:
        result = await self._build_result(success=success, error=error)
        if success:
            await self._publish(
                RunEventType.RUN_SUCCEEDED, data={"tookMs": result.summary.took_ms}
            )
        elif canceled:
            await self._publish(RunEventType.RUN_CANCELED, data={"error": error or "Terminated"})
        else:
            await self._publish(RunEventType.RUN_FAILED, data={"error": error})
        self.run_logger.persist(self.flow, self._started_at, success)
        self.log.info(
            "run_finished",
            success=success,
            canceled=canceled,
            total=result.summary.total,
            failed=result.summary.failed,
            took_ms=result.summary.took_ms,
        )
        self.result = result
        return result

    async def _build_result(
        self, success: bool, error: str | None = None, paused_at: str | None = None
    ) -> RunResult:
        entries = self.run_logger.entries
        failed_ids = {e.step_id for e in entries if e.status == LogStatus.FAILED}
        ok_ids = {e.step_id for e in entries if e.status == LogStatus.SUCCESS} - failed_ids
        summary = RunSummary(
            total=len(self.flow.nodes),
            success=len(ok_ids),
            failed=len(failed_ids),
            took_ms=round((time.monotonic() - self._started) * 1000, 1),
        )
        tab = await self.services.bridge.active_tab()
        return RunResult(
            run_id=self.run_id,
            success=success,
            summary=summary,
            url=tab.url if tab else None,
            outputs=self._outputs(),
            logs=entries,
            failure_screenshot=self.run_logger.failure_screenshot,
            paused=paused_at is not None,
            paused_at=paused_at,
            error=error,
        )

    def _outputs(self) -> dict[str, Any]:
        if self.ctx is None:
            return {}
        sensitive = {v.key for v in self.flow.variables if v.sensitive}
        return {k: v for k, v in self.ctx.vars.items() if k not in sensitive}

    # ------------------------------------------------------------------
    # executeFlow hooks
    # ------------------------------------------------------------------

    async def _run_inline(self, ctx: ExecCtx, flow: Flow) -> str | None:
        nested = FlowRunner(
            flow, self._registry, self._settings, self.run_logger, self._events, self.after_scripts
        )
        return await nested.run_graph(ctx, flow.nodes, flow.edges)

    async def _run_separate(self, flow_id: str, args: dict[str, Any]) -> RunResult:
        flows = self.services.flows
        flow = flows.get(flow_id) if flows is not None else None
        if flow is None:
            raise FlowNotFoundError(flow_id)
        child = ReplayRunner(
            flow,
            self._base_services,
            self._registry,
            self._events,
            self._store,
            token=self.token,
        )
        self.log.info("child_run", child_run_id=child.run_id, child_flow_id=flow_id)
        return await child.run(args)

    async def _publish(
        self,
        type: RunEventType,
        node_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        if self._events is None:
            return
        await self._events.append(
            RunEventInput(run_id=self.run_id, type=type, node_id=node_id, data=data or {})
        )
