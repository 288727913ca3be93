"""Execution context, results and the node handler base class."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from replaykit.core.config import EngineSettings
from replaykit.core.errors import RunCanceledError
from replaykit.flow.types import Flow, RunLogEntry, RunResult

if TYPE_CHECKING:
    from replaykit.browser.bridge import BrowserBridge
    from replaykit.browser.executor import ActionExecutor
    from replaykit.flow.store import FlowStore
    from replaykit.selectors.engine import SelectorEngine

Step = dict[str, Any]
LogSink = Callable[[RunLogEntry], None]


class RunToken:
    """Cooperative pause/cancel flags for one run, polled at await points."""

    def __init__(self) -> None:
        self._paused = False
        self._terminated = False
        self._resumed = asyncio.Event()
        self._resumed.set()

    def pause(self) -> None:
        self._paused = True
        self._resumed.clear()

    def resume(self) -> None:
        self._paused = False
        self._resumed.set()

    def cancel(self) -> None:
        self._terminated = True
        # Wake anything parked on a pause so it can observe the cancel
        self._resumed.set()

    def is_paused(self) -> bool:
        return self._paused

    def is_terminated(self) -> bool:
        return self._terminated

    async def wait_resumed(self) -> None:
        await self._resumed.wait()


@dataclass
class RuntimeServices:
    """Shared handles every node handler may reach through ``ctx.services``."""

    executor: ActionExecutor
    bridge: BrowserBridge
    selectors: SelectorEngine
    settings: EngineSettings
    flows: FlowStore | None = None
    # Runs ``flow`` inside the caller's context; returns the paused node id, if any
    run_inline: Callable[[ExecCtx, Flow], Awaitable[str | None]] | None = None
    # Starts an independent run of ``flow_id`` with ``args``
    run_separate: Callable[[str, dict[str, Any]], Awaitable[RunResult]] | None = None


@dataclass
class ExecCtx:
    vars: dict[str, Any]
    logger: LogSink
    services: RuntimeServices
    token: RunToken = field(default_factory=RunToken)
    frame_id: int | None = None
    run_id: str | None = None

    def is_paused(self) -> bool:
        return self.token.is_paused()

    def is_terminated(self) -> bool:
        return self.token.is_terminated()

    def check_terminated(self) -> None:
        if self.token.is_terminated():
            raise RunCanceledError()

    def branch(self, vars: dict[str, Any]) -> ExecCtx:
        """Child context sharing services and token but with its own ``vars`` scope."""
        return replace(self, vars=vars)


# ---------------------------------------------------------------------------
# Control directives
# ---------------------------------------------------------------------------


@dataclass
class ForeachControl:
    list_var: str
    subflow_id: str
    item_var: str = "item"
    concurrency: int = 1
    kind: str = field(default="foreach", init=False)


@dataclass
class WhileControl:
    condition: Any
    subflow_id: str
    max_iterations: int = 100
    kind: str = field(default="while", init=False)


ControlDirective = Union[ForeachControl, WhileControl]


@dataclass
class ExecResult:
    control: ControlDirective | None = None
    next_label: str | None = None
    defer_after_script: Step | None = None
    # Set when the handler already wrote its own log entry for this step
    already_logged: bool = False


@dataclass
class ValidationResult:
    ok: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def passed(cls) -> ValidationResult:
        return cls(ok=True)

    @classmethod
    def failed(cls, *errors: str) -> ValidationResult:
        return cls(ok=False, errors=list(errors))


class NodeRuntime:
    """
    Base class for step handlers.

    Subclasses set ``type`` and implement :meth:`run`. :meth:`validate` must
    stay free of I/O; it is the structural schema check for the step's config.
    """

    type: str = ""

    def validate(self, step: Step) -> ValidationResult:
        return ValidationResult.passed()

    async def run(self, ctx: ExecCtx, step: Step) -> ExecResult:
        raise NotImplementedError
