"""Queue of ``script`` steps deferred with ``when: "after"``, flushed at run end."""

from __future__ import annotations

import re
import time

from replaykit.browser.executor import ToolName
from replaykit.core.errors import ReplayError, RunCanceledError
from replaykit.flow.types import LogStatus, RunLogEntry
from replaykit.runtime.templates import apply_assign
from replaykit.runtime.types import ExecCtx, LogSink, Step

# Visibility only; these scripts are not sandboxed
_SUSPICIOUS = re.compile(
    r"[;{}]|\b(function|=>|while|for|class|globalThis|window|self|this|constructor|"
    r"__proto__|prototype|eval|Function|import|require|XMLHttpRequest|fetch)\b"
)


class AfterScriptQueue:
    def __init__(self, logger: LogSink) -> None:
        self._logger = logger
        self._queue: list[Step] = []

    def enqueue(self, step: Step) -> None:
        self._queue.append(step)

    def __len__(self) -> int:
        return len(self._queue)

    async def flush(self, ctx: ExecCtx) -> None:
        """
        Run queued scripts in order, writing ``saveAs``/``assign`` into ``ctx.vars``.

        Script errors become warnings. If a script cannot be dispatched at
        all, it and the rest of the batch go back on the queue.
        """
        if not self._queue:
            return
        batch, self._queue = self._queue, []
        for i, step in enumerate(batch):
            started = time.monotonic()
            code = str(step.get("code") or "")
            if code.strip():
                if _SUSPICIOUS.search(code):
                    self._warn(step, "Script contains potentially unsafe tokens")
                try:
                    ctx.check_terminated()
                    result = await ctx.services.executor.call_tool(
                        ToolName.EVALUATE, {"code": code, "frameId": ctx.frame_id}
                    )
                except RunCanceledError:
                    self._queue[:0] = batch[i:]
                    raise
                except ReplayError as e:
                    self._queue[:0] = batch[i + 1 :]
                    self._warn(step, f"After-script execution failed: {e}")
                    break
                if result.is_error:
                    self._warn(step, f"After-script error: {result.text() or 'unknown'}")
                    value = None
                else:
                    value = (result.json() or {}).get("result")
                if step.get("saveAs"):
                    ctx.vars[step["saveAs"]] = value
                if isinstance(step.get("assign"), dict):
                    apply_assign(ctx.vars, value, step["assign"])
            self._logger(
                RunLogEntry(
                    step_id=str(step.get("id")),
                    status=LogStatus.SUCCESS,
                    took_ms=round((time.monotonic() - started) * 1000, 1),
                )
            )

    def _warn(self, step: Step, message: str) -> None:
        self._logger(RunLogEntry(step_id=str(step.get("id")), status=LogStatus.WARNING, message=message))
