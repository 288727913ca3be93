"""Per-run step log accumulation and persistence handoff."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import structlog

from replaykit.browser.executor import ActionExecutor, ToolName
from replaykit.flow.store import FlowStore
from replaykit.flow.types import Flow, LogStatus, RunLogEntry, RunRecord

logger = structlog.get_logger(__name__)


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunLogger:
    """
    Collects :class:`RunLogEntry` values for one run.

    Instances are callable so they can be handed to ``ExecCtx.logger`` as the
    entry sink. Every entry is mirrored to structlog.
    """

    def __init__(
        self,
        run_id: str,
        flow_id: str | None = None,
        store: FlowStore | None = None,
        on_entry: Callable[[RunLogEntry], None] | None = None,
    ) -> None:
        self.run_id = run_id
        self.flow_id = flow_id
        self._store = store
        self._on_entry = on_entry
        self._entries: list[RunLogEntry] = []
        self.failure_screenshot: str | None = None
        self.log = logger.bind(run_id=run_id, flow_id=flow_id)

    def push(self, entry: RunLogEntry) -> None:
        self._entries.append(entry)
        level = "warning" if entry.status in (LogStatus.FAILED, LogStatus.WARNING) else "info"
        getattr(self.log, level)(
            "step_log",
            step_id=entry.step_id,
            status=entry.status.value,
            message=entry.message,
            took_ms=entry.took_ms,
            fallback_used=entry.fallback_used or None,
        )
        if self._on_entry is not None:
            self._on_entry(entry)

    __call__ = push

    @property
    def entries(self) -> list[RunLogEntry]:
        return list(self._entries)

    async def screenshot_on_failure(self, executor: ActionExecutor) -> str | None:
        """Capture the page and attach it to the most recent entry."""
        result = await executor.call_tool(ToolName.SCREENSHOT, {})
        image = None if result.is_error else result.image()
        if image and self._entries:
            self._entries[-1].screenshot_base64 = image
            self.failure_screenshot = image
        return image

    def to_record(self, flow: Flow, started_at: str, success: bool) -> RunRecord:
        return RunRecord(
            id=self.run_id,
            flow_id=flow.id,
            started_at=started_at,
            finished_at=iso_now(),
            success=success,
            entries=self.entries,
        )

    def persist(self, flow: Flow, started_at: str, success: bool) -> RunRecord:
        record = self.to_record(flow, started_at, success)
        if self._store is not None:
            self._store.append_run(record)
        return record
