"""Durable event log with per-run atomic sequence allocation."""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from pathlib import Path
from typing import Protocol

import structlog

from replaykit.events.types import RunEvent, RunEventInput

logger = structlog.get_logger(__name__)


class EventsStore(Protocol):
    """Persistence port for run events."""

    async def append(self, event: RunEventInput) -> RunEvent:
        """Allocate the next ``seq`` for the run, persist and return the event."""
        ...

    async def list(
        self, run_id: str, from_seq: int | None = None, limit: int | None = None
    ) -> list[RunEvent]:
        """Return events for ``run_id`` ascending by ``seq``."""
        ...


def _window(events: list[RunEvent], from_seq: int | None, limit: int | None) -> list[RunEvent]:
    if limit == 0:
        return []
    if from_seq is not None:
        events = [e for e in events if e.seq >= from_seq]
    if limit is not None:
        events = events[:limit]
    return events


class InMemoryEventsStore:
    """
    Process-local events store.

    Sequence allocation and the append are linearized per run by an
    ``asyncio.Lock``, so concurrent appends never share or skip a ``seq``.
    """

    def __init__(self) -> None:
        self._events: dict[str, list[RunEvent]] = defaultdict(list)
        self._next_seq: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, run_id: str) -> asyncio.Lock:
        lock = self._locks.get(run_id)
        if lock is None:
            lock = self._locks[run_id] = asyncio.Lock()
        return lock

    async def _persist(self, event: RunEvent) -> None:
        self._events[event.run_id].append(event)

    async def append(self, event: RunEventInput) -> RunEvent:
        async with self._lock_for(event.run_id):
            seq = self._next_seq.get(event.run_id, 1)
            full = RunEvent.from_input(event, seq)
            await self._persist(full)
            self._next_seq[event.run_id] = seq + 1
            return full

    async def list(
        self, run_id: str, from_seq: int | None = None, limit: int | None = None
    ) -> list[RunEvent]:
        return _window(list(self._events.get(run_id, [])), from_seq, limit)


class JsonlEventsStore(InMemoryEventsStore):
    """
    Events store that also appends each event to ``{events_dir}/{run_id}.jsonl``.

    Existing files are replayed lazily so ``seq`` keeps increasing across
    process restarts.
    """

    def __init__(self, events_dir: str) -> None:
        super().__init__()
        self._dir = Path(events_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._loaded: set[str] = set()

    def _path(self, run_id: str) -> Path:
        return self._dir / f"{run_id}.jsonl"

    def _load(self, run_id: str) -> None:
        if run_id in self._loaded:
            return
        self._loaded.add(run_id)
        path = self._path(run_id)
        if not path.exists():
            return
        events: list[RunEvent] = []
        with open(path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(RunEvent.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, ValueError):
                    logger.warning("events.corrupt_line", run_id=run_id, line=lineno)
        events.sort(key=lambda e: e.seq)
        self._events[run_id] = events
        self._next_seq[run_id] = events[-1].seq + 1 if events else 1

    async def _persist(self, event: RunEvent) -> None:
        line = json.dumps(event.to_dict()) + "\n"
        await asyncio.to_thread(self._write_line, event.run_id, line)
        await super()._persist(event)

    def _write_line(self, run_id: str, line: str) -> None:
        with open(self._path(run_id), "a", encoding="utf-8") as f:
            f.write(line)

    async def append(self, event: RunEventInput) -> RunEvent:
        self._load(event.run_id)
        return await super().append(event)

    async def list(
        self, run_id: str, from_seq: int | None = None, limit: int | None = None
    ) -> list[RunEvent]:
        self._load(run_id)
        return await super().list(run_id, from_seq, limit)
