"""Run event types published on the events bus."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class RunEventType(str, Enum):
    # Run lifecycle
    RUN_QUEUED = "run.queued"
    RUN_STARTED = "run.started"
    RUN_PAUSED = "run.paused"
    RUN_RESUMED = "run.resumed"
    RUN_SUCCEEDED = "run.succeeded"
    RUN_FAILED = "run.failed"
    RUN_CANCELED = "run.canceled"

    # Node lifecycle
    NODE_STARTED = "node.started"
    NODE_SUCCEEDED = "node.succeeded"
    NODE_FAILED = "node.failed"
    NODE_RETRYING = "node.retrying"
    NODE_SKIPPED = "node.skipped"

    # Artifacts
    ARTIFACT_SCREENSHOT = "artifact.screenshot"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RunEventInput:
    """An event before the store has allocated its sequence number."""

    run_id: str
    type: RunEventType
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    ts: int | None = None


@dataclass
class RunEvent:
    run_id: str
    seq: int
    ts: int
    type: RunEventType
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_input(cls, event: RunEventInput, seq: int) -> RunEvent:
        return cls(
            run_id=event.run_id,
            seq=seq,
            ts=event.ts if event.ts is not None else now_ms(),
            type=event.type,
            node_id=event.node_id,
            data=dict(event.data),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "runId": self.run_id,
            "seq": self.seq,
            "ts": self.ts,
            "type": self.type.value,
        }
        if self.node_id is not None:
            d["nodeId"] = self.node_id
        if self.data:
            d["data"] = self.data
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RunEvent:
        return cls(
            run_id=str(d["runId"]),
            seq=int(d["seq"]),
            ts=int(d["ts"]),
            type=RunEventType(d["type"]),
            node_id=d.get("nodeId"),
            data=dict(d.get("data") or {}),
        )


@dataclass
class EventsQuery:
    run_id: str
    from_seq: int | None = None
    limit: int | None = None


@dataclass
class EventsFilter:
    run_id: str | None = None

    def matches(self, event: RunEvent) -> bool:
        return self.run_id is None or self.run_id == event.run_id


Listener = Callable[[RunEvent], None]
Unsubscribe = Callable[[], None]
