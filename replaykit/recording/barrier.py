"""
Stop barrier: make every recording tab flush and acknowledge before saving.

Subframes are stopped first with a short best-effort timeout so the top
frame, which relays their messages, is still listening. A tab counts as
stopped only when its top frame acknowledges.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from replaykit.browser.bridge import BrowserBridge, ContentAction
from replaykit.core.config import EngineSettings
from replaykit.flow.types import StopBarrierFailure, StopBarrierStatus
from replaykit.recording.flow_builder import iso_now

logger = structlog.get_logger(__name__)

STOP_COMMAND = "stop"


@dataclass
class FrameAck:
    frame_id: int
    ack: bool = False
    timed_out: bool = False
    error: str | None = None
    stats: dict[str, Any] | None = None


@dataclass
class TabBarrierResult:
    tab_id: int
    ok: bool
    skipped: bool = False
    reason: str | None = None
    top: FrameAck | None = None
    subframes: list[FrameAck] = field(default_factory=list)

    def to_failure(self) -> StopBarrierFailure:
        return StopBarrierFailure(
            tab_id=self.tab_id,
            skipped=self.skipped,
            reason=self.reason,
            top_timed_out=bool(self.top and self.top.timed_out),
            top_error=self.top.error if self.top else None,
            subframes_failed=sum(1 for f in self.subframes if not f.ack),
        )


async def _frame_ids(bridge: BrowserBridge, tab_id: int) -> list[int]:
    frames = await bridge.list_frames(tab_id)
    ids = {f.frame_id for f in frames}
    ids.add(0)
    return sorted(ids)


async def send_stop_with_ack(
    bridge: BrowserBridge, tab_id: int, session_id: str, frame_id: int, timeout_ms: float
) -> FrameAck:
    message = {
        "action": ContentAction.RECORDER_CONTROL,
        "cmd": STOP_COMMAND,
        "sessionId": session_id,
        "requireAck": True,
    }
    try:
        response = await asyncio.wait_for(
            bridge.send(tab_id, message, frame_id=frame_id), timeout=timeout_ms / 1000
        )
    except asyncio.TimeoutError:
        return FrameAck(frame_id=frame_id, timed_out=True)
    except (LookupError, ValueError, OSError) as e:
        return FrameAck(frame_id=frame_id, error=str(e))

    if not isinstance(response, dict):
        return FrameAck(frame_id=frame_id)
    stats = response.get("stats") if isinstance(response.get("stats"), dict) else None
    return FrameAck(frame_id=frame_id, ack=bool(response.get("ack")), stats=stats, error=response.get("error"))


async def stop_tab_with_barrier(
    bridge: BrowserBridge, tab_id: int, session_id: str, settings: EngineSettings
) -> TabBarrierResult:
    tabs = await bridge.list_tabs()
    if not any(t.id == tab_id for t in tabs):
        return TabBarrierResult(tab_id=tab_id, ok=True, skipped=True, reason="tab not found")

    frame_ids = await _frame_ids(bridge, tab_id)
    subframes = await asyncio.gather(
        *(
            send_stop_with_ack(
                bridge, tab_id, session_id, fid, settings.stop_barrier_subframe_timeout_ms
            )
            for fid in frame_ids
            if fid != 0
        )
    )
    top = await send_stop_with_ack(bridge, tab_id, session_id, 0, settings.stop_barrier_top_timeout_ms)
    return TabBarrierResult(tab_id=tab_id, ok=top.ack, top=top, subframes=list(subframes))


async def run_stop_barrier(
    bridge: BrowserBridge, tab_ids: list[int], session_id: str, settings: EngineSettings
) -> tuple[StopBarrierStatus, list[TabBarrierResult]]:
    """
    Stop all ``tab_ids`` in parallel, then wait the grace period.

    The barrier is ok when every tab either acknowledged or no longer exists.
    """
    results = list(
        await asyncio.gather(
            *(stop_tab_with_barrier(bridge, tab_id, session_id, settings) for tab_id in tab_ids)
        )
    )
    await asyncio.sleep(settings.stop_barrier_grace_ms / 1000)

    ok = len(results) == len(tab_ids) and all(r.ok or r.skipped for r in results)
    status = StopBarrierStatus(
        ok=ok,
        session_id=session_id,
        stopped_at=iso_now(),
        failed=[r.to_failure() for r in results if not r.ok and not r.skipped],
    )
    log = logger.bind(session_id=session_id)
    if ok:
        log.info("stop_barrier_complete", tabs=len(tab_ids))
    else:
        log.warning("stop_barrier_incomplete", failed_tabs=[f.tab_id for f in status.failed])
    return status, results
