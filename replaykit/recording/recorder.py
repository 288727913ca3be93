"""Recording control surface plus intake of content-script and browser events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from replaykit.browser.bridge import BrowserBridge, ContentAction
from replaykit.core.config import EngineSettings, get_settings
from replaykit.flow.store import FlowStore
from replaykit.flow.types import Flow, NodeType, StopBarrierFailure, StopBarrierStatus
from replaykit.recording.barrier import run_stop_barrier
from replaykit.recording.flow_builder import add_navigation_step, create_initial_flow, iso_now
from replaykit.recording.session import RecordingSession, RecordingStatus

logger = structlog.get_logger(__name__)

RECORDER_EVENT = "rr_recorder_event"

# Navigation transitions the user initiated directly; link clicks are recorded as clicks
RECORDED_TRANSITIONS = frozenset(
    {"reload", "typed", "generated", "auto_bookmark", "keyword", "form_submit"}
)


class RecorderCommand:
    START = "start"
    STOP = "stop"
    PAUSE = "pause"
    RESUME = "resume"


@dataclass
class ControlResult:
    success: bool
    error: str | None = None
    flow: Flow | None = None


class RecorderManager:
    """
    Starts, pauses, resumes and stops recordings.

    Every control returns a :class:`ControlResult`; nothing here raises for
    an invalid state transition. A stop whose barrier misses some ACKs still
    saves the flow and reports success, with the unacknowledged tabs named in
    ``error``.
    """

    def __init__(
        self,
        bridge: BrowserBridge,
        store: FlowStore,
        session: RecordingSession | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._bridge = bridge
        self._store = store
        self._settings = settings or get_settings()
        self.session = session or RecordingSession(bridge)
        self.log = logger.bind(component="recorder")

    def init(self) -> None:
        self.session.init()

    def dispose(self) -> None:
        self.session.dispose()

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    async def start(self, meta: dict[str, Any] | None = None) -> ControlResult:
        if self.session.status != RecordingStatus.IDLE:
            return ControlResult(success=False, error="Recording already active")

        try:
            active = await self._bridge.active_tab()
        except Exception as e:
            self.log.warning("start_active_tab_failed", error=str(e))
            return ControlResult(success=False, error=f"Failed to start recording: {e}")
        if active is None:
            self.log.warning("start_no_active_tab")
            return ControlResult(success=False, error="Active tab not found")

        flow = create_initial_flow(meta)
        session_id = self.session.start_session(flow, active.id)
        try:
            await self._control(
                active.id,
                RecorderCommand.START,
                {"id": flow.id, "name": flow.name, "description": flow.description, "sessionId": session_id},
            )
            if active.url:
                await add_navigation_step(flow, active.url, self.session)
        except Exception as e:
            self.session.stop_session()
            self.log.error("start_failed", flow_id=flow.id, error=str(e))
            return ControlResult(success=False, error=f"Failed to start recording: {e}")

        if active.url:
            try:
                self._store.save(flow)
            except OSError as e:
                self.log.warning("initial_save_failed", flow_id=flow.id, error=str(e))

        self.log.info("recording_started", flow_id=flow.id, tab_id=active.id)
        return ControlResult(success=True, flow=flow)

    async def stop(self) -> ControlResult:
        status = self.session.status
        if status == RecordingStatus.IDLE or self.session.flow is None:
            return ControlResult(success=False, error="No active recording")
        if status == RecordingStatus.STOPPING:
            return ControlResult(success=False, error="Stop already in progress")

        session_id = self.session.begin_stopping()
        tabs = sorted(self.session.active_tabs)
        barrier = StopBarrierStatus(ok=False, session_id=session_id, stopped_at=iso_now())
        barrier_error: str | None = None
        save_error: str | None = None
        try:
            barrier, results = await run_stop_barrier(self._bridge, tabs, session_id, self._settings)
            for r in results:
                if r.ok:
                    self.session.mark_tab_stopped(r.tab_id)
        except Exception as e:
            barrier_error = str(e) or type(e).__name__
            barrier.failed = [StopBarrierFailure(tab_id=t, reason=barrier_error) for t in tabs]
            self.log.error("stop_barrier_failed", session_id=session_id, error=barrier_error)
        finally:
            # The session always leaves STOPPING, even when the barrier is interrupted
            flow = self.session.stop_session()
            if flow is not None:
                flow.meta.stop_barrier = barrier
                save_error = self._save_final(flow)

        if flow is None:
            return ControlResult(success=True)
        if save_error:
            return ControlResult(success=False, error=save_error, flow=flow)
        self.log.info("recording_stopped", flow_id=flow.id, nodes=len(flow.nodes), barrier_ok=barrier.ok)

        if barrier_error:
            return ControlResult(success=True, error=f"Stop barrier failed: {barrier_error}", flow=flow)
        if not barrier.ok:
            failed = [str(f.tab_id) for f in barrier.failed]
            error = (
                f"Stop barrier incomplete; missing ACK from tabs: {', '.join(failed)}"
                if failed
                else "Stop barrier incomplete; missing ACK(s)"
            )
            return ControlResult(success=True, error=error, flow=flow)
        return ControlResult(success=True, flow=flow)

    def _save_final(self, flow: Flow) -> str | None:
        try:
            self._store.save(flow)
        except OSError as e:
            self.log.error("final_save_failed", flow_id=flow.id, error=str(e))
            return f"Failed to save flow: {e}"
        return None

    async def pause(self) -> ControlResult:
        if self.session.status != RecordingStatus.RECORDING:
            return ControlResult(success=False, error="Not currently recording")
        self.session.pause()
        for tab_id in sorted(self.session.active_tabs):
            await self._control(tab_id, RecorderCommand.PAUSE)
        return ControlResult(success=True)

    async def resume(self) -> ControlResult:
        if self.session.status != RecordingStatus.PAUSED:
            return ControlResult(success=False, error="Not currently paused")
        self.session.resume()
        for tab_id in sorted(self.session.active_tabs):
            await self._control(tab_id, RecorderCommand.RESUME)
        return ControlResult(success=True)

    async def _control(self, tab_id: int, cmd: str, meta: dict[str, Any] | None = None) -> None:
        """Broadcast a recorder command to every frame of ``tab_id``; delivery is best effort."""
        try:
            frames = await self._bridge.list_frames(tab_id)
        except Exception as e:
            self.log.debug("control_frames_failed", tab_id=tab_id, cmd=cmd, error=str(e))
            frames = []
        frame_ids = sorted({f.frame_id for f in frames} | {0})
        message = {"action": ContentAction.RECORDER_CONTROL, "cmd": cmd, "meta": meta}
        for frame_id in frame_ids:
            try:
                await self._bridge.send(tab_id, message, frame_id=frame_id)
            except Exception as e:
                self.log.debug("control_send_failed", tab_id=tab_id, frame_id=frame_id, cmd=cmd, error=str(e))

    # ------------------------------------------------------------------
    # Content-script intake
    # ------------------------------------------------------------------

    async def handle_content_message(self, message: dict[str, Any]) -> dict[str, Any]:
        """
        Accept a recorder event from a content script.

        Payload kinds ``steps``/``step``, ``variables`` and ``batch`` mutate
        the flow; anything else is acknowledged and ignored.
        """
        if not isinstance(message, dict) or message.get("type") != RECORDER_EVENT:
            return {"ok": False, "error": "unsupported message"}
        if not self.session.can_accept_steps() or self.session.flow is None:
            return {"ok": True, "ignored": True}

        payload = message.get("payload") or {}
        kind = payload.get("kind")
        steps: list[dict[str, Any]] = []
        variables: list[dict[str, Any]] = []
        if kind in ("steps", "step"):
            if isinstance(payload.get("steps"), list):
                steps = payload["steps"]
            elif isinstance(payload.get("step"), dict):
                steps = [payload["step"]]
        elif kind == "variables":
            variables = payload.get("variables") if isinstance(payload.get("variables"), list) else []
        elif kind == "batch":
            steps = payload.get("steps") if isinstance(payload.get("steps"), list) else []
            variables = payload.get("variables") if isinstance(payload.get("variables"), list) else []

        if steps:
            await self.session.append_steps(steps)
        if variables:
            self.session.append_variables(variables)
        return {"ok": True}

    # ------------------------------------------------------------------
    # Browser event intake
    # ------------------------------------------------------------------

    async def on_tab_activated(self, tab_id: int) -> None:
        if self.session.status != RecordingStatus.RECORDING:
            return
        await self._control(tab_id, RecorderCommand.START)
        self.session.add_active_tab(tab_id)
        if self.session.flow is None:
            return
        url = next((t.url for t in await self._bridge.list_tabs() if t.id == tab_id), "")
        step: dict[str, Any] = {"type": NodeType.SWITCH_TAB.value}
        if url:
            step["urlContains"] = url
        await self.session.append_steps([step])

    async def on_navigation_committed(
        self, tab_id: int, frame_id: int, url: str, transition: str
    ) -> None:
        if self.session.status != RecordingStatus.RECORDING or frame_id != 0:
            return
        flow = self.session.flow
        if transition in RECORDED_TRANSITIONS and flow is not None and url:
            await add_navigation_step(flow, url, self.session)
        await self._control(tab_id, RecorderCommand.START)
        self.session.add_active_tab(tab_id)
        if self.session.flow is not None:
            await self.session.broadcast_timeline()

    def on_tab_removed(self, tab_id: int) -> None:
        if self.session.status != RecordingStatus.RECORDING:
            return
        self.session.remove_active_tab(tab_id)
