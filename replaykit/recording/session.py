"""Recording session state machine with incremental DAG sync."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

import structlog

from replaykit.browser.bridge import BrowserBridge, ContentAction
from replaykit.flow.graph import node_to_step, rechain, validate_invariant
from replaykit.flow.types import Edge, EdgeLabel, Flow, NodeBase, NodeType, VariableDef
from replaykit.recording.flow_builder import generate_step_id, iso_now, step_to_node_config

logger = structlog.get_logger(__name__)


class RecordingStatus(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    # Draining steps still in flight from content scripts before save
    STOPPING = "stopping"


class RecordingSession:
    """
    Holds the flow being recorded and keeps its nodes/edges a linear chain.

    Lifecycle::

        idle -> recording <-> paused
        recording -> stopping -> idle

    Steps are accepted only while recording or stopping. Each batch is an
    upsert keyed by step id: a known id replaces the node's type and config in
    place, a new id appends a node plus a default edge from the previous tail.
    The chain invariant is checked before and after every batch and repaired
    by a full rechain when it does not hold.
    """

    def __init__(self, bridge: BrowserBridge | None = None) -> None:
        self._bridge = bridge
        self._initialized = False
        self.log = logger.bind(component="recording_session")
        self._reset()

    def _reset(self) -> None:
        self.session_id = ""
        self.status = RecordingStatus.IDLE
        self.origin_tab_id: int | None = None
        self.flow: Flow | None = None
        self.active_tabs: set[int] = set()
        self.stopped_tabs: set[int] = set()
        self._node_index: dict[str, int] = {}
        self._edge_seq = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        if self._initialized:
            return
        self._reset()
        self._initialized = True

    def dispose(self) -> None:
        if self.status != RecordingStatus.IDLE:
            self.log.warning("disposed_while_active", status=self.status.value)
        self._reset()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def start_session(self, flow: Flow, origin_tab_id: int) -> str:
        self._reset()
        self.session_id = f"sess_{int(time.time() * 1000)}"
        self.status = RecordingStatus.RECORDING
        self.origin_tab_id = origin_tab_id
        self.flow = flow
        self.active_tabs = {origin_tab_id}
        self._rebuild_caches()
        self.log.info("session_started", session_id=self.session_id, flow_id=flow.id, tab_id=origin_tab_id)
        return self.session_id

    def begin_stopping(self) -> str:
        """Enter ``stopping`` and return the session id the stop barrier must carry."""
        if self.status == RecordingStatus.IDLE:
            return ""
        self.status = RecordingStatus.STOPPING
        self.stopped_tabs.clear()
        return self.session_id

    def mark_tab_stopped(self, tab_id: int) -> bool:
        """Record a tab's stop ACK; True once every active tab has acknowledged."""
        self.stopped_tabs.add(tab_id)
        return self.active_tabs <= self.stopped_tabs

    def is_recording(self) -> bool:
        return self.status == RecordingStatus.RECORDING

    def is_stopping(self) -> bool:
        return self.status == RecordingStatus.STOPPING

    def can_accept_steps(self) -> bool:
        return self.status in (RecordingStatus.RECORDING, RecordingStatus.STOPPING)

    def pause(self) -> None:
        if self.status == RecordingStatus.RECORDING:
            self.status = RecordingStatus.PAUSED

    def resume(self) -> None:
        if self.status == RecordingStatus.PAUSED:
            self.status = RecordingStatus.RECORDING

    def stop_session(self) -> Flow | None:
        flow = self.flow
        self.log.info(
            "session_stopped",
            session_id=self.session_id,
            flow_id=flow.id if flow else None,
            nodes=len(flow.nodes) if flow else 0,
        )
        self._reset()
        return flow

    # ------------------------------------------------------------------
    # Tabs
    # ------------------------------------------------------------------

    def add_active_tab(self, tab_id: int) -> None:
        self.active_tabs.add(tab_id)

    def remove_active_tab(self, tab_id: int) -> None:
        self.active_tabs.discard(tab_id)

    # ------------------------------------------------------------------
    # DAG sync
    # ------------------------------------------------------------------

    async def append_steps(self, steps: list[dict[str, Any]]) -> None:
        """Upsert ``steps`` into the flow, then push the timeline to every session tab."""
        if self.flow is None or not steps:
            return
        self._upsert(steps)
        await self.broadcast_timeline()

    def _upsert(self, steps: list[dict[str, Any]]) -> None:
        flow = self.flow
        assert flow is not None
        nodes, edges = flow.nodes, flow.edges

        if not validate_invariant(nodes, edges):
            self._rechain("before_batch")

        needs_rebuild = False
        for step in steps:
            if not step.get("id"):
                step["id"] = generate_step_id()
            step_id = step["id"]
            node_type = self._to_node_type(step.get("type"))

            idx = self._node_index.get(step_id)
            if idx is not None:
                if idx >= len(nodes) or nodes[idx].id != step_id:
                    needs_rebuild = True
                    continue
                nodes[idx].type = node_type
                nodes[idx].config = step_to_node_config(step)
                continue

            prev = nodes[-1].id if nodes else None
            nodes.append(NodeBase(id=step_id, type=node_type, config=step_to_node_config(step)))
            self._node_index[step_id] = len(nodes) - 1
            if prev is None:
                continue
            if prev not in self._node_index:
                needs_rebuild = True
                continue
            edges.append(
                Edge(
                    id=f"e_{self._edge_seq}_{prev}_{step_id}",
                    from_=prev,
                    to=step_id,
                    label=EdgeLabel.DEFAULT,
                )
            )
            self._edge_seq += 1

        if needs_rebuild or not validate_invariant(nodes, edges):
            self._rechain("after_batch")
        flow.meta.updated_at = iso_now()

    def _to_node_type(self, step_type: Any) -> str:
        if isinstance(step_type, str) and NodeType.has(step_type):
            return step_type
        self.log.warning("unknown_step_type", step_type=step_type, fallback=NodeType.SCRIPT.value)
        return NodeType.SCRIPT.value

    def _rechain(self, phase: str) -> None:
        flow = self.flow
        assert flow is not None
        self.log.warning(
            "recording.dag_repaired",
            phase=phase,
            flow_id=flow.id,
            nodes=len(flow.nodes),
            edges=len(flow.edges),
        )
        flow.edges[:] = rechain(flow.nodes)
        self._rebuild_caches()

    def _rebuild_caches(self) -> None:
        flow = self.flow
        self._node_index = {n.id: i for i, n in enumerate(flow.nodes)} if flow else {}
        # Continue numbering from the current edge count so ids never collide
        self._edge_seq = len(flow.edges) if flow else 0

    def append_variables(self, variables: list[VariableDef | dict[str, Any]]) -> None:
        """Add variable definitions, replacing any existing one with the same key."""
        flow = self.flow
        if flow is None or not variables:
            return
        positions = {v.key: i for i, v in enumerate(flow.variables)}
        for raw in variables:
            var = raw if isinstance(raw, VariableDef) else _variable_from(raw)
            if var is None:
                continue
            if var.key in positions:
                flow.variables[positions[var.key]] = var
            else:
                positions[var.key] = len(flow.variables)
                flow.variables.append(var)
        flow.meta.updated_at = iso_now()

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    def timeline_steps(self) -> list[dict[str, Any]]:
        if self.flow is None:
            return []
        return [node_to_step(n) for n in self.flow.nodes]

    async def broadcast_timeline(self) -> None:
        """Send the flattened step list to the top frame of every tab in the session."""
        if self._bridge is None:
            return
        steps = self.timeline_steps()
        if not steps:
            return
        targets = sorted(self.active_tabs)
        if not targets and self.origin_tab_id is not None:
            targets = [self.origin_tab_id]
        message = {"action": ContentAction.TIMELINE_UPDATE, "steps": steps}
        for tab_id in targets:
            try:
                await self._bridge.send(tab_id, message, frame_id=0)
            except Exception as e:
                self.log.debug("timeline_broadcast_failed", tab_id=tab_id, error=str(e))


def _variable_from(raw: dict[str, Any]) -> VariableDef | None:
    if not isinstance(raw, dict) or not raw.get("key"):
        return None
    try:
        return VariableDef.from_dict(raw)
    except ValueError:
        logger.warning("recording.invalid_variable", key=raw.get("key"))
        return None
