"""Recording: session state machine, stop barrier and control surface."""

from replaykit.recording.barrier import TabBarrierResult, run_stop_barrier
from replaykit.recording.flow_builder import (
    add_navigation_step,
    create_initial_flow,
    generate_step_id,
)
from replaykit.recording.recorder import ControlResult, RecorderManager
from replaykit.recording.session import RecordingSession, RecordingStatus

__all__ = [
    "ControlResult",
    "RecorderManager",
    "RecordingSession",
    "RecordingStatus",
    "TabBarrierResult",
    "add_navigation_step",
    "create_initial_flow",
    "generate_step_id",
    "run_stop_barrier",
]
