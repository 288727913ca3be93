from replaykit.core.engine import ReplayKit
from replaykit.core.config import EngineSettings, get_settings
from replaykit.core.errors import ReplayError
from replaykit.events.types import RunEvent, RunEventType
from replaykit.flow.types import (
    Edge,
    EdgeLabel,
    Flow,
    NodeBase,
    NodeType,
    RunLogEntry,
    RunResult,
    SelectorCandidate,
    TargetLocator,
    VariableDef,
)
from replaykit.recording.recorder import ControlResult, RecorderManager
from replaykit.recording.session import RecordingSession
from replaykit.replay.manager import ReplayManager

__all__ = [
    "ReplayKit",
    "EngineSettings",
    "get_settings",
    "ReplayError",
    # Flow model
    "Edge",
    "EdgeLabel",
    "Flow",
    "NodeBase",
    "NodeType",
    "SelectorCandidate",
    "TargetLocator",
    "VariableDef",
    # Runs
    "RunEvent",
    "RunEventType",
    "RunLogEntry",
    "RunResult",
    "ReplayManager",
    # Recording
    "ControlResult",
    "RecorderManager",
    "RecordingSession",
]
