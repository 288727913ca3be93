"""Engine settings, logging, errors and the top-level facade."""

from replaykit.core.config import EngineSettings, get_settings
from replaykit.core.errors import (
    AssertionFailedError,
    ElementResolutionError,
    ExecutorError,
    FlowNotFoundError,
    ReplayError,
    RunCanceledError,
    RunPausedError,
    StepValidationError,
    UnsupportedStepError,
)
from replaykit.core.logging import configure_logging, get_logger

__all__ = [
    "AssertionFailedError",
    "ElementResolutionError",
    "EngineSettings",
    "ExecutorError",
    "FlowNotFoundError",
    "ReplayError",
    "RunCanceledError",
    "RunPausedError",
    "StepValidationError",
    "UnsupportedStepError",
    "configure_logging",
    "get_logger",
    "get_settings",
]
