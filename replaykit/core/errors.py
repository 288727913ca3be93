"""Exception hierarchy for replay and recording."""

from __future__ import annotations


class ReplayError(Exception):
    """Base class for all replaykit errors."""

    #: Whether a node-level retry policy may re-attempt after this error.
    retryable = True


class StepValidationError(ReplayError):
    """A step failed its structural precondition check."""

    retryable = False

    def __init__(self, step_type: str, errors: list[str]) -> None:
        self.step_type = step_type
        self.errors = list(errors)
        super().__init__(", ".join(self.errors) or "validation failed")


class UnsupportedStepError(ReplayError):
    """No handler is registered for a step type."""

    retryable = False

    def __init__(self, step_type: str) -> None:
        self.step_type = step_type
        super().__init__(f"unsupported step type: {step_type}")


class ElementResolutionError(ReplayError):
    """A target could not be resolved to a usable element."""


class ExecutorError(ReplayError):
    """The action executor reported ``is_error`` for a tool call."""

    def __init__(self, message: str, tool: str | None = None) -> None:
        self.tool = tool
        super().__init__(message)


class FlowNotFoundError(ReplayError):
    retryable = False

    def __init__(self, flow_id: str) -> None:
        self.flow_id = flow_id
        super().__init__(f"flow not found: {flow_id}")


class RunCanceledError(ReplayError):
    """Raised at a cooperative checkpoint once the run has been canceled."""

    retryable = False

    def __init__(self, message: str = "Terminated") -> None:
        super().__init__(message)


class RunPausedError(ReplayError):
    """Raised to unwind a node whose nested execution observed a pause."""

    retryable = False

    def __init__(self, node_id: str | None = None) -> None:
        self.node_id = node_id
        super().__init__("run paused")


class AssertionFailedError(ReplayError):
    """An ``assert`` step with ``failStrategy: "stop"`` did not hold."""
