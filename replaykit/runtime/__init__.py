"""Node execution runtime: context, handlers and the step registry."""

from replaykit.runtime.expression import evaluate, evaluate_condition
from replaykit.runtime.registry import NodeRegistry
from replaykit.runtime.templates import apply_assign, expand_templates_deep, interpolate
from replaykit.runtime.types import (
    ExecCtx,
    ExecResult,
    ForeachControl,
    NodeRuntime,
    RunToken,
    RuntimeServices,
    ValidationResult,
    WhileControl,
)

__all__ = [
    "ExecCtx",
    "ExecResult",
    "ForeachControl",
    "NodeRegistry",
    "NodeRuntime",
    "RunToken",
    "RuntimeServices",
    "ValidationResult",
    "WhileControl",
    "apply_assign",
    "evaluate",
    "evaluate_condition",
    "expand_templates_deep",
    "interpolate",
]
