"""Step-kind to handler mapping and the validate-then-run protocol."""

from __future__ import annotations

import structlog

from replaykit.core.errors import StepValidationError, UnsupportedStepError
from replaykit.flow.types import NodeType
from replaykit.runtime.nodes import default_handlers
from replaykit.runtime.types import ExecCtx, ExecResult, NodeRuntime, Step

logger = structlog.get_logger(__name__)


class NodeRegistry:
    """
    Registry of :class:`NodeRuntime` handlers keyed by step ``type``.

    Construction fails if any :class:`NodeType` lacks a handler, so adding a
    step kind without its handler is caught at startup rather than mid-run.
    """

    def __init__(self, handlers: dict[str, NodeRuntime] | None = None) -> None:
        self._handlers: dict[str, NodeRuntime] = default_handlers()
        if handlers:
            self._handlers.update(handlers)
        missing = sorted(t.value for t in NodeType if t.value not in self._handlers)
        if missing:
            raise ValueError(f"no handler registered for step types: {', '.join(missing)}")

    def register(self, handler: NodeRuntime, step_type: str | None = None) -> None:
        """Install or replace the handler for ``step_type`` (defaults to ``handler.type``)."""
        key = step_type or handler.type
        if not key:
            raise ValueError("handler has no step type")
        self._handlers[key] = handler

    def get(self, step_type: str) -> NodeRuntime | None:
        return self._handlers.get(step_type)

    def __contains__(self, step_type: str) -> bool:
        return step_type in self._handlers

    async def execute_step(self, ctx: ExecCtx, step: Step) -> ExecResult:
        step_type = str(step.get("type"))
        handler = self._handlers.get(step_type)
        if handler is None:
            raise UnsupportedStepError(step_type)
        validation = handler.validate(step)
        if not validation.ok:
            logger.debug("step_invalid", step_id=step.get("id"), step_type=step_type, errors=validation.errors)
            raise StepValidationError(step_type, validation.errors)
        result = await handler.run(ctx, step)
        return result if result is not None else ExecResult()
