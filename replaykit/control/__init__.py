"""Control-flow interpretation for loop directives."""

from replaykit.control.runner import ControlFlowRunner, ControlOutcome

__all__ = ["ControlFlowRunner", "ControlOutcome"]
