"""Flow model: DAG types, invariant helpers and persistence."""

from replaykit.flow.graph import (
    default_edges_only,
    filter_valid_edges,
    find_edge_by_label,
    node_to_step,
    rechain,
    topo_order,
    validate_invariant,
    validate_variables,
)
from replaykit.flow.store import FlowStore
from replaykit.flow.types import (
    Edge,
    EdgeLabel,
    Flow,
    FlowMeta,
    LogStatus,
    NodeBase,
    NodeType,
    RunLogEntry,
    RunRecord,
    RunResult,
    RunSummary,
    SelectorCandidate,
    SelectorType,
    StopBarrierFailure,
    StopBarrierStatus,
    Subflow,
    TargetLocator,
    VariableDef,
    VariableRules,
    VariableType,
)

__all__ = [
    "Edge",
    "EdgeLabel",
    "Flow",
    "FlowMeta",
    "FlowStore",
    "LogStatus",
    "NodeBase",
    "NodeType",
    "RunLogEntry",
    "RunRecord",
    "RunResult",
    "RunSummary",
    "SelectorCandidate",
    "SelectorType",
    "StopBarrierFailure",
    "StopBarrierStatus",
    "Subflow",
    "TargetLocator",
    "VariableDef",
    "VariableRules",
    "VariableType",
    "default_edges_only",
    "filter_valid_edges",
    "find_edge_by_label",
    "node_to_step",
    "rechain",
    "topo_order",
    "validate_invariant",
    "validate_variables",
]
