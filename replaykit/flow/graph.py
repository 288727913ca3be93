"""DAG helpers: linear-chain invariant, repair, ordering and label lookup."""

from __future__ import annotations

import re
from collections import deque
from typing import Any, Iterable

from replaykit.flow.types import Edge, EdgeLabel, NodeBase, VariableDef, VariableType


def validate_invariant(nodes: list[NodeBase], edges: list[Edge]) -> bool:
    """
    Return True when ``edges`` form the strict linear chain a recording produces.

    The edge count must be ``max(0, len(nodes) - 1)`` and the last edge must
    terminate at the last node.
    """
    expected = max(0, len(nodes) - 1)
    if len(edges) != expected:
        return False
    if not edges:
        return True
    return edges[-1].to == nodes[-1].id


def rechain(nodes: list[NodeBase]) -> list[Edge]:
    """Rebuild a purely linear default edge set following node array order."""
    edges: list[Edge] = []
    for i in range(len(nodes) - 1):
        src, dst = nodes[i].id, nodes[i + 1].id
        edges.append(Edge(id=f"e_{i}_{src}_{dst}", from_=src, to=dst, label=EdgeLabel.DEFAULT))
    return edges


def default_edges_only(edges: Iterable[Edge]) -> list[Edge]:
    return [e for e in edges if e.is_default]


def filter_valid_edges(nodes: list[NodeBase], edges: list[Edge]) -> list[Edge]:
    """Drop edges whose ends do not reference an existing node."""
    ids = {n.id for n in nodes}
    return [e for e in edges if e.from_ in ids and e.to in ids]


def topo_order(nodes: list[NodeBase], edges: list[Edge]) -> list[NodeBase]:
    """
    Kahn's algorithm over ``edges``.

    Ties keep node array order. If the graph contains a cycle the original
    array order is returned unchanged.
    """
    index = {n.id: i for i, n in enumerate(nodes)}
    indegree = {n.id: 0 for n in nodes}
    adjacency: dict[str, list[str]] = {n.id: [] for n in nodes}
    for e in edges:
        if e.from_ not in index or e.to not in index:
            continue
        adjacency[e.from_].append(e.to)
        indegree[e.to] += 1

    queue = deque(n.id for n in nodes if indegree[n.id] == 0)
    ordered: list[NodeBase] = []
    while queue:
        nid = queue.popleft()
        ordered.append(nodes[index[nid]])
        for nxt in adjacency[nid]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                queue.append(nxt)

    if len(ordered) != len(nodes):
        return list(nodes)
    return ordered


def find_edge_by_label(edges: Iterable[Edge], from_id: str, label: str) -> Edge | None:
    for e in edges:
        if e.from_ == from_id and (e.label or EdgeLabel.DEFAULT) == label:
            return e
    return None


def node_to_step(node: NodeBase) -> dict[str, Any]:
    """Flatten a node into a step dict: config keys plus ``id``/``type``, which always win."""
    step = dict(node.config or {})
    step["id"] = node.id
    step["type"] = node.type
    return step


# ---------------------------------------------------------------------------
# Variables
# ---------------------------------------------------------------------------


def _coerce(vdef: VariableDef, value: Any) -> Any:
    if value is None:
        return None
    if vdef.type == VariableType.NUMBER and isinstance(value, str):
        try:
            return float(value) if "." in value else int(value)
        except ValueError:
            return value
    if vdef.type == VariableType.BOOLEAN and isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no", ""):
            return False
    return value


def validate_variables(
    defs: list[VariableDef], values: dict[str, Any] | None
) -> tuple[dict[str, Any], list[str]]:
    """
    Merge declared defaults with caller ``values`` and check each rule.

    Returns ``(resolved_vars, errors)``; keys without a definition pass through
    untouched.
    """
    resolved: dict[str, Any] = dict(values or {})
    errors: list[str] = []
    for vdef in defs:
        value = resolved.get(vdef.key)
        if value is None or value == "":
            value = vdef.default
        value = _coerce(vdef, value)
        if value is None or value == "":
            if vdef.rules.required:
                errors.append(f"variable '{vdef.key}' is required")
            if value is not None:
                resolved[vdef.key] = value
            continue

        if vdef.type == VariableType.NUMBER and not isinstance(value, (int, float)):
            errors.append(f"variable '{vdef.key}' must be a number")
        elif vdef.type == VariableType.BOOLEAN and not isinstance(value, bool):
            errors.append(f"variable '{vdef.key}' must be a boolean")
        elif vdef.type == VariableType.ARRAY and not isinstance(value, list):
            errors.append(f"variable '{vdef.key}' must be an array")

        allowed = vdef.rules.enum
        if allowed and str(value) not in [str(a) for a in allowed]:
            errors.append(f"variable '{vdef.key}' must be one of {', '.join(map(str, allowed))}")
        if vdef.rules.pattern and isinstance(value, str):
            try:
                if not re.fullmatch(vdef.rules.pattern, value):
                    errors.append(f"variable '{vdef.key}' does not match pattern")
            except re.error:
                errors.append(f"variable '{vdef.key}' has an invalid pattern")
        resolved[vdef.key] = value
    return resolved, errors
