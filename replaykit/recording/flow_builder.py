"""Helpers for building a flow while it is being recorded."""

from __future__ import annotations

import random
import string
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from replaykit.events.types import now_ms
from replaykit.flow.types import Edge, EdgeLabel, Flow, FlowMeta, NodeBase, NodeType

if TYPE_CHECKING:
    from replaykit.recording.session import RecordingSession

WORKFLOW_VERSION = 1

_ID_ALPHABET = string.ascii_lowercase + string.digits


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_step_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=4))
    return f"step_{now_ms()}_{suffix}"


def step_to_node_config(step: dict[str, Any]) -> dict[str, Any]:
    """Everything but ``id``/``type``; those live on the node itself."""
    return {k: v for k, v in step.items() if k not in ("id", "type")}


def create_initial_flow(meta: dict[str, Any] | None = None) -> Flow:
    """
    Create an empty flow for a new recording.

    ``meta`` may carry ``id``, ``name``, ``description`` and a nested ``meta``
    mapping (domain, tags, bindings) in the stored camelCase shape.
    """
    meta = meta or {}
    stamp = iso_now()
    flow_meta = FlowMeta.from_dict({**(meta.get("meta") or {}), "createdAt": stamp, "updatedAt": stamp})
    return Flow(
        id=meta.get("id") or f"flow_{now_ms()}",
        name=meta.get("name") or "new_workflow",
        version=WORKFLOW_VERSION,
        description=meta.get("description"),
        meta=flow_meta,
    )


async def add_navigation_step(
    flow: Flow, url: str, session: RecordingSession | None = None
) -> dict[str, Any]:
    """
    Append a ``navigate`` step for ``url``.

    While ``session`` is actively recording ``flow`` the step goes through the
    session so the chain bookkeeping and timeline stay in sync; otherwise the
    node is appended to the flow directly.
    """
    step = {"id": generate_step_id(), "type": NodeType.NAVIGATE.value, "url": url}
    if session is not None and session.is_recording() and session.flow is flow:
        await session.append_steps([step])
    else:
        append_node_to_flow(flow, step)
    return step


def append_node_to_flow(flow: Flow, step: dict[str, Any]) -> NodeBase:
    prev = flow.nodes[-1].id if flow.nodes else None
    node = NodeBase(id=step["id"], type=step["type"], config=step_to_node_config(step))
    flow.nodes.append(node)
    if prev is not None:
        flow.edges.append(
            Edge(
                id=f"e_{len(flow.edges)}_{prev}_{node.id}",
                from_=prev,
                to=node.id,
                label=EdgeLabel.DEFAULT,
            )
        )
    flow.meta.updated_at = iso_now()
    return node
