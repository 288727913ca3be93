"""Filesystem store for flows and run records."""

from __future__ import annotations

import json
import os
from pathlib import Path

import structlog

from replaykit.flow.graph import filter_valid_edges
from replaykit.flow.types import Flow, RunRecord

logger = structlog.get_logger(__name__)

_DEFAULT_STORE_DIR = os.path.join(os.path.expanduser("~"), ".replaykit")

# Run records kept per flow before the oldest are trimmed
MAX_RUNS_PER_FLOW = 10


class FlowStore:
    """
    Filesystem store for flows and their run history.

    Directory layout::

        {store_dir}/
            index.json            # flow registry
            flows/{flow_id}.json  # Flow document
            runs/{flow_id}.json   # list of RunRecord, newest last
    """

    def __init__(self, store_dir: str | None = None) -> None:
        self._dir = Path(store_dir or _DEFAULT_STORE_DIR)
        (self._dir / "flows").mkdir(parents=True, exist_ok=True)
        (self._dir / "runs").mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @property
    def _index_path(self) -> Path:
        return self._dir / "index.json"

    def _load_index(self) -> dict:
        try:
            with open(self._index_path, encoding="utf-8") as f:
                return json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return {}

    def _save_index(self, index: dict) -> None:
        with open(self._index_path, "w", encoding="utf-8") as f:
            json.dump(index, f, indent=2)

    def _flow_path(self, flow_id: str) -> Path:
        return self._dir / "flows" / f"{flow_id}.json"

    def _runs_path(self, flow_id: str) -> Path:
        return self._dir / "runs" / f"{flow_id}.json"

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def save(self, flow: Flow) -> Flow:
        """
        Persist a flow and update the index.

        Edges referencing missing nodes are dropped before writing.
        """
        valid = filter_valid_edges(flow.nodes, flow.edges)
        if len(valid) != len(flow.edges):
            logger.warning(
                "flow.dangling_edges_dropped",
                flow_id=flow.id,
                dropped=len(flow.edges) - len(valid),
            )
            flow.edges = valid

        self._flow_path(flow.id).write_text(
            json.dumps(flow.to_dict(), indent=2), encoding="utf-8"
        )

        index = self._load_index()
        index[flow.id] = {
            "name": flow.name,
            "version": flow.version,
            "domain": flow.meta.domain,
            "updated_at": flow.meta.updated_at,
            "node_count": len(flow.nodes),
        }
        self._save_index(index)
        return flow

    def get(self, flow_id: str) -> Flow | None:
        """Load a Flow by ID. Returns None if not found or unreadable."""
        path = self._flow_path(flow_id)
        if not path.exists():
            return None
        try:
            d = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("flow.unreadable", flow_id=flow_id, path=str(path))
            return None
        return Flow.from_dict(d)

    def delete(self, flow_id: str) -> bool:
        """Delete a flow and its run history. Returns True if it existed."""
        index = self._load_index()
        if flow_id not in index:
            return False

        for path in (self._flow_path(flow_id), self._runs_path(flow_id)):
            try:
                path.unlink()
            except FileNotFoundError:
                pass

        del index[flow_id]
        self._save_index(index)
        return True

    def list(self) -> list[dict]:
        """Return index entries for all stored flows."""
        index = self._load_index()
        return [{"flow_id": flow_id, **entry} for flow_id, entry in index.items()]

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def append_run(self, record: RunRecord) -> None:
        """Append a run record, keeping only the most recent runs for its flow."""
        runs = self.list_runs(record.flow_id)
        runs.append(record)
        runs = runs[-MAX_RUNS_PER_FLOW:]
        self._runs_path(record.flow_id).write_text(
            json.dumps([r.to_dict() for r in runs], indent=2), encoding="utf-8"
        )

    def list_runs(self, flow_id: str) -> list[RunRecord]:
        path = self._runs_path(flow_id)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (json.JSONDecodeError, OSError):
            logger.warning("runs.unreadable", flow_id=flow_id, path=str(path))
            return []
        return [RunRecord.from_dict(r) for r in raw]
