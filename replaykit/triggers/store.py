"""Filesystem store for trigger definitions."""

from __future__ import annotations

import json
import os
from pathlib import Path

import structlog

from replaykit.triggers.types import TriggerSpec

logger = structlog.get_logger(__name__)

_DEFAULT_STORE_DIR = os.path.join(os.path.expanduser("~"), ".replaykit")


class TriggerStore:
    """
    All triggers live in one document next to the flow store::

        {store_dir}/triggers.json   # {trigger_id: TriggerSpec}

    An unreadable file reads as empty; entries that fail to parse are skipped.
    """

    def __init__(self, store_dir: str | None = None) -> None:
        self._dir = Path(store_dir or _DEFAULT_STORE_DIR)
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def _path(self) -> Path:
        return self._dir / "triggers.json"

    def _load(self) -> dict[str, dict]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, OSError):
            logger.warning("triggers.unreadable", path=str(self._path))
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write(self, entries: dict[str, dict]) -> None:
        self._path.write_text(json.dumps(entries, indent=2), encoding="utf-8")

    def list(self) -> list[TriggerSpec]:
        specs = []
        for trigger_id, entry in self._load().items():
            try:
                specs.append(TriggerSpec.from_dict(entry))
            except (KeyError, ValueError, TypeError):
                logger.warning("trigger.invalid", trigger_id=trigger_id)
        return specs

    def get(self, trigger_id: str) -> TriggerSpec | None:
        return next((t for t in self.list() if t.id == trigger_id), None)

    def save(self, spec: TriggerSpec) -> TriggerSpec:
        entries = self._load()
        entries[spec.id] = spec.to_dict()
        self._write(entries)
        return spec

    def delete(self, trigger_id: str) -> bool:
        entries = self._load()
        if trigger_id not in entries:
            return False
        del entries[trigger_id]
        self._write(entries)
        return True
