"""``{var}`` template expansion and result assignment helpers."""

from __future__ import annotations

import re
from typing import Any

_TEMPLATE = re.compile(r"\{([^}]+)\}")
_INDEX = re.compile(r"\[(\d+)\]")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def interpolate(text: str, scope: dict[str, Any]) -> str:
    """Replace each ``{name}`` in ``text``; unknown names become an empty string."""
    return _TEMPLATE.sub(lambda m: _stringify(scope.get(m.group(1))), text)


def expand_templates_deep(value: Any, scope: dict[str, Any]) -> Any:
    """Return a copy of ``value`` with every string expanded, recursing into lists and dicts."""
    if isinstance(value, str):
        return interpolate(value, scope)
    if isinstance(value, list):
        return [expand_templates_deep(v, scope) for v in value]
    if isinstance(value, dict):
        return {k: expand_templates_deep(v, scope) for k, v in value.items()}
    return value


def get_by_path(obj: Any, path: str) -> Any:
    """Read ``a.b[0].c`` style paths; any missing hop yields None."""
    parts = [p for p in _INDEX.sub(r".\1", path).split(".") if p]
    cur = obj
    for part in parts:
        if cur is None:
            return None
        if isinstance(cur, dict):
            cur = cur.get(part)
        elif isinstance(cur, (list, tuple)):
            try:
                cur = cur[int(part)]
            except (ValueError, IndexError):
                return None
        else:
            cur = getattr(cur, part, None)
    return cur


def apply_assign(target: dict[str, Any], source: Any, assign: dict[str, str] | None) -> None:
    """For each ``{var: path}`` pair, set ``target[var]`` to ``source`` at ``path``."""
    for key, path in (assign or {}).items():
        target[key] = get_by_path(source, str(path))
