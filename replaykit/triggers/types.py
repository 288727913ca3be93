"""Trigger definitions: what starts a flow run without a direct call."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TriggerKind(str, Enum):
    MANUAL = "manual"
    URL = "url"
    INTERVAL = "interval"
    ONCE = "once"


class UrlMatchKind(str, Enum):
    URL = "url"  # full URL prefix
    DOMAIN = "domain"  # hostname or any subdomain of it
    PATH = "path"  # pathname prefix


@dataclass
class UrlMatchRule:
    kind: UrlMatchKind
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "value": self.value}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> UrlMatchRule:
        return cls(kind=UrlMatchKind(d["kind"]), value=str(d.get("value") or ""))


@dataclass
class TriggerSpec:
    """
    A stored trigger bound to one flow.

    Only the fields of its ``kind`` are meaningful: ``match`` for url,
    ``period_minutes`` for interval and ``when_ms`` (unix millis) for once.
    """

    id: str
    kind: TriggerKind
    flow_id: str
    enabled: bool = True
    args: dict[str, Any] = field(default_factory=dict)
    match: list[UrlMatchRule] = field(default_factory=list)
    period_minutes: float | None = None
    when_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind.value,
            "flowId": self.flow_id,
            "enabled": self.enabled,
        }
        if self.args:
            d["args"] = self.args
        if self.kind == TriggerKind.URL:
            d["match"] = [m.to_dict() for m in self.match]
        if self.period_minutes is not None:
            d["periodMinutes"] = self.period_minutes
        if self.when_ms is not None:
            d["whenMs"] = self.when_ms
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TriggerSpec:
        return cls(
            id=d["id"],
            kind=TriggerKind(d["kind"]),
            flow_id=d["flowId"],
            enabled=bool(d.get("enabled", True)),
            args=dict(d.get("args") or {}),
            match=[UrlMatchRule.from_dict(m) for m in d.get("match") or []],
            period_minutes=d.get("periodMinutes"),
            when_ms=d.get("whenMs"),
        )


@dataclass
class TriggerFireContext:
    trigger_id: str
    kind: TriggerKind
    fired_at: int = field(default_factory=lambda: int(time.time() * 1000))
    source_tab_id: int | None = None
    source_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "triggerId": self.trigger_id,
            "kind": self.kind.value,
            "firedAt": self.fired_at,
        }
        if self.source_tab_id is not None:
            d["sourceTabId"] = self.source_tab_id
        if self.source_url is not None:
            d["sourceUrl"] = self.source_url
        return d
