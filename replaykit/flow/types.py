"""Flow model type definitions: DAG nodes, edges, variables and run records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NodeType(str, Enum):
    CLICK = "click"
    DBLCLICK = "dblclick"
    FILL = "fill"
    NAVIGATE = "navigate"
    WAIT = "wait"
    ASSERT = "assert"
    HTTP = "http"
    EXTRACT = "extract"
    SCRIPT = "script"
    OPEN_TAB = "openTab"
    SWITCH_TAB = "switchTab"
    CLOSE_TAB = "closeTab"
    SCROLL = "scroll"
    DRAG = "drag"
    KEY = "key"
    IF = "if"
    FOREACH = "foreach"
    WHILE = "while"
    EXECUTE_FLOW = "executeFlow"
    HANDLE_DOWNLOAD = "handleDownload"
    SCREENSHOT = "screenshot"
    TRIGGER_EVENT = "triggerEvent"
    SET_ATTRIBUTE = "setAttribute"
    SWITCH_FRAME = "switchFrame"
    LOOP_ELEMENTS = "loopElements"

    @classmethod
    def has(cls, value: str) -> bool:
        return value in _NODE_TYPE_VALUES


_NODE_TYPE_VALUES = {t.value for t in NodeType}


class EdgeLabel:
    DEFAULT = "default"
    TRUE = "true"
    FALSE = "false"
    ELSE = "else"
    ON_ERROR = "onError"


class SelectorType(str, Enum):
    CSS = "css"
    ATTR = "attr"
    ARIA = "aria"
    XPATH = "xpath"
    TEXT = "text"


class VariableType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ARRAY = "array"


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass
class SelectorCandidate:
    type: SelectorType
    value: str
    weight: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type.value, "value": self.value}
        if self.weight is not None:
            d["weight"] = self.weight
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SelectorCandidate:
        return cls(
            type=SelectorType(d.get("type", "css")),
            value=str(d.get("value", "")),
            weight=d.get("weight"),
        )


@dataclass
class TargetLocator:
    """Ranked candidates plus an optional cached ref used to re-find an element."""

    candidates: list[SelectorCandidate] = field(default_factory=list)
    ref: str | None = None
    selector: str | None = None  # primary CSS fast path
    tag: str | None = None  # tag hint for text matching

    @property
    def first_type(self) -> SelectorType | None:
        return self.candidates[0].type if self.candidates else None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"candidates": [c.to_dict() for c in self.candidates]}
        if self.ref:
            d["ref"] = self.ref
        if self.selector:
            d["selector"] = self.selector
        if self.tag:
            d["tag"] = self.tag
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> TargetLocator:
        d = d if isinstance(d, dict) else {}
        raw = d.get("candidates") or []
        return cls(
            candidates=[SelectorCandidate.from_dict(c) for c in raw if isinstance(c, dict)],
            ref=d.get("ref") or None,
            selector=d.get("selector") or None,
            tag=d.get("tag") or None,
        )


# ---------------------------------------------------------------------------
# DAG
# ---------------------------------------------------------------------------


@dataclass
class NodeBase:
    id: str
    type: str  # NodeType value; kept as str so unknown kinds survive a load
    config: dict[str, Any] = field(default_factory=dict)
    name: str | None = None
    disabled: bool = False
    ui: dict[str, float] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "type": self.type, "config": self.config}
        if self.name:
            d["name"] = self.name
        if self.disabled:
            d["disabled"] = True
        if self.ui is not None:
            d["ui"] = self.ui
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> NodeBase:
        return cls(
            id=str(d["id"]),
            type=str(d.get("type", NodeType.SCRIPT.value)),
            config=dict(d.get("config") or {}),
            name=d.get("name"),
            disabled=bool(d.get("disabled", False)),
            ui=d.get("ui"),
        )


@dataclass
class Edge:
    id: str
    from_: str
    to: str
    label: str = EdgeLabel.DEFAULT

    @property
    def is_default(self) -> bool:
        return not self.label or self.label == EdgeLabel.DEFAULT

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "from": self.from_, "to": self.to, "label": self.label}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Edge:
        return cls(
            id=str(d["id"]),
            from_=str(d["from"]),
            to=str(d["to"]),
            label=d.get("label") or EdgeLabel.DEFAULT,
        )


@dataclass
class VariableRules:
    required: bool = False
    pattern: str | None = None
    enum: list[str] | None = None


@dataclass
class VariableDef:
    key: str
    type: VariableType = VariableType.STRING
    label: str | None = None
    sensitive: bool = False
    default: Any = None
    rules: VariableRules = field(default_factory=VariableRules)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"key": self.key, "type": self.type.value}
        if self.label:
            d["label"] = self.label
        if self.sensitive:
            d["sensitive"] = True
        if self.default is not None:
            d["default"] = self.default
        rules = {
            k: v
            for k, v in (
                ("required", self.rules.required or None),
                ("pattern", self.rules.pattern),
                ("enum", self.rules.enum),
            )
            if v is not None
        }
        if rules:
            d["rules"] = rules
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> VariableDef:
        r = d.get("rules") or {}
        return cls(
            key=str(d["key"]),
            type=VariableType(d.get("type") or "string"),
            label=d.get("label"),
            sensitive=bool(d.get("sensitive", False)),
            default=d.get("default"),
            rules=VariableRules(
                required=bool(r.get("required", False)),
                pattern=r.get("pattern"),
                enum=r.get("enum"),
            ),
        )


@dataclass
class Subflow:
    nodes: list[NodeBase] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Subflow:
        return cls(
            nodes=[NodeBase.from_dict(n) for n in d.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in d.get("edges") or []],
        )


@dataclass
class StopBarrierFailure:
    tab_id: int
    skipped: bool = False
    reason: str | None = None
    top_timed_out: bool = False
    top_error: str | None = None
    subframes_failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"tabId": self.tab_id}
        if self.skipped:
            d["skipped"] = True
        if self.reason:
            d["reason"] = self.reason
        if self.top_timed_out:
            d["topTimedOut"] = True
        if self.top_error:
            d["topError"] = self.top_error
        if self.subframes_failed:
            d["subframesFailed"] = self.subframes_failed
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> StopBarrierFailure:
        return cls(
            tab_id=int(d["tabId"]),
            skipped=bool(d.get("skipped", False)),
            reason=d.get("reason"),
            top_timed_out=bool(d.get("topTimedOut", False)),
            top_error=d.get("topError"),
            subframes_failed=int(d.get("subframesFailed", 0)),
        )


@dataclass
class StopBarrierStatus:
    ok: bool
    session_id: str | None = None
    stopped_at: str | None = None
    failed: list[StopBarrierFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "sessionId": self.session_id,
            "stoppedAt": self.stopped_at,
            "failed": [f.to_dict() for f in self.failed],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> StopBarrierStatus:
        return cls(
            ok=bool(d.get("ok", False)),
            session_id=d.get("sessionId"),
            stopped_at=d.get("stoppedAt"),
            failed=[StopBarrierFailure.from_dict(f) for f in d.get("failed") or []],
        )


@dataclass
class FlowMeta:
    created_at: str = ""
    updated_at: str = ""
    domain: str | None = None
    tags: list[str] = field(default_factory=list)
    bindings: list[dict[str, str]] = field(default_factory=list)
    stop_barrier: StopBarrierStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"createdAt": self.created_at, "updatedAt": self.updated_at}
        if self.domain:
            d["domain"] = self.domain
        if self.tags:
            d["tags"] = list(self.tags)
        if self.bindings:
            d["bindings"] = list(self.bindings)
        if self.stop_barrier is not None:
            d["stopBarrier"] = self.stop_barrier.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> FlowMeta:
        d = d or {}
        sb = d.get("stopBarrier")
        return cls(
            created_at=d.get("createdAt", ""),
            updated_at=d.get("updatedAt", ""),
            domain=d.get("domain"),
            tags=list(d.get("tags") or []),
            bindings=list(d.get("bindings") or []),
            stop_barrier=StopBarrierStatus.from_dict(sb) if isinstance(sb, dict) else None,
        )


@dataclass
class Flow:
    """A named, versioned automation unit: the unit of persistence and execution."""

    id: str
    name: str
    version: int = 1
    description: str | None = None
    variables: list[VariableDef] = field(default_factory=list)
    nodes: list[NodeBase] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    subflows: dict[str, Subflow] = field(default_factory=dict)
    meta: FlowMeta = field(default_factory=FlowMeta)

    def find_node(self, node_id: str) -> NodeBase | None:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "variables": [v.to_dict() for v in self.variables],
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "meta": self.meta.to_dict(),
        }
        if self.description:
            d["description"] = self.description
        if self.subflows:
            d["subflows"] = {k: v.to_dict() for k, v in self.subflows.items()}
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Flow:
        return cls(
            id=str(d["id"]),
            name=str(d.get("name") or d["id"]),
            version=int(d.get("version", 1)),
            description=d.get("description"),
            variables=[VariableDef.from_dict(v) for v in d.get("variables") or []],
            nodes=[NodeBase.from_dict(n) for n in d.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in d.get("edges") or []],
            subflows={
                k: Subflow.from_dict(v) for k, v in (d.get("subflows") or {}).items()
            },
            meta=FlowMeta.from_dict(d.get("meta")),
        )


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class LogStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"
    WARNING = "warning"


@dataclass
class RunLogEntry:
    step_id: str
    status: LogStatus
    message: str | None = None
    took_ms: float | None = None
    screenshot_base64: str | None = None
    fallback_used: bool = False
    fallback_from: str | None = None
    fallback_to: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"stepId": self.step_id, "status": self.status.value}
        if self.message is not None:
            d["message"] = self.message
        if self.took_ms is not None:
            d["tookMs"] = self.took_ms
        if self.screenshot_base64:
            d["screenshotBase64"] = self.screenshot_base64
        if self.fallback_used:
            d["fallbackUsed"] = True
            d["fallbackFrom"] = self.fallback_from
            d["fallbackTo"] = self.fallback_to
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RunLogEntry:
        return cls(
            step_id=str(d["stepId"]),
            status=LogStatus(d["status"]),
            message=d.get("message"),
            took_ms=d.get("tookMs"),
            screenshot_base64=d.get("screenshotBase64"),
            fallback_used=bool(d.get("fallbackUsed", False)),
            fallback_from=d.get("fallbackFrom"),
            fallback_to=d.get("fallbackTo"),
        )


@dataclass
class RunRecord:
    id: str
    flow_id: str
    started_at: str
    finished_at: str | None = None
    success: bool | None = None
    entries: list[RunLogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "flowId": self.flow_id,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "success": self.success,
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RunRecord:
        return cls(
            id=str(d["id"]),
            flow_id=str(d["flowId"]),
            started_at=d.get("startedAt", ""),
            finished_at=d.get("finishedAt"),
            success=d.get("success"),
            entries=[RunLogEntry.from_dict(e) for e in d.get("entries") or []],
        )


@dataclass
class RunSummary:
    total: int = 0
    success: int = 0
    failed: int = 0
    took_ms: float = 0.0


@dataclass
class RunResult:
    run_id: str
    success: bool
    summary: RunSummary = field(default_factory=RunSummary)
    url: str | None = None
    outputs: dict[str, Any] | None = None
    logs: list[RunLogEntry] = field(default_factory=list)
    failure_screenshot: str | None = None
    paused: bool = False
    paused_at: str | None = None  # node id to resume from
    error: str | None = None
