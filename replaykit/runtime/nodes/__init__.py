"""Built-in step handlers, one instance per :class:`NodeType`."""

from __future__ import annotations

from replaykit.runtime.nodes.assertion import AssertNode
from replaykit.runtime.nodes.click import ClickNode, DblClickNode
from replaykit.runtime.nodes.conditional import IfNode
from replaykit.runtime.nodes.drag import DragNode
from replaykit.runtime.nodes.execute_flow import ExecuteFlowNode
from replaykit.runtime.nodes.extract import ExtractNode
from replaykit.runtime.nodes.fill import FillNode
from replaykit.runtime.nodes.http import HttpNode
from replaykit.runtime.nodes.key import KeyNode
from replaykit.runtime.nodes.loops import ForeachNode, LoopElementsNode, WhileNode
from replaykit.runtime.nodes.navigate import NavigateNode
from replaykit.runtime.nodes.page import (
    HandleDownloadNode,
    ScreenshotNode,
    SetAttributeNode,
    SwitchFrameNode,
    TriggerEventNode,
)
from replaykit.runtime.nodes.script import ScriptNode, evaluate_script
from replaykit.runtime.nodes.scroll import ScrollNode
from replaykit.runtime.nodes.tabs import CloseTabNode, OpenTabNode, SwitchTabNode
from replaykit.runtime.nodes.wait import WaitNode
from replaykit.runtime.types import NodeRuntime

_HANDLER_CLASSES = (
    ClickNode,
    DblClickNode,
    FillNode,
    NavigateNode,
    WaitNode,
    AssertNode,
    HttpNode,
    ExtractNode,
    ScriptNode,
    OpenTabNode,
    SwitchTabNode,
    CloseTabNode,
    ScrollNode,
    DragNode,
    KeyNode,
    IfNode,
    ForeachNode,
    WhileNode,
    ExecuteFlowNode,
    HandleDownloadNode,
    ScreenshotNode,
    TriggerEventNode,
    SetAttributeNode,
    SwitchFrameNode,
    LoopElementsNode,
)


def default_handlers() -> dict[str, NodeRuntime]:
    return {cls.type: cls() for cls in _HANDLER_CLASSES}


__all__ = [
    "AssertNode",
    "ClickNode",
    "CloseTabNode",
    "DblClickNode",
    "DragNode",
    "ExecuteFlowNode",
    "ExtractNode",
    "FillNode",
    "ForeachNode",
    "HandleDownloadNode",
    "HttpNode",
    "IfNode",
    "KeyNode",
    "LoopElementsNode",
    "NavigateNode",
    "OpenTabNode",
    "ScreenshotNode",
    "ScriptNode",
    "ScrollNode",
    "SetAttributeNode",
    "SwitchFrameNode",
    "SwitchTabNode",
    "TriggerEventNode",
    "WaitNode",
    "WhileNode",
    "default_handlers",
    "evaluate_script",
]
