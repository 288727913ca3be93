"""Browser adapters: messaging bridge and action executor."""

from replaykit.browser.bridge import (
    BrowserBridge,
    ContentAction,
    FrameInfo,
    PlaywrightBridge,
    TabInfo,
)
from replaykit.browser.executor import (
    ActionExecutor,
    PlaywrightActionExecutor,
    ToolContent,
    ToolName,
    ToolResult,
)

__all__ = [
    "ActionExecutor",
    "BrowserBridge",
    "ContentAction",
    "FrameInfo",
    "PlaywrightActionExecutor",
    "PlaywrightBridge",
    "TabInfo",
    "ToolContent",
    "ToolName",
    "ToolResult",
]
