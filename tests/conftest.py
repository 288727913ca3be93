"""Shared doubles: a scriptable browser bridge, a mock executor and run contexts."""

from __future__ import annotations

import inspect
import tempfile
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from replaykit.browser.bridge import FrameInfo, TabInfo
from replaykit.browser.executor import ToolResult
from replaykit.core.config import EngineSettings
from replaykit.runtime.types import ExecCtx, RunToken, RuntimeServices
from replaykit.selectors.engine import SelectorEngine


class FakeBridge:
    """
    In-memory BrowserBridge.

    ``handler(tab_id, message, frame_id)`` decides replies; it may be async.
    Every message is recorded in ``sent``.
    """

    def __init__(self, tabs: list[TabInfo] | None = None) -> None:
        self.tabs = tabs if tabs is not None else [
            TabInfo(id=1, url="https://example.com/", title="Example", active=True)
        ]
        self.frames: dict[int, list[FrameInfo]] = {}
        self.sent: list[tuple[int, dict, int | None]] = []
        self.handler: Callable[..., Any] | None = None

    async def active_tab(self) -> TabInfo | None:
        return next((t for t in self.tabs if t.active), None)

    async def list_tabs(self) -> list[TabInfo]:
        return list(self.tabs)

    async def list_frames(self, tab_id: int) -> list[FrameInfo]:
        return self.frames.get(tab_id, [FrameInfo(frame_id=0)])

    async def send(self, tab_id: int, message: dict, frame_id: int | None = None) -> Any:
        self.sent.append((tab_id, message, frame_id))
        if self.handler is None:
            return {"success": True}
        reply = self.handler(tab_id, message, frame_id)
        if inspect.isawaitable(reply):
            reply = await reply
        return reply

    def actions(self) -> list[str]:
        return [m.get("action") for _, m, _ in self.sent]


def make_handle(box=None) -> AsyncMock:
    handle = AsyncMock()
    handle.bounding_box = AsyncMock(return_value=box or {"x": 10, "y": 20, "width": 100, "height": 40})
    handle.evaluate = AsyncMock(return_value="body > button")
    return handle


def make_page(url="https://example.com/", handle=None) -> MagicMock:
    """Playwright page double; ``page.handlers`` keeps the first callback per event."""
    page = MagicMock()
    page.url = url
    page.title = AsyncMock(return_value="Example")
    page.goto = AsyncMock()
    page.close = AsyncMock()
    frame = MagicMock()
    frame.url = url
    frame.parent_frame = None
    frame.query_selector = AsyncMock(return_value=handle)
    frame.evaluate = AsyncMock(return_value=7)
    page.main_frame = frame
    page.frames = [frame]
    page.handlers = {}
    page.on = MagicMock(side_effect=lambda event, cb: page.handlers.setdefault(event, cb))
    return page


def make_context(*pages) -> MagicMock:
    context = MagicMock()
    context.pages = list(pages)
    context.new_page = AsyncMock(return_value=make_page("about:blank"))
    return context


def make_settings(**overrides) -> EngineSettings:
    values = {
        "store_dir": tempfile.mkdtemp(),
        "capture_failure_screenshots": False,
        "poll_interval_ms": 10,
        "stop_barrier_top_timeout_ms": 200,
        "stop_barrier_subframe_timeout_ms": 100,
        "stop_barrier_grace_ms": 10,
    }
    values.update(overrides)
    return EngineSettings(**values)


def make_executor(result: ToolResult | None = None) -> MagicMock:
    executor = MagicMock()
    executor.call_tool = AsyncMock(return_value=result or ToolResult.ok())
    return executor


def make_services(bridge: FakeBridge | None = None, executor=None, settings=None, flows=None) -> RuntimeServices:
    bridge = bridge or FakeBridge()
    return RuntimeServices(
        executor=executor or make_executor(),
        bridge=bridge,
        selectors=SelectorEngine(bridge),
        settings=settings or make_settings(),
        flows=flows,
    )


def make_ctx(services: RuntimeServices | None = None, vars: dict | None = None, entries: list | None = None) -> ExecCtx:
    sink = entries if entries is not None else []
    return ExecCtx(
        vars=vars if vars is not None else {},
        logger=sink.append,
        services=services or make_services(),
        token=RunToken(),
        run_id="run_test",
    )


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def settings() -> EngineSettings:
    return make_settings()


@pytest.fixture
def services(bridge, settings) -> RuntimeServices:
    return make_services(bridge=bridge, settings=settings)
