"""Unit tests for PlaywrightBridge / PlaywrightActionExecutor (AsyncMock pages, no browser)."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from conftest import make_context, make_handle, make_page
from playwright.async_api import Error as PlaywrightError

from replaykit.browser.bridge import ContentAction, PlaywrightBridge
from replaykit.browser.executor import PlaywrightActionExecutor, ToolName


class TestPlaywrightBridge:
    async def test_pages_get_tab_ids_in_order(self):
        bridge = PlaywrightBridge(make_context(make_page("https://a/"), make_page("https://b/")))
        tabs = await bridge.list_tabs()
        assert [(t.id, t.url) for t in tabs] == [(1, "https://a/"), (2, "https://b/")]
        active = await bridge.active_tab()
        assert active.id == 2

    async def test_closed_page_is_forgotten(self):
        first, second = make_page("https://a/"), make_page("https://b/")
        bridge = PlaywrightBridge(make_context(first, second))
        second.handlers["close"](second)
        assert [t.id for t in await bridge.list_tabs()] == [1]
        assert (await bridge.active_tab()).id == 1

    async def test_send_to_unknown_tab_raises(self):
        bridge = PlaywrightBridge(make_context(make_page()))
        with pytest.raises(LookupError, match="tab 9"):
            await bridge.send(9, {"action": ContentAction.RESOLVE_REF, "ref": "x"})

    async def test_ensure_ref_then_resolve(self):
        handle = make_handle()
        bridge = PlaywrightBridge(make_context(make_page(handle=handle)))
        reply = await bridge.send(1, {"action": ContentAction.ENSURE_REF_FOR_SELECTOR, "selector": "#go"})
        assert reply["success"] is True
        assert reply["center"] == {"x": 60, "y": 40}
        resolved = await bridge.send(1, {"action": ContentAction.RESOLVE_REF, "ref": reply["ref"]})
        assert resolved["rect"]["width"] == 100
        assert resolved["selector"] == "body > button"

    async def test_ensure_ref_miss(self):
        bridge = PlaywrightBridge(make_context(make_page(handle=None)))
        reply = await bridge.send(1, {"action": ContentAction.ENSURE_REF_FOR_SELECTOR, "selector": "#nope"})
        assert reply == {"success": False}

    async def test_missing_frame_is_a_failed_reply(self):
        bridge = PlaywrightBridge(make_context(make_page()))
        reply = await bridge.send(1, {"action": ContentAction.RESOLVE_REF}, frame_id=4)
        assert reply["success"] is False

    async def test_stop_control_acks(self):
        page = make_page()
        bridge = PlaywrightBridge(make_context(page))
        reply = await bridge.send(
            1, {"action": ContentAction.RECORDER_CONTROL, "cmd": "stop", "requireAck": True}, frame_id=0
        )
        assert reply == {"ack": True}
        page.main_frame.evaluate.assert_awaited_once()


class TestPlaywrightActionExecutor:
    def setup_method(self):
        self.handle = make_handle()
        self.page = make_page(handle=self.handle)
        self.bridge = PlaywrightBridge(make_context(self.page))
        self.executor = PlaywrightActionExecutor(self.bridge)

    async def test_navigate(self):
        result = await self.executor.call_tool(ToolName.NAVIGATE, {"url": "https://example.com/x"})
        assert result.is_error is False
        self.page.goto.assert_awaited_once_with("https://example.com/x")

    async def test_navigate_requires_url(self):
        result = await self.executor.call_tool(ToolName.NAVIGATE, {})
        assert result.is_error is True
        assert result.text() == "url is required"

    async def test_click_by_ref(self):
        reply = await self.bridge.send(1, {"action": ContentAction.ENSURE_REF_FOR_SELECTOR, "selector": "#go"})
        result = await self.executor.call_tool(ToolName.CLICK, {"ref": reply["ref"], "timeout": 3000})
        assert result.is_error is False
        self.handle.click.assert_awaited_once_with(timeout=3000.0)

    async def test_click_without_target(self):
        result = await self.executor.call_tool(ToolName.CLICK, {})
        assert result.is_error is True

    async def test_evaluate_returns_result(self):
        result = await self.executor.call_tool(ToolName.EVALUATE, {"code": "3 + 4"})
        assert result.json() == {"result": 7}

    async def test_file_upload_by_ref(self):
        reply = await self.bridge.send(1, {"action": ContentAction.ENSURE_REF_FOR_SELECTOR, "selector": "#up"})
        result = await self.executor.call_tool(ToolName.FILE_UPLOAD, {"ref": reply["ref"], "filePath": "/tmp/a.txt"})
        assert result.is_error is False
        self.handle.set_input_files.assert_awaited_once_with("/tmp/a.txt")

    async def test_file_upload_requires_path(self):
        result = await self.executor.call_tool(ToolName.FILE_UPLOAD, {"selector": "#up"})
        assert result.is_error is True

    async def test_unknown_tool(self):
        result = await self.executor.call_tool("teleport", {})
        assert result.is_error is True

    async def test_no_active_page_is_an_error_result(self):
        executor = PlaywrightActionExecutor(PlaywrightBridge(make_context()))
        result = await executor.call_tool(ToolName.READ_PAGE, {})
        assert result.is_error is True
        assert result.text() == "Active tab not found"


class TestPlaywrightBridgeLifetimes:
    async def test_refs_are_bounded_per_tab(self):
        handles = [make_handle() for _ in range(5)]
        page = make_page()
        page.main_frame.query_selector = AsyncMock(side_effect=handles)
        bridge = PlaywrightBridge(make_context(page), max_refs=2)

        refs = []
        for _ in handles:
            reply = await bridge.send(1, {"action": ContentAction.ENSURE_REF_FOR_SELECTOR, "selector": "#go"})
            refs.append(reply["ref"])

        assert len(bridge._refs) == 2
        assert bridge.element_for_ref(refs[-1]) is handles[-1]
        stale = await bridge.send(1, {"action": ContentAction.RESOLVE_REF, "ref": refs[0]})
        assert stale == {"success": False}
        for handle in handles[:3]:
            handle.dispose.assert_awaited_once()
        handles[-1].dispose.assert_not_awaited()

    async def test_closed_page_title_reads_empty(self):
        page = make_page("https://a/")
        page.title = AsyncMock(side_effect=PlaywrightError("Target page, context or browser has been closed"))
        bridge = PlaywrightBridge(make_context(page))
        tabs = await bridge.list_tabs()
        assert [(t.id, t.title) for t in tabs] == [(1, "")]
        assert (await bridge.active_tab()).title == ""
