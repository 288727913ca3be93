"""Action executor port and its Playwright implementation."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame, Page

if TYPE_CHECKING:
    from replaykit.browser.bridge import PlaywrightBridge

logger = structlog.get_logger(__name__)


class ToolName(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    FILL = "fill"
    KEYBOARD = "keyboard"
    SCROLL = "scroll"
    DRAG = "drag"
    SCREENSHOT = "screenshot"
    FILE_UPLOAD = "file_upload"
    NETWORK_REQUEST = "network_request"
    NETWORK_IDLE = "network_idle"
    WAIT_NAVIGATION = "wait_navigation"
    OPEN_TAB = "open_tab"
    SWITCH_TAB = "switch_tab"
    CLOSE_TABS = "close_tabs"
    HANDLE_DOWNLOAD = "handle_download"
    EVALUATE = "evaluate"
    READ_PAGE = "read_page"


@dataclass
class ToolContent:
    type: str  # "text" | "image"
    text: str | None = None
    data: str | None = None  # base64 payload for images


@dataclass
class ToolResult:
    """Outcome of a tool call. ``is_error`` is the only failure signal."""

    is_error: bool = False
    content: list[ToolContent] = field(default_factory=list)

    @classmethod
    def ok(cls, payload: Any = None) -> ToolResult:
        if payload is None:
            return cls()
        text = payload if isinstance(payload, str) else json.dumps(payload)
        return cls(content=[ToolContent(type="text", text=text)])

    @classmethod
    def error(cls, message: str) -> ToolResult:
        return cls(is_error=True, content=[ToolContent(type="text", text=message)])

    def text(self) -> str | None:
        for c in self.content:
            if c.type == "text" and c.text is not None:
                return c.text
        return None

    def json(self) -> Any:
        """Parse the first text block as JSON; None when absent or not JSON."""
        text = self.text()
        if not text:
            return None
        try:
            return json.loads(text)
        except (json.JSONDecodeError, TypeError):
            return None

    def image(self) -> str | None:
        for c in self.content:
            if c.type == "image" and c.data:
                return c.data
        return None


class ActionExecutor(Protocol):
    """Protocol for browser action executors."""

    async def call_tool(self, name: ToolName, args: dict[str, Any]) -> ToolResult:
        """Invoke one catalog tool with JSON-like args."""
        ...


# JS helpers evaluated in page context
_SCROLL_JS = """
([selector, top, left, mode]) => {
    const opts = { behavior: 'instant' };
    if (top !== null) opts.top = top;
    if (left !== null) opts.left = left;
    if (!selector) { window.scrollTo(opts); return true; }
    const el = document.querySelector(selector);
    if (!el) return false;
    if (mode === 'container' && typeof el.scrollTo === 'function') el.scrollTo(opts);
    else el.scrollIntoView({ behavior: 'instant', block: 'center', inline: 'nearest' });
    return true;
}
"""


class PlaywrightActionExecutor:
    """
    Execute catalog tools using Playwright.

    Tabs, frames and element refs are shared with a :class:`PlaywrightBridge`
    so refs produced during selector resolution can be acted on here.
    """

    def __init__(self, bridge: PlaywrightBridge, default_timeout_ms: int = 10000) -> None:
        self._bridge = bridge
        self._timeout = default_timeout_ms
        self.log = logger.bind(executor="playwright")
        self._handlers = {
            ToolName.NAVIGATE: self._navigate,
            ToolName.CLICK: self._click,
            ToolName.FILL: self._fill,
            ToolName.KEYBOARD: self._keyboard,
            ToolName.SCROLL: self._scroll,
            ToolName.DRAG: self._drag,
            ToolName.SCREENSHOT: self._screenshot,
            ToolName.FILE_UPLOAD: self._file_upload,
            ToolName.NETWORK_REQUEST: self._network_request,
            ToolName.NETWORK_IDLE: self._network_idle,
            ToolName.WAIT_NAVIGATION: self._wait_navigation,
            ToolName.OPEN_TAB: self._open_tab,
            ToolName.SWITCH_TAB: self._switch_tab,
            ToolName.CLOSE_TABS: self._close_tabs,
            ToolName.HANDLE_DOWNLOAD: self._handle_download,
            ToolName.EVALUATE: self._evaluate,
            ToolName.READ_PAGE: self._read_page,
        }

    async def call_tool(self, name: ToolName, args: dict[str, Any]) -> ToolResult:
        try:
            tool = ToolName(name)
        except ValueError:
            return ToolResult.error(f"unknown tool: {name}")
        try:
            return await self._handlers[tool](args or {})
        except (PlaywrightError, ValueError, LookupError, OSError) as e:
            self.log.warning("tool_failed", tool=tool.value, error=str(e))
            return ToolResult.error(str(e))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _page(self) -> Page:
        page = self._bridge.active_page()
        if page is None:
            raise LookupError("Active tab not found")
        return page

    def _frame(self, args: dict) -> Frame:
        page = self._page()
        frame = self._bridge.frame_for(page, args.get("frameId"))
        if frame is None:
            raise LookupError(f"frame {args.get('frameId')} not found")
        return frame

    def _timeout_of(self, args: dict) -> float:
        return float(args.get("timeout") or args.get("timeoutMs") or self._timeout)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _navigate(self, args: dict) -> ToolResult:
        page = self._page()
        if args.get("refresh"):
            await page.reload()
        else:
            url = args.get("url")
            if not url:
                return ToolResult.error("url is required")
            await page.goto(str(url))
        return ToolResult.ok({"url": page.url})

    async def _click(self, args: dict) -> ToolResult:
        timeout = self._timeout_of(args)
        handle = self._bridge.element_for_ref(args.get("ref"))
        double = bool(args.get("double"))
        if handle is not None:
            if double:
                await handle.dblclick(timeout=timeout)
            else:
                await handle.click(timeout=timeout)
        elif args.get("selector"):
            loc = self._frame(args).locator(str(args["selector"])).first
            if double:
                await loc.dblclick(timeout=timeout)
            else:
                await loc.click(timeout=timeout)
        else:
            return ToolResult.error("click requires ref or selector")
        return ToolResult.ok({"clicked": True})

    async def _fill(self, args: dict) -> ToolResult:
        value = "" if args.get("value") is None else str(args["value"])
        handle = self._bridge.element_for_ref(args.get("ref"))
        if handle is not None:
            await handle.fill(value)
        elif args.get("selector"):
            await self._frame(args).locator(str(args["selector"])).first.fill(value)
        else:
            return ToolResult.error("fill requires ref or selector")
        return ToolResult.ok({"filled": True})

    async def _keyboard(self, args: dict) -> ToolResult:
        keys = str(args.get("keys") or "").strip()
        if not keys:
            return ToolResult.error("keys is required")
        page = self._page()
        if args.get("selector"):
            await self._frame(args).locator(str(args["selector"])).first.focus()
        # Space separates a sequence of presses; "+" joins a chord
        for chord in keys.split():
            await page.keyboard.press(chord)
        return ToolResult.ok({"pressed": keys})

    async def _scroll(self, args: dict) -> ToolResult:
        page = self._page()
        selector = args.get("selector")
        top, left = args.get("top"), args.get("left")
        if selector or top is not None or left is not None:
            found = await self._frame(args).evaluate(
                _SCROLL_JS, [selector, top, left, args.get("mode") or "element"]
            )
            if not found:
                return ToolResult.error(f"scroll target not found: {selector}")
        else:
            amount = int(args.get("amount") or 3) * 100
            delta = -amount if args.get("direction") == "up" else amount
            await page.mouse.wheel(0, delta)
        return ToolResult.ok({"scrolled": True})

    async def _drag(self, args: dict) -> ToolResult:
        page = self._page()
        start = await self._bridge.center_for_ref(args.get("startRef")) or args.get("startCoordinates")
        end = await self._bridge.center_for_ref(args.get("ref")) or args.get("coordinates")
        if not start or not end:
            return ToolResult.error("drag requires start and end positions")
        await page.mouse.move(float(start["x"]), float(start["y"]))
        await page.mouse.down()
        await page.mouse.move(float(end["x"]), float(end["y"]), steps=10)
        await page.mouse.up()
        return ToolResult.ok({"dragged": True})

    async def _screenshot(self, args: dict) -> ToolResult:
        page = self._page()
        if args.get("selector"):
            raw = await page.locator(str(args["selector"])).first.screenshot()
        else:
            raw = await page.screenshot(full_page=bool(args.get("fullPage")))
        data = base64.b64encode(raw).decode("ascii")
        result = ToolResult(content=[ToolContent(type="image", data=data)])
        if args.get("storeBase64"):
            result.content.insert(0, ToolContent(type="text", text=json.dumps({"base64Data": data})))
        return result

    async def _file_upload(self, args: dict) -> ToolResult:
        path = args.get("filePath")
        handle = self._bridge.element_for_ref(args.get("ref"))
        if not path or (handle is None and not args.get("selector")):
            return ToolResult.error("file upload requires ref or selector and filePath")
        if handle is not None:
            await handle.set_input_files(str(path))
        else:
            await self._frame(args).locator(str(args["selector"])).first.set_input_files(str(path))
        return ToolResult.ok({"uploaded": str(path)})

    async def _network_request(self, args: dict) -> ToolResult:
        page = self._page()
        url = args.get("url")
        if not url:
            return ToolResult.error("url is required")
        kwargs: dict[str, Any] = {
            "method": str(args.get("method") or "GET").upper(),
            "headers": args.get("headers") or {},
        }
        if args.get("formData"):
            kwargs["multipart"] = args["formData"]
        elif args.get("body") is not None:
            kwargs["data"] = args["body"]
        response = await page.request.fetch(str(url), **kwargs)
        text = await response.text()
        try:
            body: Any = json.loads(text)
        except json.JSONDecodeError:
            body = text
        return ToolResult.ok(
            {
                "status": response.status,
                "statusText": response.status_text,
                "headers": response.headers,
                "body": body,
            }
        )

    async def _network_idle(self, args: dict) -> ToolResult:
        page = self._page()
        await page.wait_for_load_state("networkidle", timeout=self._timeout_of(args))
        return ToolResult.ok({"idle": True})

    async def _wait_navigation(self, args: dict) -> ToolResult:
        page = self._page()
        timeout = self._timeout_of(args)
        prev = args.get("prevUrl")
        if prev and page.url == prev:
            await page.wait_for_url(lambda u: u != prev, timeout=timeout)
        await page.wait_for_load_state("load", timeout=timeout)
        return ToolResult.ok({"url": page.url})

    async def _open_tab(self, args: dict) -> ToolResult:
        tab = await self._bridge.open_tab(args.get("url") or None)
        return ToolResult.ok({"tabId": tab.id, "url": tab.url})

    async def _switch_tab(self, args: dict) -> ToolResult:
        tab_id = int(args["tabId"])
        page = self._bridge.page_for(tab_id)
        if page is None:
            return ToolResult.error(f"tab {tab_id} not found")
        await page.bring_to_front()
        self._bridge.set_active(tab_id)
        return ToolResult.ok({"tabId": tab_id})

    async def _close_tabs(self, args: dict) -> ToolResult:
        targets: list[int] = [int(t) for t in args.get("tabIds") or []]
        if args.get("url"):
            for tab in await self._bridge.list_tabs():
                if str(args["url"]) in tab.url:
                    targets.append(tab.id)
        if not targets and not args.get("url"):
            active = await self._bridge.active_tab()
            if active is not None:
                targets.append(active.id)
        closed = []
        for tab_id in dict.fromkeys(targets):
            if await self._bridge.close_tab(tab_id):
                closed.append(tab_id)
        return ToolResult.ok({"closed": closed})

    async def _handle_download(self, args: dict) -> ToolResult:
        page = self._page()
        needle = args.get("filenameContains")

        def matches(download) -> bool:
            return not needle or str(needle) in download.suggested_filename

        download = await page.wait_for_event(
            "download", predicate=matches, timeout=self._timeout_of(args)
        )
        info: dict[str, Any] = {"filename": download.suggested_filename, "url": download.url}
        if args.get("waitForComplete", True):
            info["path"] = str(await download.path())
        return ToolResult.ok({"download": info})

    async def _evaluate(self, args: dict) -> ToolResult:
        code = str(args.get("code") or "")
        if not code.strip():
            return ToolResult.ok({"result": None})
        frame = self._frame(args)
        if "arg" in args:
            value = await frame.evaluate(code, args["arg"])
        else:
            value = await frame.evaluate(code)
        return ToolResult.ok({"result": value})

    async def _read_page(self, args: dict) -> ToolResult:
        page = self._page()
        return ToolResult.ok({"url": page.url, "title": await page.title()})
