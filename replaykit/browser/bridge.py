"""Browser messaging boundary: tabs, frames and per-frame content RPC."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from playwright.async_api import BrowserContext, ElementHandle, Frame, Page
from playwright.async_api import Error as PlaywrightError

logger = structlog.get_logger(__name__)

COMPOSITE_SEPARATOR = "|>"

# Live element refs kept per tab; older ones are disposed first
MAX_REFS_PER_TAB = 500


class ContentAction:
    """Message ``action`` values understood by the per-frame content side."""

    ENSURE_REF_FOR_SELECTOR = "ensureRefForSelector"
    RESOLVE_REF = "resolveRef"
    GET_ATTRIBUTE_FOR_SELECTOR = "getAttributeForSelector"
    FOCUS_BY_REF = "focusByRef"
    SCROLL_INTO_VIEW = "scrollIntoViewByRef"
    WAIT_FOR_SELECTOR = "waitForSelector"
    WAIT_FOR_TEXT = "waitForText"
    RECORDER_CONTROL = "rr_recorder_control"
    TIMELINE_UPDATE = "rr_timeline_update"


@dataclass
class TabInfo:
    id: int
    url: str = ""
    title: str = ""
    active: bool = False


@dataclass
class FrameInfo:
    frame_id: int  # 0 is always the top frame
    url: str = ""
    parent_frame_id: int | None = None


class BrowserBridge(Protocol):
    """Protocol for the browser messaging transport."""

    async def active_tab(self) -> TabInfo | None:
        ...

    async def list_tabs(self) -> list[TabInfo]:
        ...

    async def list_frames(self, tab_id: int) -> list[FrameInfo]:
        ...

    async def send(self, tab_id: int, message: dict[str, Any], frame_id: int | None = None) -> Any:
        """Deliver ``message`` to the content side of one frame and return its reply."""
        ...


# Stable-ish CSS path for an element, used when a ref must be turned back into a selector
_CSS_PATH_JS = """
(node) => {
    try {
        if (node.id) {
            const idSel = '#' + CSS.escape(node.id);
            if (document.querySelectorAll(idSel).length === 1) return idSel;
        }
    } catch (e) {}
    let path = '';
    let current = node;
    while (current && current.tagName !== 'BODY' && current.tagName !== 'HTML') {
        let part = current.tagName.toLowerCase();
        const parent = current.parentElement;
        if (parent) {
            const siblings = Array.from(parent.children).filter(c => c.tagName === current.tagName);
            if (siblings.length > 1) part += ':nth-of-type(' + (siblings.indexOf(current) + 1) + ')';
        }
        path = path ? part + ' > ' + path : part;
        current = parent;
    }
    return path ? 'body > ' + path : 'body';
}
"""

_RECORDER_CONTROL_JS = """
([cmd, meta]) => {
    const rec = window.__replaykitRecorder;
    if (rec && typeof rec.control === 'function') rec.control(cmd, meta);
    return true;
}
"""

_TIMELINE_JS = """
(steps) => {
    const rec = window.__replaykitRecorder;
    if (rec && typeof rec.timeline === 'function') rec.timeline(steps);
    return true;
}
"""


class PlaywrightBridge:
    """
    :class:`BrowserBridge` over a Playwright ``BrowserContext``.

    Pages get small integer tab ids in creation order. A frame id is the
    frame's index in ``page.frames`` (0 is the main frame). Element refs are
    session-scoped handles kept in memory; they die with their page.
    """

    def __init__(self, context: BrowserContext, max_refs: int = MAX_REFS_PER_TAB) -> None:
        self._context = context
        self._max_refs = max_refs
        self._pages: dict[int, Page] = {}
        self._tab_seq = itertools.count(1)
        self._ref_seq = itertools.count(1)
        self._refs: dict[str, tuple[int, ElementHandle]] = {}
        self._active: int | None = None
        self.log = logger.bind(component="playwright_bridge")
        for page in context.pages:
            self._register(page)
        context.on("page", self._register)

    # ------------------------------------------------------------------
    # Tab bookkeeping
    # ------------------------------------------------------------------

    def _register(self, page: Page) -> int:
        for tab_id, known in self._pages.items():
            if known is page:
                return tab_id
        tab_id = next(self._tab_seq)
        self._pages[tab_id] = page
        self._active = tab_id
        page.on("close", lambda _p: self._forget(tab_id))
        return tab_id

    def _forget(self, tab_id: int) -> None:
        self._pages.pop(tab_id, None)
        self._refs = {r: v for r, v in self._refs.items() if v[0] != tab_id}
        if self._active == tab_id:
            self._active = next(reversed(self._pages), None) if self._pages else None

    def tab_id_for(self, page: Page) -> int:
        return self._register(page)

    def page_for(self, tab_id: int) -> Page | None:
        return self._pages.get(tab_id)

    def set_active(self, tab_id: int) -> None:
        if tab_id in self._pages:
            self._active = tab_id

    def active_page(self) -> Page | None:
        return self._pages.get(self._active) if self._active is not None else None

    @staticmethod
    def frame_for(page: Page, frame_id: int | None) -> Frame | None:
        if not frame_id:
            return page.main_frame
        frames = page.frames
        return frames[frame_id] if 0 <= frame_id < len(frames) else None

    async def open_tab(self, url: str | None = None) -> TabInfo:
        page = await self._context.new_page()
        tab_id = self._register(page)
        if url:
            await page.goto(url)
        self._active = tab_id
        return TabInfo(id=tab_id, url=page.url, title=await self._title(page), active=True)

    async def close_tab(self, tab_id: int) -> bool:
        page = self._pages.get(tab_id)
        if page is None:
            return False
        await page.close()
        self._forget(tab_id)
        return True

    # ------------------------------------------------------------------
    # Refs
    # ------------------------------------------------------------------

    async def _store_ref(self, tab_id: int, handle: ElementHandle) -> str:
        ref = f"ref_{next(self._ref_seq)}"
        self._refs[ref] = (tab_id, handle)
        owned = [r for r, (owner, _h) in self._refs.items() if owner == tab_id]
        for stale in owned[: max(0, len(owned) - self._max_refs)]:
            _owner, old = self._refs.pop(stale)
            try:
                await old.dispose()
            except PlaywrightError as e:
                self.log.debug("ref_dispose_failed", ref=stale, error=str(e))
        return ref

    def element_for_ref(self, ref: str | None) -> ElementHandle | None:
        if not ref:
            return None
        entry = self._refs.get(ref)
        return entry[1] if entry else None

    async def center_for_ref(self, ref: str | None) -> dict[str, float] | None:
        handle = self.element_for_ref(ref)
        if handle is None:
            return None
        box = await handle.bounding_box()
        if not box:
            return None
        return {"x": box["x"] + box["width"] / 2, "y": box["y"] + box["height"] / 2}

    # ------------------------------------------------------------------
    # BrowserBridge protocol
    # ------------------------------------------------------------------

    @staticmethod
    async def _title(page: Page) -> str:
        try:
            return await page.title()
        except PlaywrightError:
            # Page closed between listing and reading
            return ""

    async def active_tab(self) -> TabInfo | None:
        page = self.active_page()
        if page is None:
            return None
        return TabInfo(id=self._active, url=page.url, title=await self._title(page), active=True)

    async def list_tabs(self) -> list[TabInfo]:
        tabs = []
        for tab_id, page in list(self._pages.items()):
            tabs.append(
                TabInfo(id=tab_id, url=page.url, title=await self._title(page), active=tab_id == self._active)
            )
        return tabs

    async def list_frames(self, tab_id: int) -> list[FrameInfo]:
        page = self._pages.get(tab_id)
        if page is None:
            return []
        frames = page.frames
        index = {id(f): i for i, f in enumerate(frames)}
        return [
            FrameInfo(
                frame_id=i,
                url=f.url,
                parent_frame_id=index.get(id(f.parent_frame)) if f.parent_frame else None,
            )
            for i, f in enumerate(frames)
        ]

    async def send(self, tab_id: int, message: dict[str, Any], frame_id: int | None = None) -> Any:
        page = self._pages.get(tab_id)
        if page is None:
            raise LookupError(f"tab {tab_id} not found")
        frame = self.frame_for(page, frame_id)
        if frame is None:
            return {"success": False, "error": f"frame {frame_id} not found"}

        action = message.get("action")
        try:
            if action == ContentAction.ENSURE_REF_FOR_SELECTOR:
                return await self._ensure_ref(tab_id, page, frame, message)
            if action == ContentAction.RESOLVE_REF:
                return await self._resolve_ref(message.get("ref"))
            if action == ContentAction.GET_ATTRIBUTE_FOR_SELECTOR:
                return await self._get_attribute(frame, message)
            if action == ContentAction.FOCUS_BY_REF:
                return await self._with_ref(message.get("ref"), "focus")
            if action == ContentAction.SCROLL_INTO_VIEW:
                return await self._with_ref(message.get("ref"), "scroll_into_view_if_needed")
            if action == ContentAction.WAIT_FOR_SELECTOR:
                state = "visible" if message.get("visible", True) else "attached"
                await frame.wait_for_selector(
                    str(message["selector"]), state=state, timeout=float(message.get("timeout", 10000))
                )
                return {"success": True}
            if action == ContentAction.WAIT_FOR_TEXT:
                state = "visible" if message.get("appear", True) else "hidden"
                await frame.get_by_text(str(message["text"])).first.wait_for(
                    state=state, timeout=float(message.get("timeout", 10000))
                )
                return {"success": True}
            if action == ContentAction.RECORDER_CONTROL:
                await frame.evaluate(_RECORDER_CONTROL_JS, [message.get("cmd"), message.get("meta")])
                return {"ack": True} if message.get("requireAck") else {"success": True}
            if action == ContentAction.TIMELINE_UPDATE:
                await frame.evaluate(_TIMELINE_JS, message.get("steps") or [])
                return {"success": True}
        except PlaywrightError as e:
            # Timeouts and detached frames surface as a failed reply
            return {"success": False, "error": str(e)}
        raise ValueError(f"unsupported content action: {action}")

    # ------------------------------------------------------------------
    # Content actions
    # ------------------------------------------------------------------

    async def _describe(self, tab_id: int, handle: ElementHandle, href: str | None = None) -> dict:
        ref = await self._store_ref(tab_id, handle)
        box = await handle.bounding_box()
        center = (
            {"x": box["x"] + box["width"] / 2, "y": box["y"] + box["height"] / 2}
            if box
            else {"x": 0, "y": 0}
        )
        out = {"success": True, "ref": ref, "center": center}
        if href is not None:
            out["href"] = href
        return out

    async def _ensure_ref(self, tab_id: int, page: Page, frame: Frame, msg: dict) -> dict:
        if msg.get("useText"):
            text = str(msg.get("text") or "")
            tag = str(msg.get("tagName") or "").strip().lower()
            if tag:
                locator = frame.locator(tag).filter(has_text=text).first
            else:
                locator = frame.get_by_text(text).first
            if await locator.count() == 0:
                return {"success": False}
            return await self._describe(tab_id, await locator.element_handle())

        selector = str(msg.get("selector") or "").strip()
        if not selector:
            return {"success": False}

        if COMPOSITE_SEPARATOR in selector:
            # Walk iframe hops starting at the top frame
            parts = [p.strip() for p in selector.split(COMPOSITE_SEPARATOR)]
            current = page.main_frame
            for hop in parts[:-1]:
                iframe = await current.query_selector(hop)
                child = await iframe.content_frame() if iframe else None
                if child is None:
                    return {"success": False}
                current = child
            handle = await current.query_selector(parts[-1])
            if handle is None:
                return {"success": False}
            return await self._describe(tab_id, handle, href=current.url)

        query = f"xpath={selector}" if msg.get("isXPath") else selector
        handle = await frame.query_selector(query)
        if handle is None:
            return {"success": False}
        return await self._describe(tab_id, handle)

    async def _resolve_ref(self, ref: str | None) -> dict:
        handle = self.element_for_ref(ref)
        if handle is None:
            return {"success": False}
        try:
            box = await handle.bounding_box()
            selector = await handle.evaluate(_CSS_PATH_JS)
        except PlaywrightError:
            # Detached from the DOM
            return {"success": False}
        if not box:
            return {"success": True, "selector": selector, "rect": None, "center": None}
        return {
            "success": True,
            "selector": selector,
            "rect": {"x": box["x"], "y": box["y"], "width": box["width"], "height": box["height"]},
            "center": {"x": box["x"] + box["width"] / 2, "y": box["y"] + box["height"] / 2},
        }

    async def _get_attribute(self, frame: Frame, msg: dict) -> dict:
        handle = self.element_for_ref(msg.get("ref"))
        if handle is None and msg.get("selector"):
            handle = await frame.query_selector(str(msg["selector"]))
        if handle is None:
            return {"success": False}
        name = str(msg.get("name") or "")
        if name in ("text", "textContent"):
            value = (await handle.text_content() or "").strip()
        else:
            value = await handle.get_attribute(name)
        return {"success": True, "value": value}

    async def _with_ref(self, ref: str | None, method: str) -> dict:
        handle = self.element_for_ref(ref)
        if handle is None:
            return {"success": False}
        await getattr(handle, method)()
        return {"success": True}
