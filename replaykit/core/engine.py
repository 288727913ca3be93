"""ReplayKit: wires stores, browser adapters, replay and recording together."""

from __future__ import annotations

import asyncio
import os
from typing import Any

import structlog
from playwright.async_api import BrowserContext, Frame, Page

from replaykit.browser.bridge import PlaywrightBridge
from replaykit.browser.executor import PlaywrightActionExecutor
from replaykit.core.config import EngineSettings, get_settings
from replaykit.core.logging import configure_logging
from replaykit.events.bus import EventsBus
from replaykit.events.store import JsonlEventsStore
from replaykit.events.types import Listener, RunEvent, Unsubscribe
from replaykit.flow.store import FlowStore
from replaykit.flow.types import Flow, RunResult
from replaykit.recording.recorder import ControlResult, RecorderManager
from replaykit.replay.manager import ReplayManager
from replaykit.runtime.registry import NodeRegistry
from replaykit.runtime.types import RuntimeServices
from replaykit.selectors.engine import SelectorEngine
from replaykit.triggers.manager import TriggerManager
from replaykit.triggers.store import TriggerStore
from replaykit.triggers.types import TriggerSpec

logger = structlog.get_logger(__name__)

# Name of the page binding the in-page recorder calls with captured events
RECORDER_BINDING = "__replaykitEmit"


class ReplayKit:
    """
    Record and replay browser flows on a Playwright ``BrowserContext``.

    Usage:
        kit = ReplayKit(context)
        await kit.attach()
        await kit.start_recording({"name": "login"})
        ...
        result = await kit.stop_recording()
        run = await kit.run(result.flow.id, {"username": "demo"})
    """

    def __init__(
        self,
        context: BrowserContext,
        *,
        settings: EngineSettings | None = None,
        store_dir: str | None = None,
        setup_logging: bool = False,
    ) -> None:
        self.settings = settings or get_settings()
        if setup_logging:
            configure_logging(self.settings.log_level, self.settings.log_json)
        root = store_dir or self.settings.store_dir

        self._context = context
        self.flows = FlowStore(root)
        self.events = EventsBus(JsonlEventsStore(os.path.join(root, "events")))
        self.bridge = PlaywrightBridge(context)
        self.executor = PlaywrightActionExecutor(self.bridge)
        self.selectors = SelectorEngine(self.bridge)
        self.registry = NodeRegistry()
        self.services = RuntimeServices(
            executor=self.executor,
            bridge=self.bridge,
            selectors=self.selectors,
            settings=self.settings,
            flows=self.flows,
        )
        self.replay = ReplayManager(
            self.flows, self.services, self.events, self.registry, self.settings
        )
        self.recorder = RecorderManager(self.bridge, self.flows, settings=self.settings)
        self.triggers = TriggerManager(TriggerStore(root), self.replay, self.settings)
        self._attached = False
        self._background: set[asyncio.Task] = set()
        self.log = logger.bind(component="replaykit", store_dir=root)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def attach(self) -> None:
        """Start listening to the context's pages and the in-page recorder channel."""
        if self._attached:
            return
        self.recorder.init()
        await self._context.expose_binding(RECORDER_BINDING, self._on_recorder_event)
        for page in self._context.pages:
            self._watch_page(page)
        self._context.on("page", self._on_new_page)
        self._attached = True
        await self.triggers.start()
        self.log.info("attached", pages=len(self._context.pages))

    async def close(self) -> None:
        await self.triggers.stop()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self.recorder.dispose()
        self._attached = False

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def start_recording(self, meta: dict[str, Any] | None = None) -> ControlResult:
        return await self.recorder.start(meta)

    async def stop_recording(self) -> ControlResult:
        return await self.recorder.stop()

    async def pause_recording(self) -> ControlResult:
        return await self.recorder.pause()

    async def resume_recording(self) -> ControlResult:
        return await self.recorder.resume()

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def save_flow(self, flow: Flow) -> Flow:
        return self.flows.save(flow)

    def get_flow(self, flow_id: str) -> Flow | None:
        return self.flows.get(flow_id)

    def list_flows(self) -> list[dict[str, Any]]:
        return self.flows.list()

    async def enqueue(self, flow_id: str, args: dict[str, Any] | None = None) -> str:
        return await self.replay.enqueue(flow_id, args)

    async def run(self, flow_id: str, args: dict[str, Any] | None = None) -> RunResult:
        return await self.replay.run(flow_id, args)

    async def pause(self, run_id: str) -> None:
        await self.replay.pause(run_id)

    async def resume(self, run_id: str) -> None:
        await self.replay.resume(run_id)

    async def cancel(self, run_id: str) -> None:
        await self.replay.cancel(run_id)

    def subscribe(self, listener: Listener, run_id: str | None = None) -> Unsubscribe:
        return self.replay.subscribe(listener, run_id)

    async def list_events(
        self, run_id: str, from_seq: int | None = None, limit: int | None = None
    ) -> list[RunEvent]:
        return await self.replay.list_events(run_id, from_seq, limit)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def save_trigger(self, spec: TriggerSpec) -> TriggerSpec:
        return await self.triggers.save(spec)

    async def delete_trigger(self, trigger_id: str) -> bool:
        return await self.triggers.delete(trigger_id)

    def list_triggers(self) -> list[TriggerSpec]:
        return self.triggers.list()

    async def fire_trigger(self, trigger_id: str) -> str | None:
        return await self.triggers.fire(trigger_id)

    # ------------------------------------------------------------------
    # Browser wiring
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _on_recorder_event(self, source: dict[str, Any], message: dict[str, Any]) -> dict[str, Any]:
        return await self.recorder.handle_content_message(message)

    def _on_new_page(self, page: Page) -> None:
        tab_id = self._watch_page(page)
        self._spawn(self.recorder.on_tab_activated(tab_id))

    def _watch_page(self, page: Page) -> int:
        tab_id = self.bridge.tab_id_for(page)

        def on_navigated(frame: Frame) -> None:
            if frame is not page.main_frame:
                return
            # Playwright does not report the transition type; treat commits as link follow-ups
            self._spawn(self.recorder.on_navigation_committed(tab_id, 0, frame.url, "link"))

        page.on("framenavigated", on_navigated)
        page.on("load", lambda _p: self._spawn(self.triggers.on_page_loaded(tab_id, page.url)))
        page.on("close", lambda _p: self.recorder.on_tab_removed(tab_id))
        return tab_id
