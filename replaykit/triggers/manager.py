"""
Trigger manager: installs stored triggers and turns their fires into runs.

Interval and once triggers are asyncio timer tasks; url triggers are matched
against top-frame page loads reported by the facade; manual triggers fire
only through :meth:`TriggerManager.fire`. Every fire goes through
``ReplayManager.enqueue``, so triggered runs queue behind any active run.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Any, Awaitable, Callable

import structlog

from replaykit.core.config import EngineSettings, get_settings
from replaykit.core.errors import ReplayError
from replaykit.triggers.store import TriggerStore
from replaykit.triggers.types import TriggerFireContext, TriggerKind, TriggerSpec
from replaykit.triggers.url_match import CompiledUrlRules, compile_rules, matches

logger = structlog.get_logger(__name__)

# Smallest interval period accepted, in minutes
MIN_PERIOD_MINUTES = 1


def validate_trigger(spec: TriggerSpec) -> None:
    """Raise ``ValueError`` for a trigger whose kind-specific fields are unusable."""
    if not spec.id or not spec.flow_id:
        raise ValueError("trigger requires id and flowId")
    if spec.kind == TriggerKind.INTERVAL:
        period = spec.period_minutes
        if not isinstance(period, (int, float)) or not math.isfinite(period):
            raise ValueError("periodMinutes must be a finite number")
        if period < MIN_PERIOD_MINUTES:
            raise ValueError(f"periodMinutes must be >= {MIN_PERIOD_MINUTES}")
    elif spec.kind == TriggerKind.ONCE:
        if not isinstance(spec.when_ms, (int, float)) or not math.isfinite(spec.when_ms):
            raise ValueError("whenMs must be a finite number")


class TriggerManager:
    def __init__(
        self,
        store: TriggerStore,
        replay: Any,
        settings: EngineSettings | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        now_ms: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._replay = replay
        self._settings = settings or get_settings()
        self._sleep = sleep or asyncio.sleep
        self._now_ms = now_ms or (lambda: int(time.time() * 1000))
        self._installed: dict[str, TriggerSpec] = {}
        self._url_rules: dict[str, CompiledUrlRules] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._last_fire: dict[str, int] = {}
        self.started = False
        self.log = logger.bind(component="triggers")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.started = True
        await self.refresh()

    async def stop(self) -> None:
        self.started = False
        await self._uninstall_all()

    async def refresh(self) -> None:
        """Reinstall every enabled trigger from the store."""
        await self._uninstall_all()
        if not self.started:
            return
        for spec in self._store.list():
            if not spec.enabled:
                continue
            try:
                self._install(spec)
            except ValueError as e:
                self.log.warning("trigger_install_failed", trigger_id=spec.id, error=str(e))
        self.log.info("triggers_installed", count=len(self._installed))

    def installed_ids(self) -> list[str]:
        return list(self._installed)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def save(self, spec: TriggerSpec) -> TriggerSpec:
        validate_trigger(spec)
        self._store.save(spec)
        await self._uninstall(spec.id)
        if self.started and spec.enabled:
            self._install(spec)
        return spec

    async def delete(self, trigger_id: str) -> bool:
        await self._uninstall(trigger_id)
        return self._store.delete(trigger_id)

    def list(self) -> list[TriggerSpec]:
        return self._store.list()

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def fire(
        self, trigger_id: str, source_tab_id: int | None = None, source_url: str | None = None
    ) -> str | None:
        """Fire an installed trigger on demand; a dropped fire raises :class:`ReplayError`."""
        return await self._handle_fire(trigger_id, source_tab_id, source_url, raise_on_drop=True)

    async def on_page_loaded(self, tab_id: int, url: str) -> list[str]:
        """Fire every url trigger whose rules match a top-frame load of ``url``."""
        fired = []
        for trigger_id, rules in list(self._url_rules.items()):
            if not matches(rules, url):
                continue
            run_id = await self._safe_fire(trigger_id, tab_id, url)
            if run_id:
                fired.append(run_id)
        return fired

    async def _safe_fire(
        self, trigger_id: str, source_tab_id: int | None = None, source_url: str | None = None
    ) -> str | None:
        try:
            return await self._handle_fire(trigger_id, source_tab_id, source_url)
        except Exception as e:
            # Timer and page-load callbacks have no caller to report to
            self.log.error("trigger_fire_failed", trigger_id=trigger_id, error=str(e))
            return None

    async def _handle_fire(
        self,
        trigger_id: str,
        source_tab_id: int | None,
        source_url: str | None,
        raise_on_drop: bool = False,
    ) -> str | None:
        def drop(reason: str) -> None:
            self.log.debug("trigger_dropped", trigger_id=trigger_id, reason=reason)
            if raise_on_drop:
                raise ReplayError(f"Trigger {trigger_id} dropped: {reason}")

        if not self.started:
            drop("manager not started")
            return None
        spec = self._installed.get(trigger_id)
        if spec is None:
            drop("not installed")
            return None

        now = self._now_ms()
        cooldown = self._settings.trigger_cooldown_ms
        last = self._last_fire.get(trigger_id)
        if cooldown > 0 and last is not None and now - last < cooldown:
            drop(f"cooldown {cooldown}ms")
            return None
        if cooldown > 0:
            self._last_fire[trigger_id] = now

        context = TriggerFireContext(
            trigger_id=spec.id,
            kind=spec.kind,
            fired_at=now,
            source_tab_id=source_tab_id,
            source_url=source_url,
        )
        run_id = await self._replay.enqueue(spec.flow_id, dict(spec.args))
        self.log.info("trigger_fired", run_id=run_id, flow_id=spec.flow_id, **context.to_dict())
        return run_id

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def _install(self, spec: TriggerSpec) -> None:
        validate_trigger(spec)
        self._installed[spec.id] = spec
        if spec.kind == TriggerKind.URL:
            self._url_rules[spec.id] = compile_rules(spec.match)
        elif spec.kind == TriggerKind.INTERVAL:
            self._timers[spec.id] = asyncio.create_task(self._run_interval(spec))
        elif spec.kind == TriggerKind.ONCE:
            self._timers[spec.id] = asyncio.create_task(self._run_once(spec))

    async def _uninstall(self, trigger_id: str) -> None:
        self._installed.pop(trigger_id, None)
        self._url_rules.pop(trigger_id, None)
        self._last_fire.pop(trigger_id, None)
        task = self._timers.pop(trigger_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _uninstall_all(self) -> None:
        for trigger_id in list(self._installed):
            await self._uninstall(trigger_id)

    async def _run_interval(self, spec: TriggerSpec) -> None:
        # First fire comes one full period after install
        period_s = float(spec.period_minutes or MIN_PERIOD_MINUTES) * 60
        while True:
            await self._sleep(period_s)
            await self._safe_fire(spec.id)

    async def _run_once(self, spec: TriggerSpec) -> None:
        delay_ms = max(0, int(spec.when_ms or 0) - self._now_ms())
        await self._sleep(delay_ms / 1000)
        try:
            await self._safe_fire(spec.id)
        finally:
            if self._installed.get(spec.id) is spec:
                self._disable(spec.id)
                await self._uninstall(spec.id)

    def _disable(self, trigger_id: str) -> None:
        stored = self._store.get(trigger_id)
        if stored is None or not stored.enabled:
            return
        stored.enabled = False
        try:
            self._store.save(stored)
        except OSError as e:
            self.log.error("trigger_disable_failed", trigger_id=trigger_id, error=str(e))
