"""Cooperative waits: pause-aware sleep, termination racing, navigation and network idle."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, TypeVar

from replaykit.browser.executor import ToolName
from replaykit.core.errors import ExecutorError, RunCanceledError
from replaykit.runtime.types import ExecCtx

T = TypeVar("T")


def _tick_seconds(ctx: ExecCtx) -> float:
    return ctx.services.settings.poll_interval_ms / 1000


async def sleep_cooperative(ctx: ExecCtx, ms: float) -> None:
    """
    Sleep ``ms`` of unpaused time.

    Time spent paused does not count toward the total. Raises
    :class:`RunCanceledError` within one tick of cancellation.
    """
    remaining = max(0.0, ms / 1000)
    tick = _tick_seconds(ctx)
    while remaining > 0:
        ctx.check_terminated()
        if ctx.is_paused():
            await asyncio.sleep(tick)
            continue
        step = min(tick, remaining)
        await asyncio.sleep(step)
        remaining -= step
    ctx.check_terminated()


async def race_termination(ctx: ExecCtx, awaitable: Awaitable[T]) -> T:
    """Await ``awaitable`` but abandon it as soon as the run is canceled."""
    ctx.check_terminated()
    task = asyncio.ensure_future(awaitable)
    tick = _tick_seconds(ctx)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=tick)
            if done:
                return task.result()
            if ctx.is_terminated():
                raise RunCanceledError()
    finally:
        if not task.done():
            task.cancel()


async def wait_for_network_idle(ctx: ExecCtx, total_ms: float, idle_ms: float) -> None:
    result = await race_termination(
        ctx,
        ctx.services.executor.call_tool(
            ToolName.NETWORK_IDLE, {"timeoutMs": max(500, total_ms), "idleMs": max(200, idle_ms)}
        ),
    )
    if result.is_error:
        raise ExecutorError("wait for network idle timed out", tool=ToolName.NETWORK_IDLE.value)


async def wait_for_navigation(
    ctx: ExecCtx, timeout_ms: float | None = None, prev_url: str | None = None
) -> None:
    """
    Block until the active tab finishes a navigation away from ``prev_url``.

    On timeout a short network-idle wait stands in for SPA transitions that
    never fire a load event.
    """
    timeout = max(1000, min(timeout_ms or 15000, 30000))
    started = time.monotonic()
    result = await race_termination(
        ctx,
        ctx.services.executor.call_tool(
            ToolName.WAIT_NAVIGATION, {"timeoutMs": timeout, "prevUrl": prev_url}
        ),
    )
    if not result.is_error:
        return
    try:
        await wait_for_network_idle(ctx, 2000, 800)
    except ExecutorError:
        raise ExecutorError(
            f"navigation timeout after {int((time.monotonic() - started) * 1000)}ms",
            tool=ToolName.WAIT_NAVIGATION.value,
        ) from None
