"""Per-node retry policy with constant or exponential backoff."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


class Backoff(str, Enum):
    NONE = "none"
    EXP = "exp"


@dataclass
class RetryPolicy:
    count: int = 0  # attempts beyond the first
    interval_ms: float = 0
    backoff: Backoff = Backoff.NONE

    @classmethod
    def from_step(cls, step: dict[str, Any]) -> RetryPolicy:
        raw = step.get("retry")
        if not isinstance(raw, dict):
            return cls()
        try:
            count = max(0, int(raw.get("count") or 0))
            interval = max(0.0, float(raw.get("intervalMs") or 0))
        except (TypeError, ValueError):
            return cls()
        backoff = Backoff.EXP if raw.get("backoff") == Backoff.EXP.value else Backoff.NONE
        return cls(count=count, interval_ms=interval, backoff=backoff)

    def delay_ms(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (``attempt`` counts from 0)."""
        if self.interval_ms <= 0:
            return 0
        if self.backoff == Backoff.EXP:
            return self.interval_ms * (2**attempt)
        return self.interval_ms


async def _default_sleep(ms: float) -> None:
    await asyncio.sleep(ms / 1000)


async def with_retry(
    run: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: Callable[[int, Exception], Awaitable[None] | None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = _default_sleep,
) -> T:
    """
    Call ``run`` until it succeeds or ``policy.count`` retries are spent.

    Errors whose ``retryable`` attribute is False are raised immediately.
    The last error is re-raised unchanged.
    """
    attempt = 0
    while True:
        try:
            return await run()
        except Exception as e:
            if attempt >= policy.count or getattr(e, "retryable", True) is False:
                raise
            if on_retry is not None:
                maybe = on_retry(attempt, e)
                if maybe is not None:
                    await maybe
            delay = policy.delay_ms(attempt)
            if delay > 0:
                await sleep(delay)
            attempt += 1
