"""Publish/subscribe over the durable events store."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from replaykit.events.store import EventsStore
from replaykit.events.types import (
    EventsFilter,
    EventsQuery,
    Listener,
    RunEvent,
    RunEventInput,
    Unsubscribe,
)

logger = structlog.get_logger(__name__)


@dataclass(eq=False)
class _Subscription:
    listener: Listener
    filter: EventsFilter | None


class EventsBus:
    """
    Events bus backed by an :class:`EventsStore`.

    ``seq`` allocation happens inside the store; listeners are notified only
    after the append has committed.
    """

    def __init__(self, store: EventsStore) -> None:
        self._store = store
        self._subs: list[_Subscription] = []
        self.log = logger.bind(component="events_bus")

    def subscribe(self, listener: Listener, filter: EventsFilter | None = None) -> Unsubscribe:
        sub = _Subscription(listener, filter)
        self._subs.append(sub)

        def unsubscribe() -> None:
            if sub in self._subs:
                self._subs.remove(sub)

        return unsubscribe

    async def append(self, event: RunEventInput) -> RunEvent:
        committed = await self._store.append(event)
        self._broadcast(committed)
        return committed

    async def list(self, query: EventsQuery) -> list[RunEvent]:
        return await self._store.list(query.run_id, query.from_seq, query.limit)

    def _broadcast(self, event: RunEvent) -> None:
        # Snapshot so listeners may unsubscribe during delivery
        for sub in list(self._subs):
            if sub.filter is not None and not sub.filter.matches(event):
                continue
            try:
                sub.listener(event)
            except Exception as exc:
                self.log.error(
                    "listener_failed",
                    run_id=event.run_id,
                    seq=event.seq,
                    event_type=event.type.value,
                    error=str(exc),
                )
