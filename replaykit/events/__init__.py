"""Run events: types, durable store and publish/subscribe bus."""

from replaykit.events.bus import EventsBus
from replaykit.events.store import EventsStore, InMemoryEventsStore, JsonlEventsStore
from replaykit.events.types import (
    EventsFilter,
    EventsQuery,
    RunEvent,
    RunEventInput,
    RunEventType,
)

__all__ = [
    "EventsBus",
    "EventsFilter",
    "EventsQuery",
    "EventsStore",
    "InMemoryEventsStore",
    "JsonlEventsStore",
    "RunEvent",
    "RunEventInput",
    "RunEventType",
]
