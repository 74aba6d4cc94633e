"""Event sinks: where the core hands events to notification delivery."""

from __future__ import annotations

import logging
from typing import List, Protocol

from matchday.events.event import Event

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    async def emit(self, event: Event) -> None: ...


class LoggingEventSink:
    """Writes events to the ``event`` logger at the EVENT level."""

    def __init__(self, event_logger: logging.Logger | None = None):
        self.logger = event_logger or logging.getLogger("event")

    async def emit(self, event: Event) -> None:
        emit = getattr(self.logger, "event", None)
        if emit is not None:
            emit(Event.canonical_json(event.to_dict()))
        else:
            self.logger.info(Event.canonical_json(event.to_dict()))


class MemoryEventSink:
    """Keeps emitted events in order; de-duplicates on event_id."""

    def __init__(self) -> None:
        self.events: List[Event] = []
        self._seen: set[str] = set()

    async def emit(self, event: Event) -> None:
        if event.event_id in self._seen:
            logger.debug("Duplicate event %s ignored", event.event_id)
            return
        self._seen.add(event.event_id)
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]


__all__ = ["EventSink", "LoggingEventSink", "MemoryEventSink"]
