from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from fieldsync.domain.models import EventEnvelope

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventEnvelope], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(self, event: EventEnvelope) -> None:
        logger.debug("event %s %s", event.event_type, event.payload)
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                # Handler errors never reach the publisher.
                logger.exception("event handler failed for %s", event.event_type)

    def publish_dict(self, event_type: str, payload: dict[str, Any]) -> EventEnvelope:
        event = EventEnvelope(event_type=event_type, payload=payload)
        self.publish(event)
        return event


event_bus = EventBus()
