from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from .protocol import ChatEvent, ChatEventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChatEvent], None]


class EventBus:
    """
    Outward event channel between the orchestrator and whatever renders the transcript.

    Handlers run synchronously in publish order. A failing handler is logged and skipped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: ChatEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s event", event.type.value)


class EventRecorder:
    """Subscriber that keeps every event; handy for the CLI and tests."""

    def __init__(self) -> None:
        self.events: list[ChatEvent] = []

    def __call__(self, event: ChatEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: ChatEventType) -> list[ChatEvent]:
        return [e for e in self.events if e.type is event_type]

    def text(self) -> str:
        return "".join(str(e.data) for e in self.events if e.type is ChatEventType.TEXT and e.data is not None)

    def as_dicts(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.events]
