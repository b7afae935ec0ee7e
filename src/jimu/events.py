"""Observer list for engine events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .models.enums import EventType
from .models.events import Event

_LOGGER = logging.getLogger(__name__)

Listener = Callable[[Event], Any]


class EventBus:
    """Synchronous publish/subscribe for ``Event`` objects.

    Listeners run in registration order on the emitting task. A listener
    that raises is logged and skipped; the rest still run.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = {}

    def on(self, event_type: EventType, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            self.off(event_type, listener)

        return unsubscribe

    def off(self, event_type: EventType, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event_type: EventType, data: Any = None) -> Event:
        event = Event(event_type, data)
        for listener in list(self._listeners.get(event_type, ())):
            try:
                listener(event)
            except Exception:
                _LOGGER.exception("Listener for %s failed", event_type.value)
        return event

    def listener_count(self, event_type: EventType) -> int:
        return len(self._listeners.get(event_type, ()))

    def clear(self) -> None:
        self._listeners.clear()
