"""
Pull lifecycle notifications
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
import logging
import threading

logger = logging.getLogger(__name__)

PULL_START = "pull-start"
PULL_PROGRESS = "pull-progress"
PULL_CANCELLED = "pull-cancelled"
PULL_ERROR = "pull-error"
PULL_COMPLETE = "pull-complete"

# Subscribe to this name to receive every event
ALL_EVENTS = "*"

EventCallback = Callable[[str, dict[str, Any]], None]


class NotificationSink(ABC):
    """
    Anything that accepts a named event with a payload.

    Emission is fire-and-forget: implementations must not raise back
    into the pull that emitted the event.
    """

    @abstractmethod
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        pass


class EventBus(NotificationSink):
    """
    In-process publish/subscribe sink.

    Callbacks receive (event_name, payload) and run synchronously in the
    emitting task, so events of one pull reach a subscriber in the order
    they were emitted. A callback that raises is logged and skipped.

    An optional prefix is prepended to the event name seen by
    subscribers (the desktop shell used "models:").
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self._subscribers: dict[str, list[EventCallback]] = {}
        self._lock = threading.Lock()

    def subscribe(self, callback: EventCallback, event: str = ALL_EVENTS) -> Callable[[], None]:
        """Register callback for event (default: all events). Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(event, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(event, ()))
            callbacks += self._subscribers.get(ALL_EVENTS, ())

        name = f"{self.prefix}{event}"
        for callback in callbacks:
            try:
                callback(name, payload)
            except Exception:
                logger.exception("Subscriber %r failed handling %s", callback, name)


class RecordingSink(NotificationSink):
    """Keeps every emitted event in order. Handy for tests and scripting."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]

    def last(self) -> Optional[tuple[str, dict[str, Any]]]:
        return self.events[-1] if self.events else None
