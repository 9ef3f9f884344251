"""Structured event channel for pipeline progress and log events.

The pipeline publishes; CLIs, UIs and tests subscribe. Handlers run synchronously
on the publishing thread.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    stage: str
    current: int
    total: int
    message: str = ""


@dataclass
class LogEvent:
    level: str
    message: str
    meta: dict[str, Any] = field(default_factory=dict)


Event = ProgressEvent | LogEvent
Handler = Callable[[Event], None]


class EventBus:
    """Fan-out of events to subscribed handlers."""

    def __init__(self):
        self._handlers: list[Handler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register handler. Returns a function that unsubscribes it."""
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.warning("events: handler %r failed: %s", handler, e)
