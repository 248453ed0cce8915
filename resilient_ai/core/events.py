"""
Synchronous change notification.

Status widgets normally poll; callers that prefer to be told about usage or
credential changes can subscribe here. Listeners run inline, right after the
write they describe, on the thread that made it.
"""

from threading import Lock
from typing import Any, Callable, List

from loguru import logger

Listener = Callable[[str, Any], None]


class ChangeNotifier:
    """Fan-out of ``(topic, payload)`` events to registered listeners."""

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener and return a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def notify(self, topic: str, payload: Any = None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(topic, payload)
            except Exception as e:
                # A broken status widget must not fail the write it observes
                logger.error(f"Change listener failed for '{topic}': {e}")
