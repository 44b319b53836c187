from __future__ import annotations

import logging
import threading
from typing import Any, Callable

log = logging.getLogger(__name__)

Subscriber = Callable[[str, dict[str, Any]], None]


class EventChannel:
    """In-process fan-out. A failing subscriber is logged and never reaches the caller."""

    def __init__(self, name: str):
        self.name = name
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, fn: Subscriber) -> Subscriber:
        with self._lock:
            if fn not in self._subscribers:
                self._subscribers.append(fn)
        return fn

    def unsubscribe(self, fn: Subscriber) -> None:
        with self._lock:
            if fn in self._subscribers:
                self._subscribers.remove(fn)

    def clear(self) -> None:
        with self._lock:
            self._subscribers = []

    def emit(self, event: str, payload: dict[str, Any]) -> int:
        with self._lock:
            subs = list(self._subscribers)
        delivered = 0
        for fn in subs:
            try:
                fn(event, payload)
                delivered += 1
            except Exception:
                log.exception("%s subscriber failed for event %s", self.name, event)
        if not subs:
            log.info("%s event %s (no subscribers)", self.name, event)
        return delivered


realtime = EventChannel("realtime")


def broadcast(event: str, payload: dict[str, Any]) -> int:
    return realtime.emit(event, payload)
