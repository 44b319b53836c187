from __future__ import annotations

import os
import threading
import time
from typing import Any, Callable, Optional

from cachetools import TTLCache


class InMemoryTTLCache:
    def __init__(
        self,
        ttl: Optional[int] = None,
        max_items: Optional[int] = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        if ttl is None:
            ttl = int(os.getenv("CACHE_TTL_SECONDS", "30") or "30")
        if max_items is None:
            max_items = int(os.getenv("CACHE_MAX_ITEMS", "10000") or "10000")
        ttl = max(0, min(3600, int(ttl)))
        max_items = max(1, min(200_000, int(max_items)))
        self.ttl = ttl
        self._cache = TTLCache(maxsize=max_items, ttl=ttl, timer=timer)
        self._lock = threading.RLock()

    def get(self, key: str) -> Any:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            self._cache[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


_cache = InMemoryTTLCache()


def cache_get(key: str) -> Any:
    return _cache.get(key)


def cache_set(key: str, value: Any) -> None:
    _cache.set(key, value)


def cache_clear() -> None:
    _cache.clear()
