# Overview: Keyed cache with per-entry TTL for computed report values.

from __future__ import annotations

import threading
import time
from typing import Any, Callable


class TTLCache:
    """
    Thread-safe keyed cache; entries expire `ttl` seconds after being set.

    `clock` is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default=None):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: str, value) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl, value)

    def get_or_set(self, key: str, factory: Callable[[], Any]):
        # factory runs outside the lock; two callers may both compute on a miss
        missing = object()
        value = self.get(key, missing)
        if value is missing:
            value = factory()
            self.set(key, value)
        return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
