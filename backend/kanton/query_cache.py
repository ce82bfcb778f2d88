from __future__ import annotations

import threading
import time
from typing import Any, Callable, Hashable

QueryKey = tuple[Hashable, ...]


class QueryCache:
    """TTL cache of backend reads, keyed like the UI's query keys.

    Mutations never patch cached values; they invalidate a key prefix so the
    next read goes back to the backend.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[QueryKey, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at > self._ttl_seconds

    def get(self, key: QueryKey) -> tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            stored_at, value = entry
            if self._expired(stored_at, self._clock()):
                del self._entries[key]
                return False, None
            return True, value

    def set(self, key: QueryKey, value: Any) -> None:
        with self._lock:
            now = self._clock()
            # Expired entries of every key are dropped on write.
            for stale in [k for k, (stored_at, _) in self._entries.items() if self._expired(stored_at, now)]:
                del self._entries[stale]
            self._entries[key] = (now, value)

    def fetch(self, key: QueryKey, loader: Callable[[], Any]) -> Any:
        hit, value = self.get(key)
        if hit:
            return value
        value = loader()
        self.set(key, value)
        return value

    def invalidate(self, prefix: QueryKey) -> int:
        size = len(prefix)
        with self._lock:
            stale = [key for key in self._entries if key[:size] == prefix]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
