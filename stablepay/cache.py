"""In-memory caching with explicit expiry."""

import threading
import time
from collections.abc import Callable
from typing import Any

Clock = Callable[[], float]


def system_clock() -> float:
    """Wall-clock time in epoch seconds."""
    return time.time()


class TTLCache:
    """Key/value cache whose entries expire `ttl_seconds` after they were set.

    Expiry reads time from `clock`, so tests can advance a fake clock instead of sleeping.
    Safe to share between request threads.
    """

    def __init__(self, ttl_seconds: float, clock: Clock = system_clock) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def age(self, key: str) -> float | None:
        """Seconds since `key` was stored, or None if absent."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            return self._clock() - entry[0]

    def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or every entry when `key` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (ts, _) in self._entries.items() if now - ts >= self.ttl_seconds]
            for k in expired:
                del self._entries[k]
            return len(expired)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
