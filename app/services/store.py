"""Ephemeral key-value store with TTLs and atomic float counters.

The fast cache tier and the budget counters live here. ``MemoryStore`` keeps
everything in process memory behind a single lock, so increments from parse
attempts running on different worker threads never corrupt a counter.
"""

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable


class EphemeralStore(ABC):
    """Abstract ephemeral store: string values, optional TTL per key."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the value for a live key, or None."""

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Store a value, replacing any previous value and TTL."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key; True if it existed."""

    @abstractmethod
    def incr_float(self, key: str, amount: float, ttl_seconds: float | None = None) -> float:
        """Atomically add to a numeric key and return the new value. A TTL, if given, is refreshed."""

    @abstractmethod
    def ttl(self, key: str) -> float | None:
        """Seconds until the key expires, or None for keys without expiry or missing keys."""

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop expired keys and return how many were dropped."""

    def get_float(self, key: str) -> float:
        """Numeric value of a key, 0.0 when missing or not numeric."""
        value = self.get(key)
        if value is None:
            return 0.0
        try:
            return float(value)
        except ValueError:
            return 0.0


class MemoryStore(EphemeralStore):
    """Thread-safe in-process implementation of :class:`EphemeralStore`."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize an empty store using ``clock`` (seconds) for expiry."""
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= now:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: float | None, now: float) -> float | None:
        return now + ttl_seconds if ttl_seconds is not None else None

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key, self._clock())
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        with self._lock:
            now = self._clock()
            self._data[key] = (value, self._expiry(ttl_seconds, now))

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def incr_float(self, key: str, amount: float, ttl_seconds: float | None = None) -> float:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            current = 0.0
            expires_at = None
            if entry is not None:
                try:
                    current = float(entry[0])
                except ValueError:
                    current = 0.0
                expires_at = entry[1]
            new_value = current + amount
            if ttl_seconds is not None:
                expires_at = self._expiry(ttl_seconds, now)
            self._data[key] = (repr(new_value), expires_at)
            return new_value

    def ttl(self, key: str) -> float | None:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None or entry[1] is None:
                return None
            return entry[1] - now

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires_at) in self._data.items() if expires_at is not None and expires_at <= now]
            for key in expired:
                del self._data[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
