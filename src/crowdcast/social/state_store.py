"""Expiring key-value store for short-lived OAuth state."""

from __future__ import annotations

import time
from threading import Lock
from typing import Any, Callable, Protocol


class ExpiringStore(Protocol):
    """put-with-expiry, single-use get, sweep. Swap for a shared cache across processes."""

    def put(self, key: str, value: Any, ttl_sec: float) -> None: ...
    def pop(self, key: str) -> Any | None: ...
    def sweep(self) -> int: ...


class MemoryExpiringStore:
    """In-process store. Expired entries are dropped on put, on access and by sweep()."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._items: dict[str, tuple[float, Any]] = {}
        self._lock = Lock()

    def put(self, key: str, value: Any, ttl_sec: float) -> None:
        """Store value until now + ttl_sec. Expired entries are swept first so the store stays bounded."""
        self.sweep()
        with self._lock:
            self._items[key] = (self._clock() + ttl_sec, value)

    def pop(self, key: str) -> Any | None:
        """Remove and return the value; None if absent or expired."""
        with self._lock:
            item = self._items.pop(key, None)
        if item is None:
            return None
        expires_at, value = item
        if expires_at <= self._clock():
            return None
        return value

    def sweep(self) -> int:
        """Drop expired entries; return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (exp, _) in self._items.items() if exp <= now]
            for k in expired:
                del self._items[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._items)
