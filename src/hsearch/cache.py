"""Thread-safe expiring cache for search responses."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

logger = logging.getLogger(__name__)


class ExpiringCache:
    """Map of key -> payload where every entry lives for a fixed TTL from insertion.

    Expired entries are evicted lazily when looked up; there is no background
    sweep. When the cache is full the oldest entry is evicted to make room.
    All access goes through one lock, so concurrent searches may race on the
    same key safely.
    """

    def __init__(self, ttl: float, max_entries: int = 256) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self._ttl = ttl
        self._max_entries = max_entries
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> Any | None:
        """Return the remembered payload, or ``None`` if absent or expired."""
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            payload, inserted_at = cached
            if time.monotonic() - inserted_at < self._ttl:
                return payload
            del self._entries[key]
            return None

    def put(self, key: str, payload: Any) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                oldest_key = min(self._entries, key=lambda k: self._entries[k][1])
                del self._entries[oldest_key]
                logger.debug("Search cache full, evicted key=%r", oldest_key)
            self._entries[key] = (payload, time.monotonic())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
