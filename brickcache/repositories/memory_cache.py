from __future__ import annotations

import heapq
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


class TtlMemoryCache:
    """In-process cache with a fixed lifetime per entry.

    Expired entries are never returned. Every read and every write sweeps the
    entries whose scheduled expiry has passed.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got: {ttl_seconds}")
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._schedule: List[Tuple[float, int, Hashable]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            self._evict_due(now)
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        now = self._clock()
        expires_at = now + (self.ttl_seconds if ttl_seconds is None else ttl_seconds)
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
            heapq.heappush(self._schedule, (expires_at, next(self._seq), key))
            self._evict_due(now)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._schedule.clear()

    def evict_expired(self) -> int:
        with self._lock:
            return self._evict_due(self._clock())

    def _evict_due(self, now: float) -> int:
        evicted = 0
        while self._schedule and self._schedule[0][0] <= now:
            expires_at, _, key = heapq.heappop(self._schedule)
            entry = self._entries.get(key)
            # a later write rescheduled this key
            if entry is not None and entry.expires_at <= now:
                del self._entries[key]
                evicted += 1
        return evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
