"""
In-process TTL cache for public reads.

Entries expire ttl_seconds after they were written; the cache never
revalidates. When full, expired entries are dropped first, then the oldest
writes.

Example:
    >>> cache = TTLContentCache(max_entries=1000)
    >>> await cache.set("content:article:hello", record, ttl_seconds=45)
    >>> await cache.get("content:article:hello")
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from content_pipeline.schemas.records import ContentRecord


class ContentCache(Protocol):
    """Best-effort read cache. Never authoritative."""

    async def get(self, key: str) -> ContentRecord | None: ...

    async def set(self, key: str, value: ContentRecord, ttl_seconds: float) -> None: ...


@dataclass
class CachedRecord:
    value: ContentRecord
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TTLContentCache:
    """Thread-safe TTL cache keyed by gateway cache key."""

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CachedRecord] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> ContentRecord | None:
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            if cached.is_valid(self._clock()):
                return cached.value
            del self._entries[key]
            return None

    async def set(self, key: str, value: ContentRecord, ttl_seconds: float) -> None:
        with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_entries:
                self._evict(now)
            self._entries[key] = CachedRecord(value=value, expires_at=now + ttl_seconds)

    def _evict(self, now: float) -> None:
        expired = [k for k, v in self._entries.items() if not v.is_valid(now)]
        for k in expired:
            del self._entries[k]
        while len(self._entries) >= self.max_entries:
            # dicts keep insertion order, so the first key is the oldest write
            del self._entries[next(iter(self._entries))]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
