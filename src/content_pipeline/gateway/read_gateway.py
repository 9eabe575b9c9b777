"""
Read gateway: session-aware routing between cache, replica and primary.

PUBLIC reads:  cache → replica → cache write (TTL)
PREVIEW reads: primary only; the cache is neither read nor written

A missing or tombstoned record raises ContentNotFoundError. Store failures
propagate. Cache failures are logged and treated as misses.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from content_pipeline.cache.memory import ContentCache
from content_pipeline.common.metrics import record_cache_lookup, record_gateway_read
from content_pipeline.schemas.records import ContentRecord
from content_pipeline.store.base import ContentStore, ReadConsistency
from core.errors.exceptions import ContentNotFoundError, PipelineError

logger = logging.getLogger(__name__)


class ReadMode(str, Enum):
    PUBLIC = "public"
    PREVIEW = "preview"


@dataclass(frozen=True)
class ContentKey:
    """Lookup key: either (content_type, slug) or a content id."""

    content_type: str | None = None
    slug: str | None = None
    content_id: str | None = None

    def __post_init__(self):
        by_slug = self.content_type is not None and self.slug is not None
        if by_slug == (self.content_id is not None):
            raise ValueError("ContentKey needs either content_type and slug, or content_id")

    @classmethod
    def by_slug(cls, content_type: str, slug: str) -> "ContentKey":
        return cls(content_type=content_type, slug=slug)

    @classmethod
    def by_id(cls, content_id: str) -> "ContentKey":
        return cls(content_id=content_id)

    @property
    def cache_key(self) -> str:
        if self.content_id is not None:
            return f"content:id:{self.content_id}"
        return f"content:{self.content_type}:{self.slug}"

    def __str__(self) -> str:
        return self.cache_key


class ReadGateway:
    def __init__(self, store: ContentStore, cache: ContentCache, ttl_seconds: float = 45):
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def _fetch(self, key: ContentKey, consistency: ReadConsistency) -> ContentRecord | None:
        if key.content_id is not None:
            return await self.store.fetch_by_id(key.content_id, consistency)
        return await self.store.fetch_by_slug(key.content_type, key.slug, consistency)

    async def _cache_get(self, key: ContentKey) -> ContentRecord | None:
        try:
            cached = await self.cache.get(key.cache_key)
        except Exception as e:
            logger.warning(
                "Cache read failed, treating as miss",
                extra={"reason": key.cache_key, "error": str(e)},
            )
            return None
        record_cache_lookup(hit=cached is not None)
        return cached

    async def _cache_set(self, key: ContentKey, record: ContentRecord) -> None:
        try:
            await self.cache.set(key.cache_key, record, self.ttl_seconds)
        except Exception as e:
            logger.warning(
                "Cache write failed",
                extra={"reason": key.cache_key, "error": str(e)},
            )

    async def read(self, key: ContentKey, mode: ReadMode = ReadMode.PUBLIC) -> ContentRecord:
        """
        Resolve a key to a live record.

        Raises:
            ContentNotFoundError: no record, or only a tombstone
            TransientStoreError: the store could not be reached
        """
        if mode == ReadMode.PREVIEW:
            record = await self._read_store(key, mode, ReadConsistency.PRIMARY)
        else:
            record = await self._cache_get(key)
            if record is not None:
                record_gateway_read(mode.value, "cache_hit")
                logger.debug(
                    "Served from cache",
                    extra={"read_mode": mode.value, "cache_hit": True, "content_id": record.id},
                )
                return record
            record = await self._read_store(key, mode, ReadConsistency.REPLICA)

        if record is None or record.is_deleted:
            record_gateway_read(mode.value, "not_found")
            raise ContentNotFoundError(str(key))

        if mode == ReadMode.PUBLIC:
            await self._cache_set(key, record)

        record_gateway_read(mode.value, "store")
        return record

    async def _read_store(
        self, key: ContentKey, mode: ReadMode, consistency: ReadConsistency
    ) -> ContentRecord | None:
        try:
            return await self._fetch(key, consistency)
        except PipelineError:
            record_gateway_read(mode.value, "error")
            raise
