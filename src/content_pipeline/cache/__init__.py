"""Read-through cache used by the read gateway for public reads."""

from content_pipeline.cache.memory import CachedRecord, ContentCache, TTLContentCache

__all__ = ["CachedRecord", "ContentCache", "TTLContentCache"]
