"""Process-wide resources shared by every worker in one process."""

import logging
from dataclasses import dataclass

from config.config import ContentConfig
from content_pipeline.cache.memory import ContentCache, TTLContentCache
from content_pipeline.store import create_store
from content_pipeline.store.base import ContentStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineResources:
    """Config, canonical store and read cache, built once per process.

    Owns the store lifecycle: open() before any worker starts and close()
    after the last one stops. Workers only borrow the store.
    """

    config: ContentConfig
    store: ContentStore
    cache: ContentCache

    @classmethod
    def from_config(cls, config: ContentConfig) -> "PipelineResources":
        return cls(
            config=config,
            store=create_store(config.store),
            cache=TTLContentCache(max_entries=config.cache.max_entries),
        )

    async def open(self) -> None:
        await self.store.open()
        logger.info(
            "Pipeline resources ready",
            extra={"reason": f"store={self.config.store.backend}"},
        )

    async def close(self) -> None:
        await self.store.close()
        logger.info("Pipeline resources released")
