"""Canonical content store implementations."""

from config.config import StoreConfig
from content_pipeline.store.base import ContentStore, ReadConsistency, RecordTransaction
from content_pipeline.store.memory import InMemoryContentStore


def create_store(config: StoreConfig) -> ContentStore:
    """Build the store selected by store.backend."""
    if config.backend == "postgres":
        from content_pipeline.store.postgres import PostgresContentStore

        return PostgresContentStore(config)
    if config.backend == "memory":
        return InMemoryContentStore()
    raise ValueError(f"Unknown store backend: {config.backend}")


__all__ = [
    "ContentStore",
    "InMemoryContentStore",
    "ReadConsistency",
    "RecordTransaction",
    "create_store",
]
