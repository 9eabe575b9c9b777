"""Canonical store interface.

The store owns content records. Writes go through transaction(), which
holds a per-id lock for the whole read-check-write so concurrent consumers
can never interleave on one record.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from enum import Enum

from content_pipeline.schemas.records import ContentRecord


class ReadConsistency(str, Enum):
    PRIMARY = "primary"
    REPLICA = "replica"


class RecordTransaction:
    """Handle yielded by ContentStore.transaction().

    `current` is the stored record (tombstones included) or None. Calling
    save() stages the replacement; it is written when the context exits
    cleanly and dropped if the block raises.
    """

    def __init__(self, content_id: str, current: ContentRecord | None):
        self.content_id = content_id
        self.current = current
        self.pending: ContentRecord | None = None

    def save(self, record: ContentRecord) -> None:
        if record.id != self.content_id:
            raise ValueError(
                f"Transaction for {self.content_id} cannot save record {record.id}"
            )
        self.pending = record


class ContentStore(ABC):
    """Abstract canonical content store."""

    @abstractmethod
    def transaction(self, content_id: str) -> AbstractAsyncContextManager[RecordTransaction]:
        """Atomic read-check-write scope for one content id."""

    @abstractmethod
    async def fetch_by_id(
        self, content_id: str, consistency: ReadConsistency = ReadConsistency.PRIMARY
    ) -> ContentRecord | None:
        """Record by id, tombstones included."""

    @abstractmethod
    async def fetch_by_slug(
        self,
        content_type: str,
        slug: str,
        consistency: ReadConsistency = ReadConsistency.PRIMARY,
    ) -> ContentRecord | None:
        """Record by routing key. A live record wins over tombstones."""

    async def open(self) -> None:  # noqa: B027
        """Acquire connections. No-op for stores without any."""

    @abstractmethod
    async def close(self) -> None:
        ...
