"""In-memory canonical store for tests and local development.

Keeps a primary map and a replica map. With replica_lag=True the replica
only catches up on sync_replica(), which lets tests observe stale replica
reads the way a streaming replica would serve them.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from content_pipeline.schemas.records import ContentRecord
from content_pipeline.store.base import ContentStore, ReadConsistency, RecordTransaction

logger = logging.getLogger(__name__)


class InMemoryContentStore(ContentStore):
    def __init__(self, replica_lag: bool = False):
        self.replica_lag = replica_lag
        self._primary: dict[str, ContentRecord] = {}
        self._replica: dict[str, ContentRecord] = {}
        # Per-id locks live only while some transaction holds or awaits them
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def _records(self, consistency: ReadConsistency) -> dict[str, ContentRecord]:
        return self._primary if consistency == ReadConsistency.PRIMARY else self._replica

    def _acquire_lock(self, content_id: str) -> asyncio.Lock:
        self._lock_users[content_id] = self._lock_users.get(content_id, 0) + 1
        return self._locks.setdefault(content_id, asyncio.Lock())

    def _release_lock(self, content_id: str) -> None:
        self._lock_users[content_id] -= 1
        if not self._lock_users[content_id]:
            del self._lock_users[content_id]
            del self._locks[content_id]

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def transaction(self, content_id: str) -> AsyncIterator[RecordTransaction]:
        lock = self._acquire_lock(content_id)
        try:
            async with lock:
                tx = RecordTransaction(content_id, self._primary.get(content_id))
                yield tx
                if tx.pending is None:
                    return
                self._primary[content_id] = tx.pending
                if not self.replica_lag:
                    self._replica[content_id] = tx.pending
        finally:
            self._release_lock(content_id)

    async def fetch_by_id(
        self, content_id: str, consistency: ReadConsistency = ReadConsistency.PRIMARY
    ) -> ContentRecord | None:
        return self._records(consistency).get(content_id)

    async def fetch_by_slug(
        self,
        content_type: str,
        slug: str,
        consistency: ReadConsistency = ReadConsistency.PRIMARY,
    ) -> ContentRecord | None:
        matches = [
            record
            for record in self._records(consistency).values()
            if record.type == content_type and record.slug == slug
        ]
        if not matches:
            return None
        # Newest live holder of the slug, else the newest tombstone
        matches.sort(key=lambda r: (not r.is_deleted, r.updated_at), reverse=True)
        return matches[0]

    def sync_replica(self) -> None:
        """Bring the replica up to date with the primary."""
        self._replica = dict(self._primary)
        logger.debug("Replica synced", extra={"records_applied": len(self._replica)})

    async def close(self) -> None:
        logger.debug("In-memory store closed", extra={"records_applied": len(self._primary)})
