"""
PostgreSQL canonical store.

Writes run in a primary transaction that first takes
pg_advisory_xact_lock(hashtext(id)), so two consumers racing on the same id
(including its first insert, when there is no row to lock yet) are
serialized. Reads may be routed to a replica pool; without a replica DSN
they use the primary.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from config.config import StoreConfig
from content_pipeline.schemas.records import ContentRecord
from content_pipeline.store.base import ContentStore, ReadConsistency, RecordTransaction
from core.errors.exceptions import PipelineError
from core.errors.transport_classifier import TransportErrorClassifier
from core.resilience.retry import STORE_CONNECT_RETRY, with_retry_async

logger = logging.getLogger(__name__)

RECORD_COLUMNS = (
    "id",
    "source",
    "source_id",
    "type",
    "slug",
    "title",
    "body_structured",
    "body_rendered",
    "summary",
    "updated_at",
    "published_at",
    "version",
    "deleted_at",
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS content (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    source_id TEXT NOT NULL,
    type TEXT NOT NULL,
    slug TEXT NOT NULL,
    title TEXT NOT NULL,
    body_structured TEXT NOT NULL,
    body_rendered TEXT NOT NULL,
    summary TEXT,
    updated_at TIMESTAMPTZ NOT NULL,
    published_at TIMESTAMPTZ,
    version INTEGER NOT NULL CHECK (version >= 1),
    deleted_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS content_type_slug ON content (type, slug, updated_at DESC);
"""

_SELECT = f"SELECT {', '.join(RECORD_COLUMNS)} FROM content"

_UPSERT = (
    f"INSERT INTO content ({', '.join(RECORD_COLUMNS)}) "
    f"VALUES ({', '.join(f'%({c})s' for c in RECORD_COLUMNS)}) "
    "ON CONFLICT (id) DO UPDATE SET "
    + ", ".join(f"{c} = EXCLUDED.{c}" for c in RECORD_COLUMNS if c != "id")
)

# Newest live holder of the slug, else the newest tombstone
_SELECT_BY_SLUG = (
    f"{_SELECT} WHERE type = %s AND slug = %s "
    "ORDER BY (deleted_at IS NULL) DESC, updated_at DESC LIMIT 1"
)


def _to_record(row: dict[str, Any] | None) -> ContentRecord | None:
    if row is None:
        return None
    return ContentRecord(**row)


class PostgresContentStore(ContentStore):
    def __init__(self, config: StoreConfig):
        if not config.primary_dsn:
            raise ValueError("PostgresContentStore requires store.primary_dsn")
        self.config = config
        connect_kwargs = {"connect_timeout": int(config.connect_timeout_seconds)}
        self._primary = AsyncConnectionPool(
            config.primary_dsn,
            min_size=config.pool_min_size,
            max_size=config.pool_max_size,
            kwargs=connect_kwargs,
            open=False,
            name="content-primary",
        )
        self._replica: AsyncConnectionPool | None = None
        if config.replica_dsn:
            self._replica = AsyncConnectionPool(
                config.replica_dsn,
                min_size=config.pool_min_size,
                max_size=config.pool_max_size,
                kwargs=connect_kwargs,
                open=False,
                name="content-replica",
            )

    def _pool(self, consistency: ReadConsistency) -> AsyncConnectionPool:
        if consistency == ReadConsistency.REPLICA and self._replica is not None:
            return self._replica
        return self._primary

    @staticmethod
    def _classify(error: Exception, content_id: str | None = None) -> PipelineError:
        context = {"content_id": content_id} if content_id else None
        return TransportErrorClassifier.classify_store_error(error, context)

    @with_retry_async(config=STORE_CONNECT_RETRY)
    async def open(self) -> None:
        try:
            await self._primary.open(wait=True, timeout=self.config.connect_timeout_seconds)
            if self._replica is not None:
                await self._replica.open(wait=True, timeout=self.config.connect_timeout_seconds)
        except (psycopg.Error, TimeoutError) as e:
            raise self._classify(e) from e
        logger.info(
            "Store pools opened",
            extra={"reason": "replica" if self._replica is not None else "primary-only"},
        )

    async def ensure_schema(self) -> None:
        try:
            async with self._primary.connection() as conn:
                await conn.execute(SCHEMA_SQL)
        except psycopg.Error as e:
            raise self._classify(e) from e

    @asynccontextmanager
    async def transaction(self, content_id: str) -> AsyncIterator[RecordTransaction]:
        try:
            async with self._primary.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor(row_factory=dict_row) as cur:
                        await cur.execute(
                            "SELECT pg_advisory_xact_lock(hashtext(%s))", (content_id,)
                        )
                        await cur.execute(f"{_SELECT} WHERE id = %s FOR UPDATE", (content_id,))
                        tx = RecordTransaction(content_id, _to_record(await cur.fetchone()))

                        yield tx

                        if tx.pending is not None:
                            await cur.execute(_UPSERT, tx.pending.model_dump())
        except psycopg.Error as e:
            raise self._classify(e, content_id) from e

    async def _fetch_one(
        self, consistency: ReadConsistency, query: str, params: tuple
    ) -> ContentRecord | None:
        try:
            async with self._pool(consistency).connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    return _to_record(await cur.fetchone())
        except psycopg.Error as e:
            raise self._classify(e) from e

    async def fetch_by_id(
        self, content_id: str, consistency: ReadConsistency = ReadConsistency.PRIMARY
    ) -> ContentRecord | None:
        return await self._fetch_one(consistency, f"{_SELECT} WHERE id = %s", (content_id,))

    async def fetch_by_slug(
        self,
        content_type: str,
        slug: str,
        consistency: ReadConsistency = ReadConsistency.PRIMARY,
    ) -> ContentRecord | None:
        return await self._fetch_one(consistency, _SELECT_BY_SLUG, (content_type, slug))

    async def close(self) -> None:
        await self._primary.close()
        if self._replica is not None:
            await self._replica.close()
        logger.info("Store pools closed")
