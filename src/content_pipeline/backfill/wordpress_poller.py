"""
WordPress backfill poller.

Periodically asks WPGraphQL for the most recently modified posts, normalizes
every node with the wordpress normalizer and publishes it onto the change
topic, exactly as a webhook delivery would be. A JSON cursor remembers the
newest `modified` already published so restarts do not replay old pages.

Only one page is fetched per poll; the consumer's monotonic upsert makes
re-publishing a node harmless.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import aiohttp

from config.config import BackfillConfig, ContentConfig
from content_pipeline.backfill.cursor import BackfillCursor, JsonCursorStore
from content_pipeline.common.health import HealthCheckServer
from content_pipeline.common.metrics import record_backfill_node
from content_pipeline.common.producer import MessageProducer
from content_pipeline.normalizers.utils import now_datetime
from content_pipeline.normalizers.wordpress import WordPressNormalizer
from content_pipeline.schemas.messages import ContentChangeMessage
from core.errors.exceptions import (
    AuthError,
    PayloadValidationError,
    PermanentError,
    PipelineError,
    TransientError,
    classify_http_status,
)
from core.logging.context import set_log_context
from core.logging.utilities import log_exception
from core.resilience.retry import RetryConfig, with_retry_async
from core.types import ErrorCategory
from core.utils import format_timestamp

logger = logging.getLogger(__name__)

WORKER_NAME = "wordpress_backfill"
SOURCE = "wordpress"

POSTS_SINCE_QUERY = """
query PostsSince($first: Int!) {
  posts(first: $first, where: { orderby: { field: MODIFIED, order: DESC } }) {
    nodes {
      __typename
      databaseId
      date
      dateGmt
      modified
      modifiedGmt
      slug
      title
      content
      excerpt
      status
    }
  }
}
"""

GRAPHQL_RETRY = RetryConfig(max_attempts=3, base_delay=2.0, max_delay=30.0)


class ChangePublisher(Protocol):
    async def send(self, topic: str, key: str, value: ContentChangeMessage) -> Any: ...


@dataclass
class BackfillResult:
    fetched: int = 0
    published: int = 0
    skipped: int = 0
    failed: int = 0
    cursor: str | None = None


def _http_error(status: int, endpoint: str) -> PipelineError:
    message = f"WPGraphQL request failed with HTTP {status}"
    context = {"http_status": status, "graphql_endpoint": endpoint}
    category = classify_http_status(status)
    if category == ErrorCategory.AUTH:
        return AuthError(message, context=context)
    if category == ErrorCategory.PERMANENT:
        return PermanentError(message, context=context)
    return TransientError(message, context=context)


class WordPressBackfillPoller:
    """Fetches one delta page per poll_once() and publishes its nodes."""

    def __init__(
        self,
        config: BackfillConfig,
        publisher: ChangePublisher,
        cursor_store: JsonCursorStore,
        topic: str,
        session: aiohttp.ClientSession | None = None,
        retry_config: RetryConfig = GRAPHQL_RETRY,
        clock=now_datetime,
    ):
        if not config.graphql_endpoint.startswith(("http://", "https://")):
            raise ValueError(
                f"backfill.graphql_endpoint must start with http:// or https://, "
                f"got: {config.graphql_endpoint!r}"
            )

        self.config = config
        self.publisher = publisher
        self.cursor_store = cursor_store
        self.topic = topic
        self.normalizer = WordPressNormalizer(clock=clock)
        self._clock = clock
        self._session = session
        self._owns_session = session is None
        self._fetch_page = with_retry_async(retry_config)(self._request_page)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json", "Accept": "application/json"}
            if self.config.graphql_token:
                headers["Authorization"] = f"Bearer {self.config.graphql_token}"
            self._session = aiohttp.ClientSession(headers=headers)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request_page(self) -> list[dict[str, Any]]:
        session = await self._ensure_session()
        endpoint = self.config.graphql_endpoint
        body = {"query": POSTS_SINCE_QUERY, "variables": {"first": self.config.page_size}}

        try:
            async with session.post(
                endpoint,
                json=body,
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
            ) as response:
                if response.status != 200:
                    raise _http_error(response.status, endpoint)
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientError(f"WPGraphQL request failed: {e}", cause=e) from e

        if not isinstance(data, dict):
            raise PermanentError("WPGraphQL response is not a JSON object")
        if data.get("errors"):
            raise PermanentError(
                "WPGraphQL returned errors", context={"errors": str(data["errors"])[:500]}
            )

        nodes = ((data.get("data") or {}).get("posts") or {}).get("nodes") or []
        return [node for node in nodes if isinstance(node, dict)]

    async def poll_once(self) -> BackfillResult:
        """Fetch, normalize and publish one page, then advance the cursor.

        The cursor is saved only after every publish succeeded; a failed
        publish raises and the same page is fetched on the next poll.
        """
        stored = await self.cursor_store.load()
        since: datetime | None = stored.to_datetime() if stored else None

        nodes = await self._fetch_page()
        result = BackfillResult(fetched=len(nodes))
        newest = since

        for node in nodes:
            try:
                message = self.normalizer.normalize(node)
            except PayloadValidationError as e:
                result.failed += 1
                record_backfill_node(SOURCE, "invalid")
                log_exception(
                    logger,
                    e,
                    "Skipping WordPress node that failed normalization",
                    level=logging.WARNING,
                    include_traceback=False,
                    source=SOURCE,
                    source_id=str(node.get("databaseId")),
                )
                continue

            if since is not None and message.updated_at <= since:
                result.skipped += 1
                record_backfill_node(SOURCE, "skipped")
                continue

            await self.publisher.send(self.topic, message.content_id, message)
            result.published += 1
            record_backfill_node(SOURCE, "published")

            if newest is None or message.updated_at > newest:
                newest = message.updated_at

        # An empty first page still pins the cursor so the next poll is a delta
        if newest is None:
            newest = self._clock()

        result.cursor = format_timestamp(newest)
        await self.cursor_store.save(BackfillCursor(source=SOURCE, last_seen=result.cursor))

        logger.info(
            "Backfill poll complete",
            extra={
                "node_count": result.fetched,
                "records_processed": result.published,
                "records_discarded": result.skipped,
                "records_failed": result.failed,
                "cursor": result.cursor,
            },
        )
        return result


class WordPressBackfillWorker:
    """Runs poll_once() every interval_seconds until stopped."""

    def __init__(
        self,
        config: ContentConfig,
        domain: str = "content",
        producer: MessageProducer | None = None,
        cursor_store: JsonCursorStore | None = None,
        instance_id: str | None = None,
    ):
        self.config = config
        self.domain = domain
        self.instance_id = instance_id
        self.producer = producer or MessageProducer(config, domain, WORKER_NAME)
        self.poller = WordPressBackfillPoller(
            config.backfill,
            self.producer,
            cursor_store or JsonCursorStore(config.backfill.cursor_path),
            topic=config.get_topic(),
        )

        processing = config.get_worker_config(WORKER_NAME, "processing")
        self.health_server = HealthCheckServer(
            port=processing.get("health_port", 8094),
            worker_name=WORKER_NAME,
            enabled=processing.get("health_enabled", True),
        )
        self.polls = 0
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        set_log_context(stage=WORKER_NAME, domain=self.domain)
        await self.health_server.start()
        await self.producer.start()
        self.health_server.set_ready(transport_connected=True)

        logger.info(
            "WordPress backfill worker started",
            extra={
                "graphql_endpoint": self.config.backfill.graphql_endpoint,
                "reason": f"interval={self.config.backfill.interval_seconds}s",
            },
        )

        self._stopped.clear()
        while not self._stopped.is_set():
            try:
                await self.poller.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_exception(logger, e, "Backfill poll failed, will retry next interval")
            self.polls += 1

            try:
                await asyncio.wait_for(
                    self._stopped.wait(), timeout=self.config.backfill.interval_seconds
                )
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stopped.set()
        self.health_server.set_ready(transport_connected=False)
        await self.poller.close()
        await self.producer.stop()
        await self.health_server.stop()
        logger.info("WordPress backfill worker stopped")
