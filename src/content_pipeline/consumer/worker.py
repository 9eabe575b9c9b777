"""
Upsert worker: the batch handler behind the upsert consumer group.

Concurrency model:
- A batch is grouped by content id
- Distinct ids are applied concurrently, bounded by processing.concurrency
- Messages for one id are applied serially in arrival order
- Each store write is shielded so shutdown never abandons a half-done write

Commit decision:
- Any RETRY in the batch → BatchResult(commit=False), whole batch redelivered
- PERMANENT_FAILURE messages → dead-lettered, siblings still commit
- APPLIED / DISCARDED → commit

Re-applying a committed message on redelivery is harmless: it resolves as
stale and is discarded.
"""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Any

from config.config import ContentConfig
from content_pipeline.common.batch_consumer import MessageBatchConsumer
from content_pipeline.common.health import HealthCheckServer
from content_pipeline.common.metrics import (
    message_processing_duration_seconds,
    record_processing_error,
)
from content_pipeline.common.types import BatchResult, PipelineMessage
from content_pipeline.consumer.upsert import ApplyOutcome, ApplyResult, UpsertConsumer
from content_pipeline.schemas.messages import ContentChangeMessage
from content_pipeline.store.base import ContentStore
from core.errors.exceptions import PayloadValidationError
from core.logging.context import set_log_context
from core.logging.message_context import MessageLogContext
from core.logging.periodic_logger import PeriodicStatsLogger
from core.logging.setup import log_worker_startup
from core.resilience.retry import RetryConfig

logger = logging.getLogger(__name__)

ParsedMessage = tuple[PipelineMessage, ContentChangeMessage]


class UpsertWorker:
    """
    Consumes change messages and applies them to the canonical store.

    Usage:
        worker = UpsertWorker(config, store)
        await worker.start()  # Runs until stopped
        await worker.stop()
    """

    WORKER_NAME = "upsert_consumer"

    def __init__(
        self,
        config: ContentConfig,
        store: ContentStore,
        domain: str = "content",
        instance_id: str | None = None,
    ):
        self.config = config
        self.store = store
        self.domain = domain
        self.instance_id = instance_id
        self.worker_id = f"{self.WORKER_NAME}-{instance_id}" if instance_id else self.WORKER_NAME

        processing = config.get_worker_config(self.WORKER_NAME, "processing")
        self.batch_size = processing.get("batch_size", 50)
        self.batch_timeout_ms = processing.get("batch_timeout_ms", 1000)
        self.concurrency = processing.get("concurrency", 10)
        self.max_redeliveries = processing.get("max_redeliveries", 5)
        self.cycle_interval_seconds = processing.get("cycle_interval_seconds", 30)
        self.redelivery_backoff = RetryConfig(
            max_attempts=1,
            base_delay=processing.get("redelivery_base_delay_seconds", 0.5),
            max_delay=processing.get("redelivery_max_delay_seconds", 30.0),
        )

        self.topics = [config.get_topic()]
        self.consumer_group = config.get_consumer_group(self.WORKER_NAME)
        self.upsert = UpsertConsumer(store)

        self.health_server = HealthCheckServer(
            port=processing.get("health_port", 8092),
            worker_name=self.WORKER_NAME,
            enabled=processing.get("health_enabled", True),
        )

        self._consumer: MessageBatchConsumer | None = None
        self._stats_logger: PeriodicStatsLogger | None = None
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._running = False

        self._records_processed = 0
        self._records_applied = 0
        self._records_discarded = 0
        self._records_failed = 0
        self._records_retried = 0

    async def start(self) -> None:
        """Start consuming. Runs until stop() is called or an error occurs."""
        if self._running:
            logger.warning("Worker already running, ignoring duplicate start call")
            return

        set_log_context(stage=self.WORKER_NAME, worker_id=self.worker_id, domain=self.domain)
        log_worker_startup(
            logger,
            self.WORKER_NAME,
            kafka_bootstrap_servers=self.config.bootstrap_servers,
            input_topic=",".join(self.topics),
            output_topic=self.config.get_dlq_topic(),
            consumer_group=self.consumer_group,
            extra_config={"batch_size": self.batch_size, "concurrency": self.concurrency},
        )

        await self.health_server.start()

        self._consumer = MessageBatchConsumer(
            config=self.config,
            domain=self.domain,
            worker_name=self.WORKER_NAME,
            topics=self.topics,
            batch_handler=self.handle_batch,
            batch_size=self.batch_size,
            batch_timeout_ms=self.batch_timeout_ms,
            instance_id=self.instance_id,
            max_redeliveries=self.max_redeliveries,
            redelivery_backoff=self.redelivery_backoff,
        )

        if self._stats_logger is None:
            self._stats_logger = PeriodicStatsLogger(
                interval_seconds=self.cycle_interval_seconds,
                get_stats=self._get_cycle_stats,
                stage=self.WORKER_NAME,
                worker_id=self.worker_id,
            )
            self._stats_logger.start()

        self._running = True
        self.health_server.set_ready(transport_connected=True, store_reachable=True)

        try:
            await self._consumer.start()
        except asyncio.CancelledError:
            logger.info("Worker cancelled, shutting down")
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop consuming. Safe to call multiple times."""
        self._running = False
        self.health_server.set_ready(transport_connected=False)

        if self._stats_logger:
            await self._stats_logger.stop()
            self._stats_logger = None

        if self._consumer:
            try:
                await self._consumer.stop()
            finally:
                self._consumer = None

        await self.health_server.stop()
        logger.info("Upsert worker stopped")

    async def _apply_one(
        self, raw: PipelineMessage, message: ContentChangeMessage
    ) -> ApplyResult:
        start = time.perf_counter()
        with MessageLogContext(
            topic=raw.topic, partition=raw.partition, offset=raw.offset, key=raw.key_str
        ):
            # The write finishes even if the batch is cancelled mid-flight
            result = await asyncio.shield(self.upsert.apply(message))
        message_processing_duration_seconds.labels(
            topic=raw.topic, consumer_group=self.consumer_group
        ).observe(time.perf_counter() - start)
        return result

    async def _apply_group(
        self, items: list[ParsedMessage]
    ) -> tuple[list[tuple[PipelineMessage, ApplyResult]], list[tuple[PipelineMessage, Exception]]]:
        """Apply one id's messages in order. Returns (results, not attempted after a RETRY)."""
        results: list[tuple[PipelineMessage, ApplyResult]] = []
        async with self._semaphore:
            for index, (raw, message) in enumerate(items):
                result = await self._apply_one(raw, message)
                results.append((raw, result))
                if result.outcome == ApplyOutcome.RETRY:
                    # The rest of this id is redelivered with the batch
                    return results, [(later, result.error) for later, _ in items[index + 1 :]]
        return results, []

    def group_by_content_id(
        self, messages: list[PipelineMessage]
    ) -> tuple[dict[str, list[ParsedMessage]], list[tuple[PipelineMessage, Exception]]]:
        """Parse a batch and group it by content id. Unparseable messages are returned separately."""
        groups: dict[str, list[ParsedMessage]] = defaultdict(list)
        unparseable: list[tuple[PipelineMessage, Exception]] = []
        for raw in messages:
            try:
                message = UpsertConsumer.parse(raw)
            except PayloadValidationError as e:
                logger.error(
                    "Unparseable change message",
                    extra={
                        "message_topic": raw.topic,
                        "message_partition": raw.partition,
                        "message_offset": raw.offset,
                        "error": str(e),
                    },
                )
                unparseable.append((raw, e))
                continue
            groups[message.content_id].append((raw, message))
        return dict(groups), unparseable

    async def handle_batch(self, messages: list[PipelineMessage]) -> BatchResult:
        groups, permanent_failures = self.group_by_content_id(messages)

        group_results = await asyncio.gather(
            *(self._apply_group(items) for items in groups.values())
        )

        counts: dict[ApplyOutcome, int] = defaultdict(int)
        retry_failures: list[tuple[PipelineMessage, Exception]] = []
        for results, skipped in group_results:
            for raw, result in results:
                counts[result.outcome] += 1
                if result.outcome == ApplyOutcome.PERMANENT_FAILURE:
                    permanent_failures.append((raw, result.error))
                elif result.outcome == ApplyOutcome.RETRY:
                    retry_failures.append((raw, result.error))
                    record_processing_error(raw.topic, self.consumer_group, "transient")
            retry_failures.extend(skipped)

        for raw, _ in permanent_failures:
            record_processing_error(raw.topic, self.consumer_group, "permanent")

        applied = counts[ApplyOutcome.APPLIED]
        discarded = counts[ApplyOutcome.DISCARDED]
        retried = counts[ApplyOutcome.RETRY]
        self._records_processed += len(messages)
        self._records_applied += applied
        self._records_discarded += discarded
        self._records_failed += len(permanent_failures)
        self._records_retried += retried

        logger.debug(
            "Batch processing complete",
            extra={
                "batch_size": len(messages),
                "group_count": len(groups),
                "records_applied": applied,
                "records_discarded": discarded,
                "records_failed": len(permanent_failures),
                "records_retried": retried,
            },
        )

        return BatchResult(
            commit=retried == 0,
            permanent_failures=permanent_failures,
            retry_failures=retry_failures,
        )

    def _get_cycle_stats(self, cycle_count: int) -> dict[str, Any]:
        return {
            "records_processed": self._records_processed,
            "records_applied": self._records_applied,
            "records_discarded": self._records_discarded,
            "records_failed": self._records_failed,
            "records_retried": self._records_retried,
        }

    @property
    def is_running(self) -> bool:
        return self._running


__all__ = ["UpsertWorker"]
