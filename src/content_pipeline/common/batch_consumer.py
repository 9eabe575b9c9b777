"""Message batch consumer with manual commit and dead-letter routing.

Wrapper around AIOKafkaConsumer that fetches batches with getmany() and
delegates them to a batch_handler. Offsets are committed only after the
handler reports the batch safe to commit, giving at-least-once delivery.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from aiokafka import AIOKafkaConsumer, TopicPartition

from config.config import ContentConfig
from content_pipeline.common.dlq.producer import DLQProducer
from content_pipeline.common.kafka_config import build_connection_config
from content_pipeline.common.metrics import (
    record_batch_redelivery,
    record_message_consumed,
    update_assigned_partitions,
    update_connection_status,
)
from content_pipeline.common.types import BatchResult, PipelineMessage, from_consumer_record
from core.errors.exceptions import PipelineError, RedeliveryExhaustedError
from core.resilience.retry import RetryConfig
from core.types import ErrorCategory
from core.utils import generate_worker_id

logger = logging.getLogger(__name__)

DEFAULT_REDELIVERY_BACKOFF = RetryConfig(max_attempts=1, base_delay=0.5, max_delay=30.0)


class MessageBatchConsumer:
    """Message batch consumer for concurrent message processing.

    Batch Handler Contract:
    - Receives list[PipelineMessage] (1 to batch_size messages)
    - Returns BatchResult(commit, permanent_failures, retry_failures) or a plain bool
    - If the handler raises, the batch is NOT committed

    Commit Strategy:
    - All-or-nothing: commit the batch's offsets after DLQ routing succeeds
    - permanent_failures are dead-lettered only on the committing pass
    - Otherwise rewind the batch's partitions to their first offset and
      back off; the same messages are fetched again on the next poll
    - After max_redeliveries rewinds in a row, the still-failing messages are
      dead-lettered as RedeliveryExhaustedError and the batch is committed
    """

    def __init__(
        self,
        config: ContentConfig,
        domain: str,
        worker_name: str,
        topics: list[str],
        batch_handler: Callable[[list[PipelineMessage]], Awaitable[BatchResult | bool]],
        **kwargs,
    ):
        """Initialize message batch consumer.

        Args:
            config: ContentConfig with connection details
            domain: Pipeline domain (used for ids and metrics)
            worker_name: Worker name for config lookup and logging
            topics: List of topics to consume
            batch_handler: Async function that processes message batches
            **kwargs: Optional overrides:
                batch_size (int): Target batch size (default: 20)
                max_batch_size (int): Upper bound for max_poll_records (default: batch_size)
                batch_timeout_ms (int): Timeout for getmany (default: 1000ms)
                enable_message_commit (bool): Whether to commit after processing (default: True)
                instance_id (str): Instance identifier for parallel consumers
                max_redeliveries (int): Redeliveries of a failing batch before its still-failing
                    messages are dead-lettered and the batch is committed (default: 5)
                redelivery_backoff (RetryConfig): Backoff between redeliveries
        """
        if not topics:
            raise ValueError("At least one topic must be specified")

        self.config = config
        self.domain = domain
        self.worker_name = worker_name
        self.instance_id = kwargs.get("instance_id")
        self.topics = topics
        self.batch_handler = batch_handler
        self.batch_size = kwargs.get("batch_size", 20)
        self.max_batch_size = kwargs.get("max_batch_size") or self.batch_size
        self.batch_timeout_ms = kwargs.get("batch_timeout_ms", 1000)
        self.max_redeliveries = kwargs.get("max_redeliveries", 5)
        self.redelivery_backoff: RetryConfig = kwargs.get(
            "redelivery_backoff", DEFAULT_REDELIVERY_BACKOFF
        )
        self._enable_message_commit = kwargs.get("enable_message_commit", True)
        self._consumer: AIOKafkaConsumer | None = None
        self._running = False
        self._consecutive_failures = 0

        prefix = f"{domain}-{worker_name}"
        if self.instance_id:
            prefix = f"{prefix}-{self.instance_id}"
        self._worker_id = generate_worker_id(prefix)

        self.consumer_config: dict = config.get_worker_config(worker_name, "consumer")
        self.group_id = config.get_consumer_group(worker_name)

        self._dlq_producer = DLQProducer(
            config=config,
            domain=domain,
            worker_name=worker_name,
            group_id=self.group_id,
            worker_id=self._worker_id,
        )

        logger.info(
            "Initialized message batch consumer",
            extra={
                "batch_size": self.batch_size,
                "message_topic": ",".join(topics),
                "reason": f"group={self.group_id}",
            },
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def worker_id(self) -> str:
        return self._worker_id

    # Optional consumer config keys forwarded to AIOKafkaConsumer if present
    _OPTIONAL_CONSUMER_KEYS = (
        "heartbeat_interval_ms",
        "fetch_min_bytes",
        "fetch_max_wait_ms",
    )

    def _build_kafka_config(self) -> dict:
        """Build the AIOKafkaConsumer configuration dict."""
        client_id = f"{self.domain}-{self.worker_name}"
        if self.instance_id:
            client_id = f"{client_id}-{self.instance_id}"

        cfg = build_connection_config(self.config)
        cfg.update(
            {
                "group_id": self.group_id,
                "client_id": client_id,
                # Offsets advance only after the store write
                "enable_auto_commit": False,
                "auto_offset_reset": self.consumer_config.get("auto_offset_reset", "earliest"),
                "max_poll_records": self.max_batch_size,
                "max_poll_interval_ms": self.consumer_config.get("max_poll_interval_ms", 300000),
                "session_timeout_ms": self.consumer_config.get("session_timeout_ms", 30000),
            }
        )

        for key in self._OPTIONAL_CONSUMER_KEYS:
            if key in self.consumer_config:
                cfg[key] = self.consumer_config[key]

        return cfg

    async def start(self) -> None:
        """Start the consumer and run the consume loop until stopped."""
        if self._running:
            logger.warning("Batch consumer already running, ignoring duplicate start call")
            return

        logger.info("Starting message batch consumer", extra={"batch_size": self.batch_size})

        self._consumer = AIOKafkaConsumer(*self.topics, **self._build_kafka_config())
        await self._consumer.start()
        self._running = True
        update_connection_status("consumer", connected=True)

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Batch consumer loop cancelled, shutting down")
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the consumer. Uncommitted batches are redelivered to the next owner."""
        if self._consumer is None:
            logger.debug("Batch consumer not running or already stopped")
            return

        logger.info("Stopping message batch consumer")
        self._running = False

        try:
            await self._consumer.stop()
            await self._dlq_producer.stop()
            logger.info("Message batch consumer stopped")
        finally:
            update_connection_status("consumer", connected=False)
            update_assigned_partitions(self.group_id, 0)
            self._consumer = None

    @staticmethod
    def _batch_offsets(messages: list[PipelineMessage]) -> dict[TopicPartition, tuple[int, int]]:
        """(first, last) offset per partition in the batch."""
        bounds: dict[TopicPartition, tuple[int, int]] = {}
        for msg in messages:
            tp = TopicPartition(msg.topic, msg.partition)
            low, high = bounds.get(tp, (msg.offset, msg.offset))
            bounds[tp] = (min(low, msg.offset), max(high, msg.offset))
        return bounds

    async def commit_batch(self, messages: list[PipelineMessage]) -> None:
        """Commit the offset after the last message of each partition in the batch."""
        offsets = {tp: high + 1 for tp, (_, high) in self._batch_offsets(messages).items()}
        await self._consumer.commit(offsets)
        logger.debug("Committed offsets", extra={"batch_size": len(messages)})

    def rewind_batch(self, messages: list[PipelineMessage]) -> None:
        """Seek each partition back to its first message in the batch."""
        for tp, (low, _) in self._batch_offsets(messages).items():
            self._consumer.seek(tp, low)

    def _collect_messages(self, data: dict) -> list[PipelineMessage]:
        """Flatten partition data from getmany() into a single message list."""
        messages: list[PipelineMessage] = []
        for partition_messages in data.values():
            messages.extend(from_consumer_record(record) for record in partition_messages)
        return messages

    async def _dead_letter(self, failures: list[tuple[PipelineMessage, Exception]]) -> bool:
        """Send every failure to the DLQ. False if any send failed."""
        routed = True
        for msg, error in failures:
            category = error.category if isinstance(error, PipelineError) else ErrorCategory.PERMANENT
            try:
                await self._dlq_producer.send(msg, error, category)
            except PipelineError:
                routed = False
        return routed

    def _exhausted(
        self, messages: list[PipelineMessage], result: BatchResult, error: Exception | None
    ) -> list[tuple[PipelineMessage, Exception]]:
        """Messages given up on once the redelivery bound is used up."""
        attempts = self._consecutive_failures + 1
        retrying = result.retry_failures
        if not retrying:
            failed = {id(msg) for msg, _ in result.permanent_failures}
            retrying = [(msg, error) for msg in messages if id(msg) not in failed]
        return [(msg, RedeliveryExhaustedError(attempts, cause=cause)) for msg, cause in retrying]

    async def _flush_batch(self, messages: list[PipelineMessage]) -> bool:
        """Run the batch handler; commit on success, otherwise rewind. Returns committed."""
        start_time = time.perf_counter()
        handler_error: Exception | None = None

        try:
            result = await self.batch_handler(messages)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Batch processing failed - messages will be redelivered",
                extra={"batch_size": len(messages), "error": str(e)},
                exc_info=True,
            )
            handler_error = e
            result = BatchResult(commit=False)

        if isinstance(result, bool):
            result = BatchResult(commit=result)

        # Dead-lettering happens only on the pass that commits, so a rewound
        # batch never sends the same message to the DLQ twice
        should_commit = result.commit
        dead_letters = list(result.permanent_failures)
        if not should_commit and self._consecutive_failures >= self.max_redeliveries:
            exhausted = self._exhausted(messages, result, handler_error)
            logger.error(
                "Redelivery limit reached - dead-lettering messages still failing",
                extra={
                    "batch_size": len(messages),
                    "records_failed": len(exhausted),
                    "retry_count": self._consecutive_failures,
                },
            )
            dead_letters.extend(exhausted)
            should_commit = True

        if should_commit and dead_letters and not await self._dead_letter(dead_letters):
            should_commit = False

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        if should_commit and self._enable_message_commit:
            await self.commit_batch(messages)
            self._consecutive_failures = 0
            logger.info(
                "Batch committed",
                extra={
                    "batch_size": len(messages),
                    "duration_ms": duration_ms,
                    "records_failed": len(dead_letters),
                },
            )
            return True

        if not should_commit:
            self._consecutive_failures += 1
            self.rewind_batch(messages)
            record_batch_redelivery(self.group_id)
            logger.warning(
                "Batch not committed - rewinding for redelivery",
                extra={
                    "batch_size": len(messages),
                    "duration_ms": duration_ms,
                    "retry_count": self._consecutive_failures,
                },
            )
        return False

    async def _wait_for_assignment(self) -> bool:
        """Wait for partition assignment, logging once. Returns True when assigned."""
        logged_waiting = False
        while self._running and self._consumer:
            assignment = self._consumer.assignment()
            if assignment:
                logger.info(
                    "Partition assignment received, starting batch consumption",
                    extra={"reason": ",".join(f"{tp.topic}:{tp.partition}" for tp in assignment)},
                )
                update_assigned_partitions(self.group_id, len(assignment))
                return True
            if not logged_waiting:
                logger.info("Waiting for partition assignment (consumer group rebalance in progress)")
                logged_waiting = True
            await asyncio.sleep(0.5)
        return False

    async def _fetch_and_process_batch(self) -> None:
        """Fetch a single batch from Kafka and process it."""
        data = await self._consumer.getmany(timeout_ms=self.batch_timeout_ms, max_records=self.batch_size)
        if not data:
            return

        messages = self._collect_messages(data)
        if not messages:
            return

        for msg in messages:
            record_message_consumed(msg.topic, self.group_id)

        if not await self._flush_batch(messages) and self._consecutive_failures:
            # Capped exponent keeps the float math from overflowing
            delay = self.redelivery_backoff.get_delay(min(self._consecutive_failures - 1, 16))
            await asyncio.sleep(delay)

    async def _consume_loop(self) -> None:
        """Main consumption loop - fetches and processes batches."""
        if not await self._wait_for_assignment():
            return

        while self._running and self._consumer:
            try:
                await self._fetch_and_process_batch()
            except asyncio.CancelledError:
                logger.info("Batch consumption loop cancelled")
                raise
            except Exception as e:
                logger.error("Error in batch consumption loop", extra={"error": str(e)}, exc_info=True)
                await asyncio.sleep(1)
