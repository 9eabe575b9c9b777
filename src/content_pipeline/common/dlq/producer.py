"""DLQ producer: the error sink for change messages that can never be applied."""

import json
import logging
import time

from aiokafka import AIOKafkaProducer

from config.config import ContentConfig
from content_pipeline.common.kafka_config import build_connection_config
from content_pipeline.common.metrics import record_dlq_message
from content_pipeline.common.types import PipelineMessage
from core.errors.exceptions import QueuePublishError
from core.types import ErrorCategory

logger = logging.getLogger(__name__)


def _decode(raw: bytes | None) -> str | None:
    if raw is None:
        return None
    return raw.decode("utf-8", errors="replace")


class DLQProducer:
    """Lazy-initialized Kafka producer for DLQ routing.

    Only connects on first send, so healthy workers never open a second
    producer connection. A failed send raises QueuePublishError so the
    caller can hold back the offset commit.
    """

    def __init__(
        self, config: ContentConfig, domain: str, worker_name: str, group_id: str, worker_id: str
    ):
        self._config = config
        self._domain = domain
        self._worker_name = worker_name
        self._group_id = group_id
        self._worker_id = worker_id
        self._producer: AIOKafkaProducer | None = None

    async def _ensure_started(self) -> None:
        if self._producer is not None:
            return

        logger.info(
            "Initializing DLQ producer for permanent error routing",
            extra={"worker_name": self._worker_name},
        )

        producer_config = build_connection_config(self._config)
        producer_config.update(
            {
                "acks": "all",
                "enable_idempotence": True,
                "retry_backoff_ms": 1000,
            }
        )

        self._producer = AIOKafkaProducer(**producer_config)
        await self._producer.start()

    def build_dlq_record(
        self, pipeline_message: PipelineMessage, error: Exception, error_category: ErrorCategory
    ) -> dict:
        """Envelope preserving the original message and why it failed."""
        return {
            "original_topic": pipeline_message.topic,
            "original_partition": pipeline_message.partition,
            "original_offset": pipeline_message.offset,
            "original_key": _decode(pipeline_message.key),
            "original_value": _decode(pipeline_message.value),
            "original_headers": {
                k: _decode(v) if isinstance(v, bytes) else v
                for k, v in (pipeline_message.headers or [])
            },
            "original_timestamp": pipeline_message.timestamp,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "error_category": error_category.value,
            "consumer_group": self._group_id,
            "worker_id": self._worker_id,
            "domain": self._domain,
            "worker_name": self._worker_name,
            "dlq_timestamp": time.time(),
        }

    async def send(
        self, pipeline_message: PipelineMessage, error: Exception, error_category: ErrorCategory
    ) -> None:
        """Send failed message to the configured DLQ topic with full context."""
        await self._ensure_started()

        dlq_topic = self._config.get_dlq_topic(pipeline_message.topic)
        dlq_value = json.dumps(
            self.build_dlq_record(pipeline_message, error, error_category)
        ).encode("utf-8")
        dlq_key = pipeline_message.key or f"dlq-{pipeline_message.offset}".encode()
        dlq_headers = [
            ("dlq_source_topic", pipeline_message.topic.encode("utf-8")),
            ("dlq_error_category", error_category.value.encode("utf-8")),
            ("dlq_consumer_group", self._group_id.encode("utf-8")),
        ]

        try:
            metadata = await self._producer.send_and_wait(
                dlq_topic,
                key=dlq_key,
                value=dlq_value,
                headers=dlq_headers,
            )
        except Exception as e:
            logger.error(
                "Failed to send message to DLQ - batch will not be committed",
                extra={
                    "message_topic": pipeline_message.topic,
                    "message_partition": pipeline_message.partition,
                    "message_offset": pipeline_message.offset,
                    "error_category": error_category.value,
                },
                exc_info=True,
            )
            raise QueuePublishError(f"DLQ send to {dlq_topic} failed", cause=e) from e

        logger.info(
            "Message sent to DLQ",
            extra={
                "message_topic": pipeline_message.topic,
                "message_partition": pipeline_message.partition,
                "message_offset": pipeline_message.offset,
                "message_key": _decode(pipeline_message.key),
                "error_category": error_category.value,
                "error_type": type(error).__name__,
                "reason": f"{dlq_topic}:{metadata.partition}:{metadata.offset}",
            },
        )
        record_dlq_message(self._domain, error_category.value)

    async def stop(self) -> None:
        if self._producer is None:
            return

        try:
            await self._producer.flush()
            await self._producer.stop()
            logger.info("DLQ producer stopped")
        finally:
            self._producer = None
