"""Message producer for change messages and other JSON payloads."""

import asyncio
import json
import logging
from typing import Any

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel

from config.config import ContentConfig
from content_pipeline.common.kafka_config import build_connection_config
from content_pipeline.common.metrics import (
    record_message_produced,
    record_producer_error,
    update_connection_status,
)
from content_pipeline.common.types import ProduceResult
from core.errors.exceptions import QueuePublishError
from core.errors.transport_classifier import TransportErrorClassifier
from core.utils.json_serializers import json_serializer

logger = logging.getLogger(__name__)


def _encode_value(value: BaseModel | dict[str, Any] | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json().encode("utf-8")
    return json.dumps(value, default=json_serializer).encode("utf-8")


def _encode_key(key: str | bytes | None) -> bytes | None:
    if key is None or isinstance(key, bytes):
        return key
    return key.encode("utf-8")


class MessageProducer:
    """Async message producer with worker-specific config.

    Producer settings come from config.get_worker_config(worker_name, "producer"),
    which merges worker overrides onto producer_defaults.
    """

    def __init__(
        self,
        config: ContentConfig,
        domain: str,
        worker_name: str,
    ):
        self.config = config
        self.domain = domain
        self.worker_name = worker_name
        self._producer: AIOKafkaProducer | None = None
        self._started = False
        self.producer_config = config.get_worker_config(worker_name, "producer")

    def _resolve_acks_and_idempotence(self) -> tuple[Any, bool]:
        """Resolve acks value and idempotence setting, enforcing mutual constraints."""
        acks_value = self.producer_config.get("acks", "all")
        if isinstance(acks_value, str) and acks_value.isdigit():
            acks_value = int(acks_value)

        enable_idempotence = self.producer_config.get("enable_idempotence", True)
        if enable_idempotence and acks_value != "all":
            logger.warning(
                "Overriding acks to 'all' because enable_idempotence=True requires it",
                extra={"reason": f"configured_acks={acks_value}"},
            )
            acks_value = "all"

        return acks_value, enable_idempotence

    def _build_kafka_config(self) -> dict[str, Any]:
        acks_value, enable_idempotence = self._resolve_acks_and_idempotence()

        kafka_config = build_connection_config(self.config)
        kafka_config.update(
            {
                "client_id": f"{self.domain}-{self.worker_name}",
                "acks": acks_value,
                "enable_idempotence": enable_idempotence,
                "retry_backoff_ms": self.producer_config.get("retry_backoff_ms", 1000),
            }
        )

        if "linger_ms" in self.producer_config:
            kafka_config["linger_ms"] = self.producer_config["linger_ms"]
        if "batch_size" in self.producer_config:
            kafka_config["max_batch_size"] = self.producer_config["batch_size"]
        if "compression_type" in self.producer_config:
            compression = self.producer_config["compression_type"]
            kafka_config["compression_type"] = None if compression == "none" else compression

        return kafka_config

    async def start(self) -> None:
        if self._started:
            logger.warning("Producer already started, ignoring duplicate start call")
            return

        kafka_config = self._build_kafka_config()
        logger.info(
            "Starting message producer: bootstrap_servers=%s, security_protocol=%s, sasl_password_set=%s",
            kafka_config.get("bootstrap_servers"),
            kafka_config.get("security_protocol", "PLAINTEXT"),
            bool(kafka_config.get("sasl_plain_password")),
        )

        self._producer = AIOKafkaProducer(**kafka_config)
        await self._producer.start()
        self._started = True
        update_connection_status("producer", connected=True)

    async def stop(self) -> None:
        if self._producer is None:
            logger.debug("Producer already stopped")
            return

        logger.info("Stopping message producer")
        try:
            loop = asyncio.get_running_loop()
            if loop.is_closed():
                logger.warning("Event loop is closed, skipping graceful producer shutdown")
                return
            if self._started:
                await self._producer.flush()
            await self._producer.stop()
            logger.info("Message producer stopped")
        finally:
            update_connection_status("producer", connected=False)
            self._producer = None
            self._started = False

    async def send(
        self,
        topic: str,
        key: str | bytes | None,
        value: BaseModel | dict[str, Any] | bytes,
        headers: dict[str, str] | None = None,
    ) -> ProduceResult:
        """Publish one message and wait for the broker acknowledgement.

        Raises:
            RuntimeError: if the producer was never started
            QueuePublishError: or another classified PipelineError on failure
        """
        if not self._started or self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")

        value_bytes = _encode_value(value)
        headers_list = [(k, v.encode("utf-8")) for k, v in headers.items()] if headers else None

        try:
            metadata = await self._producer.send_and_wait(
                topic,
                key=_encode_key(key),
                value=value_bytes,
                headers=headers_list,
            )
        except Exception as e:
            record_message_produced(topic, success=False)
            record_producer_error(topic, type(e).__name__)
            classified = TransportErrorClassifier.classify_producer_error(e, {"topic": topic})
            logger.error(
                "Failed to send message",
                extra={
                    "message_topic": topic,
                    "message_key": key if isinstance(key, str) else None,
                    "error_category": classified.category.value,
                    "error": str(e),
                },
            )
            if classified.is_retryable:
                raise QueuePublishError(f"Publish to {topic} failed", cause=e) from e
            raise classified from e

        record_message_produced(topic, success=True)
        logger.debug(
            "Message sent",
            extra={
                "message_topic": metadata.topic,
                "message_partition": metadata.partition,
                "message_offset": metadata.offset,
            },
        )
        return ProduceResult(
            topic=metadata.topic,
            partition=metadata.partition,
            offset=metadata.offset,
        )

    async def flush(self) -> None:
        if not self._started or self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")
        await self._producer.flush()

    @property
    def is_started(self) -> bool:
        return self._started and self._producer is not None


__all__ = [
    "MessageProducer",
    "ProduceResult",
]
