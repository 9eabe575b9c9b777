"""Transport message types shared by producers, consumers and handlers."""

from dataclasses import dataclass, field

__all__ = [
    "PipelineMessage",
    "ProduceResult",
    "BatchResult",
    "from_consumer_record",
]


@dataclass(frozen=True)
class PipelineMessage:
    """Message received from the queue, decoupled from aiokafka's record type."""

    topic: str
    partition: int
    offset: int
    timestamp: int
    key: bytes | None = None
    value: bytes | None = None
    headers: list[tuple[str, bytes]] | None = None

    @property
    def key_str(self) -> str | None:
        return self.key.decode("utf-8", errors="replace") if self.key else None


@dataclass(frozen=True)
class ProduceResult:
    """Confirmation of a published message."""

    topic: str
    partition: int
    offset: int


@dataclass
class BatchResult:
    """Structured result from a batch handler with per-message failure reporting.

    commit=False leaves the whole batch uncommitted so it is redelivered.
    permanent_failures are dead-lettered on the pass that commits.
    retry_failures name the messages a redelivery would retry; they are
    dead-lettered only once the redelivery bound is used up. Empty means
    every message not permanently failed.
    """

    commit: bool
    permanent_failures: list[tuple[PipelineMessage, Exception]] = field(default_factory=list)
    retry_failures: list[tuple[PipelineMessage, Exception]] = field(default_factory=list)


def from_consumer_record(record) -> PipelineMessage:
    """Convert aiokafka ConsumerRecord to PipelineMessage."""
    headers = None
    if getattr(record, "headers", None):
        headers = [(k, v) for k, v in record.headers]

    return PipelineMessage(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        timestamp=record.timestamp,
        key=record.key,
        value=record.value,
        headers=headers,
    )
