"""
Idempotent, conflict-resolved upsert of change messages.

resolve_change() is the whole conflict policy and has no side effects:

1. A message whose updated_at is not strictly newer than the stored record
   is discarded (stale). Redelivery of an applied message lands here too.
2. A delete of an unknown id is discarded (nothing_to_delete).
3. A delete of a known id tombstones it: deleted_at=now, updated_at taken
   from the message, version + 1.
4. Anything else creates the record (version 1) or replaces every payload
   field, clears deleted_at and bumps version.

UpsertConsumer runs that policy inside the store's per-id transaction and
reports an explicit outcome. It never acknowledges queue messages itself.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import ValidationError

from content_pipeline.common.metrics import record_upsert_outcome
from content_pipeline.common.types import PipelineMessage
from content_pipeline.schemas.messages import ContentChangeMessage
from content_pipeline.schemas.records import ContentRecord
from content_pipeline.store.base import ContentStore
from core.errors.exceptions import PayloadValidationError, PipelineError
from core.errors.transport_classifier import TransportErrorClassifier

logger = logging.getLogger(__name__)


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    DISCARDED = "discarded"
    RETRY = "retry"
    PERMANENT_FAILURE = "permanent_failure"


# Resolution reasons
REASON_CREATED = "created"
REASON_UPDATED = "updated"
REASON_RESURRECTED = "resurrected"
REASON_DELETED = "deleted"
REASON_STALE = "stale"
REASON_NOTHING_TO_DELETE = "nothing_to_delete"


@dataclass(frozen=True)
class ChangeResolution:
    """Decision for one message against the currently stored record."""

    accepted: bool
    reason: str
    record: ContentRecord | None = None


@dataclass(frozen=True)
class ApplyResult:
    outcome: ApplyOutcome
    content_id: str | None
    reason: str
    record: ContentRecord | None = None
    error: Exception | None = None


def utc_now() -> datetime:
    return datetime.now(UTC)


def resolve_change(
    current: ContentRecord | None,
    message: ContentChangeMessage,
    now: datetime,
) -> ChangeResolution:
    if current is not None and current.updated_at >= message.updated_at:
        return ChangeResolution(accepted=False, reason=REASON_STALE)

    if message.deleted:
        if current is None:
            return ChangeResolution(accepted=False, reason=REASON_NOTHING_TO_DELETE)
        tombstone = current.model_copy(
            update={
                "deleted_at": now,
                "updated_at": message.updated_at,
                "version": current.version + 1,
            }
        )
        return ChangeResolution(accepted=True, reason=REASON_DELETED, record=tombstone)

    if current is None:
        return ChangeResolution(
            accepted=True,
            reason=REASON_CREATED,
            record=ContentRecord.from_message(message, version=1),
        )

    reason = REASON_RESURRECTED if current.is_deleted else REASON_UPDATED
    return ChangeResolution(
        accepted=True,
        reason=reason,
        record=ContentRecord.from_message(message, version=current.version + 1),
    )


class UpsertConsumer:
    """Applies change messages to the canonical store."""

    def __init__(self, store: ContentStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock

    async def apply(self, message: ContentChangeMessage) -> ApplyResult:
        content_id = message.content_id
        try:
            async with self.store.transaction(content_id) as tx:
                resolution = resolve_change(tx.current, message, self._clock())
                if resolution.accepted:
                    tx.save(resolution.record)
                stored_updated_at = tx.current.updated_at if tx.current else None
        except Exception as e:
            return self._failure(content_id, e)

        if not resolution.accepted:
            logger.debug(
                "Change discarded",
                extra={
                    "content_id": content_id,
                    "reason": resolution.reason,
                    "updated_at": message.updated_at,
                    "stored_updated_at": stored_updated_at,
                },
            )
            record_upsert_outcome(ApplyOutcome.DISCARDED.value)
            return ApplyResult(ApplyOutcome.DISCARDED, content_id, resolution.reason)

        logger.info(
            "Change applied",
            extra={
                "content_id": content_id,
                "outcome": resolution.reason,
                "version": resolution.record.version,
                "updated_at": message.updated_at,
            },
        )
        record_upsert_outcome(ApplyOutcome.APPLIED.value)
        return ApplyResult(
            ApplyOutcome.APPLIED, content_id, resolution.reason, record=resolution.record
        )

    def _failure(self, content_id: str, error: Exception) -> ApplyResult:
        if not isinstance(error, PipelineError):
            error = TransportErrorClassifier.classify_store_error(error, {"content_id": content_id})

        if error.is_retryable:
            logger.warning(
                "Store write failed, message will be redelivered",
                extra={
                    "content_id": content_id,
                    "error_category": error.category.value,
                    "error": str(error),
                },
            )
            record_upsert_outcome(ApplyOutcome.RETRY.value)
            return ApplyResult(ApplyOutcome.RETRY, content_id, "store_unavailable", error=error)

        logger.error(
            "Change cannot be applied",
            extra={
                "content_id": content_id,
                "error_category": error.category.value,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        record_upsert_outcome(ApplyOutcome.PERMANENT_FAILURE.value)
        return ApplyResult(
            ApplyOutcome.PERMANENT_FAILURE, content_id, "rejected_by_store", error=error
        )

    @staticmethod
    def parse(raw: PipelineMessage) -> ContentChangeMessage:
        """Decode queue bytes into a change message.

        Raises:
            PayloadValidationError: empty value, invalid JSON or missing identity
        """
        if not raw.value:
            raise PayloadValidationError("Message has no value")
        try:
            return ContentChangeMessage.model_validate_json(raw.value)
        except ValidationError as e:
            raise PayloadValidationError(
                f"Message is not a valid change message: {e.error_count()} error(s)",
                cause=e,
            ) from e

    async def apply_raw(self, raw: PipelineMessage) -> ApplyResult:
        try:
            message = self.parse(raw)
        except PayloadValidationError as e:
            logger.error(
                "Unparseable change message",
                extra={
                    "message_topic": raw.topic,
                    "message_partition": raw.partition,
                    "message_offset": raw.offset,
                    "message_key": raw.key_str,
                    "error": str(e),
                },
            )
            record_upsert_outcome(ApplyOutcome.PERMANENT_FAILURE.value)
            return ApplyResult(
                ApplyOutcome.PERMANENT_FAILURE, raw.key_str, "unparseable", error=e
            )
        return await self.apply(message)
