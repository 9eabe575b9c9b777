"""Upsert consumer: conflict resolution and the batch worker that drives it."""

from content_pipeline.consumer.upsert import (
    ApplyOutcome,
    ApplyResult,
    ChangeResolution,
    UpsertConsumer,
    resolve_change,
)
from content_pipeline.consumer.worker import UpsertWorker

__all__ = [
    "ApplyOutcome",
    "ApplyResult",
    "ChangeResolution",
    "UpsertConsumer",
    "UpsertWorker",
    "resolve_change",
]
