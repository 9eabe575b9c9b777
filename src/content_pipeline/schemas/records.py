"""Canonical content record held by the store and served by the read gateway."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_serializer, field_validator

from content_pipeline.schemas.messages import ContentChangeMessage, ensure_aware
from core.utils.json_serializers import format_timestamp


class ContentRecord(BaseModel):
    """One canonical piece of content, keyed by "{source}:{source_id}".

    version is assigned by the store and increases on every accepted write.
    deleted_at marks a tombstone; the record keeps its last payload so a
    later resurrection can replace it.
    """

    id: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    source_id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    title: str
    body_structured: str
    body_rendered: str
    summary: str | None = None
    updated_at: datetime
    published_at: datetime | None = None
    version: int = Field(default=1, ge=1)
    deleted_at: datetime | None = None

    model_config = {"frozen": True}

    @field_validator("updated_at", "published_at", "deleted_at")
    @classmethod
    def validate_timezone(cls, v: datetime | None) -> datetime | None:
        return ensure_aware(v)

    @field_serializer("updated_at", "published_at", "deleted_at")
    def serialize_timestamps(self, value: datetime | None) -> str | None:
        return format_timestamp(value) if value is not None else None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_message(cls, message: ContentChangeMessage, version: int = 1) -> "ContentRecord":
        """Build a live record carrying every payload field of the message."""
        return cls(
            id=message.content_id,
            source=message.source,
            source_id=message.source_id,
            type=message.type,
            slug=message.slug,
            title=message.title,
            body_structured=message.body_structured,
            body_rendered=message.body_rendered,
            summary=message.summary,
            updated_at=message.updated_at,
            published_at=message.published_at,
            version=version,
            deleted_at=None,
        )

    def to_view(self) -> dict[str, Any]:
        """JSON-ready representation returned by the read gateway."""
        return self.model_dump(mode="json")
