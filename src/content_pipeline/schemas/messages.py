"""
Change message schema for the content changes topic.

Every upstream source is normalized into a ContentChangeMessage before it is
published. Messages are keyed by content_id so all changes for one record
share a partition, but consumers never rely on that ordering.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_serializer, field_validator

from core.utils.json_serializers import format_timestamp


def build_content_id(source: str, source_id: str) -> str:
    return f"{source}:{source_id}"


def ensure_aware(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC so comparisons never mix the two."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class ContentChangeMessage(BaseModel):
    """Canonical change event for one piece of content.

    Attributes:
        source: Upstream source name (sanity, wordpress)
        source_id: Identifier of the document in its source
        type: Content kind (article, recipe, post)
        slug: Routing key within a type; reads pick the newest live holder
        title: Display title
        body_structured: Serialized JSON document
        body_rendered: Derived markup
        summary: Optional short summary
        updated_at: Source logical clock used for conflict resolution
        published_at: Passthrough publication timestamp
        deleted: True when the source reports a deletion

    Example:
        >>> msg = ContentChangeMessage(
        ...     source="sanity",
        ...     source_id="abc",
        ...     type="article",
        ...     slug="hello",
        ...     title="Hello",
        ...     body_structured="{}",
        ...     body_rendered="<div></div>",
        ...     updated_at="2024-05-01T10:00:00Z",
        ... )
        >>> msg.content_id
        'sanity:abc'
    """

    source: str = Field(..., description="Upstream source name", min_length=1)
    source_id: str = Field(..., description="Document id within the source", min_length=1)
    type: str = Field(..., description="Content kind", min_length=1)
    slug: str = Field(..., description="Routing key within a type", min_length=1)
    title: str = Field(default="untitled", description="Display title")
    body_structured: str = Field(default="{}", description="Serialized JSON document")
    body_rendered: str = Field(default="<div></div>", description="Derived markup")
    summary: str | None = Field(default=None, description="Short summary")
    updated_at: datetime = Field(..., description="Source logical clock")
    published_at: datetime | None = Field(default=None, description="Publication timestamp")
    deleted: bool = Field(default=False, description="Source reported a deletion")

    model_config = {"coerce_numbers_to_str": True}

    @field_validator("source", "source_id", "type", "slug")
    @classmethod
    def validate_non_empty_strings(cls, v: str, info) -> str:
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty or whitespace")
        return v.strip()

    @field_validator("updated_at", "published_at")
    @classmethod
    def validate_timezone(cls, v: datetime | None) -> datetime | None:
        return ensure_aware(v)

    @field_serializer("updated_at", "published_at")
    def serialize_timestamps(self, value: datetime | None) -> str | None:
        return format_timestamp(value) if value is not None else None

    @property
    def content_id(self) -> str:
        return build_content_id(self.source, self.source_id)
