"""Pydantic models for change messages and canonical content records."""

from content_pipeline.schemas.messages import ContentChangeMessage, build_content_id
from content_pipeline.schemas.records import ContentRecord

__all__ = [
    "ContentChangeMessage",
    "ContentRecord",
    "build_content_id",
]
