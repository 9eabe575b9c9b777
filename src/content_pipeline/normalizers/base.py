"""Base normalizer and source registry.

A normalizer maps one parsed upstream payload to exactly one
ContentChangeMessage. Each source registers a SourceNormalizer subclass
under its name; downstream code never branches on the source.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from content_pipeline.normalizers.utils import now_datetime, parse_timestamp_dt
from content_pipeline.schemas.messages import ContentChangeMessage
from core.errors.exceptions import PayloadValidationError

logger = logging.getLogger(__name__)

# Wrapper keys checked in priority order before falling back to the payload itself
DOCUMENT_WRAPPER_KEYS = ("after", "document")


def resolve_document(payload: dict[str, Any]) -> dict[str, Any]:
    """Pick the effective document: transition.to, after, document, then the payload."""
    transition = payload.get("transition")
    if isinstance(transition, dict) and isinstance(transition.get("to"), dict):
        return transition["to"]
    for key in DOCUMENT_WRAPPER_KEYS:
        candidate = payload.get(key)
        if isinstance(candidate, dict):
            return candidate
    return payload


class SourceNormalizer(ABC):
    """Maps upstream payloads of one source kind into change messages."""

    source: str = ""

    def __init__(self, clock=now_datetime):
        self._clock = clock

    @abstractmethod
    def build_fields(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return the ContentChangeMessage fields for a payload (without source)."""

    def normalize(self, payload: Any) -> ContentChangeMessage:
        if not isinstance(payload, dict):
            raise PayloadValidationError(
                "Payload must be a JSON object",
                source=self.source,
            )

        fields = self.build_fields(payload)
        try:
            return ContentChangeMessage(source=self.source, **fields)
        except ValidationError as e:
            raise PayloadValidationError(
                f"Payload does not form a valid change message: {e.error_count()} error(s)",
                source=self.source,
                cause=e,
            ) from e

    def parse_timestamp(self, value: Any, field: str) -> datetime | None:
        try:
            return parse_timestamp_dt(value)
        except ValueError as e:
            raise PayloadValidationError(
                f"Unparseable timestamp in {field}",
                source=self.source,
                field=field,
                cause=e,
            ) from e

    def updated_at_or_now(self, value: Any, field: str, source_id: str) -> datetime:
        """Source clock, falling back to wall-clock now when the source omits it."""
        parsed = self.parse_timestamp(value, field)
        if parsed is not None:
            return parsed
        logger.warning(
            "Source omitted updated timestamp, falling back to wall clock",
            extra={"source": self.source, "source_id": source_id},
        )
        return self._clock()


# Module-level normalizer registry
_NORMALIZERS: dict[str, type[SourceNormalizer]] = {}


def register_normalizer(cls: type[SourceNormalizer]) -> type[SourceNormalizer]:
    """Decorator to register a normalizer class under its source name."""
    if not cls.source:
        raise ValueError(f"{cls.__name__} must define a source name")
    if cls.source in _NORMALIZERS:
        logger.warning(
            "Overwriting normalizer registration",
            extra={"source": cls.source, "reason": _NORMALIZERS[cls.source].__name__},
        )
    _NORMALIZERS[cls.source] = cls
    return cls


def get_normalizer(source: str) -> SourceNormalizer | None:
    normalizer_class = _NORMALIZERS.get(source)
    if normalizer_class is None:
        return None
    return normalizer_class()


def registered_sources() -> list[str]:
    return sorted(_NORMALIZERS)


def normalize(source: str, payload: Any) -> ContentChangeMessage:
    """Normalize a payload with the normalizer registered for source."""
    normalizer = get_normalizer(source)
    if normalizer is None:
        raise PayloadValidationError(f"No normalizer registered for source '{source}'", source=source)
    return normalizer.normalize(payload)
