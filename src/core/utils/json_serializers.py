"""Shared JSON serialization utilities for type-safe JSON encoding."""

from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import BaseModel


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as ISO-8601 UTC with a trailing Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _serialize_known_type(obj: Any) -> tuple[bool, Any]:
    """Try to serialize by known type. Returns (handled, result)."""
    if isinstance(obj, datetime):
        return True, format_timestamp(obj)
    if isinstance(obj, date):
        return True, obj.isoformat()
    if isinstance(obj, Decimal):
        return True, float(obj)
    if isinstance(obj, Path):
        return True, str(obj)
    if isinstance(obj, BaseModel):
        return True, obj.model_dump(mode="json")
    return False, None


def json_serializer(obj: Any) -> Any:
    """
    Type-safe JSON serializer for log records and queue payloads.

    - datetime → ISO 8601 UTC string
    - Decimal → float
    - Path → string
    - pydantic models → JSON-mode dump
    - Enums → value
    - Everything else → string (fallback)
    """
    handled, result = _serialize_known_type(obj)
    if handled:
        return result
    if hasattr(obj, "value"):
        return obj.value
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


__all__ = ["format_timestamp", "json_serializer"]
