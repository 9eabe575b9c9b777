"""
Shared value coercion helpers for source normalizers.

Upstream payloads are loosely typed JSON; these helpers turn them into the
strings and aware datetimes the change message expects.
"""

import logging
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

LOG_VALUE_TRUNCATE = 100

# Placeholders used when a source omits a field
UNTITLED = "untitled"
EMPTY_MARKUP = "<div></div>"


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s if s else None


def safe_str_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    s = str(value).strip()
    return s if s else None


def safe_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def parse_timestamp_dt(value: Any) -> datetime | None:
    """Parse an ISO-8601 value into an aware datetime; naive input is UTC.

    Raises ValueError for a non-empty value that cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {str(value)[:LOG_VALUE_TRUNCATE]}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def now_datetime() -> datetime:
    return datetime.now(UTC)
