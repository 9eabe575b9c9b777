"""Tests for core.utils.json_serializers module."""

import json
from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from core.types import ErrorCategory
from core.utils.json_serializers import format_timestamp, json_serializer


class TestFormatTimestamp:
    def test_utc_gets_z_suffix(self):
        assert format_timestamp(datetime(2024, 5, 1, 10, tzinfo=UTC)) == "2024-05-01T10:00:00Z"

    def test_offset_converted_to_utc(self):
        value = datetime(2024, 5, 1, 12, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2024-05-01T10:00:00Z"

    def test_naive_treated_as_utc(self):
        assert format_timestamp(datetime(2024, 5, 1, 10)) == "2024-05-01T10:00:00Z"


class TestJsonSerializer:
    def test_known_types(self):
        payload = {
            "at": datetime(2024, 5, 1, tzinfo=UTC),
            "day": date(2024, 5, 1),
            "amount": Decimal("1.5"),
            "path": Path("state/cursor.json"),
            "category": ErrorCategory.PERMANENT,
        }

        decoded = json.loads(json.dumps(payload, default=json_serializer))

        assert decoded == {
            "at": "2024-05-01T00:00:00Z",
            "day": "2024-05-01",
            "amount": 1.5,
            "path": "state/cursor.json",
            "category": "permanent",
        }

    def test_fallback_to_str(self):
        obj = object()
        assert json_serializer(obj) == str(obj)
