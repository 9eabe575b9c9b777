"""Tests for the backfill cursor file."""

import json
from datetime import UTC, datetime

import pytest

from content_pipeline.backfill import BackfillCursor, JsonCursorStore


class TestBackfillCursor:

    def test_to_datetime_parses_z_suffix(self):
        cursor = BackfillCursor(source="wordpress", last_seen="2024-03-01T12:00:00Z")
        assert cursor.to_datetime() == datetime(2024, 3, 1, 12, tzinfo=UTC)

    def test_naive_timestamp_is_utc(self):
        cursor = BackfillCursor(source="wordpress", last_seen="2024-03-01T12:00:00")
        assert cursor.to_datetime().tzinfo is not None

    def test_dict_round_trip_defaults_updated_at(self):
        cursor = BackfillCursor.from_dict({"source": "wordpress", "last_seen": "2024-03-01T12:00:00Z"})
        assert cursor.updated_at == ""
        assert cursor.to_dict()["last_seen"] == "2024-03-01T12:00:00Z"


class TestJsonCursorStore:

    @pytest.mark.asyncio
    async def test_missing_file_loads_none(self, tmp_path):
        assert await JsonCursorStore(tmp_path / "cursor.json").load() is None

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path):
        store = JsonCursorStore(tmp_path / "state" / "cursor.json")

        saved = await store.save(BackfillCursor(source="wordpress", last_seen="2024-03-01T12:00:00Z"))
        loaded = await store.load()

        assert saved
        assert loaded.last_seen == "2024-03-01T12:00:00Z"
        assert loaded.updated_at
        assert not (tmp_path / "state" / "cursor.tmp").exists()

    @pytest.mark.asyncio
    async def test_corrupt_file_loads_none(self, tmp_path):
        path = tmp_path / "cursor.json"
        path.write_text("{not json")

        assert await JsonCursorStore(path).load() is None

    @pytest.mark.asyncio
    async def test_missing_key_loads_none(self, tmp_path):
        path = tmp_path / "cursor.json"
        path.write_text(json.dumps({"source": "wordpress"}))

        assert await JsonCursorStore(path).load() is None

    @pytest.mark.asyncio
    async def test_bad_timestamp_loads_none(self, tmp_path):
        path = tmp_path / "cursor.json"
        path.write_text(json.dumps({"source": "wordpress", "last_seen": "yesterday"}))

        assert await JsonCursorStore(path).load() is None

    @pytest.mark.asyncio
    async def test_unwritable_location_returns_false(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")

        store = JsonCursorStore(blocker / "cursor.json")

        assert await store.save(BackfillCursor(source="wordpress", last_seen="2024-03-01T12:00:00Z")) is False
