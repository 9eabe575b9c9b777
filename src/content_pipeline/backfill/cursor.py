"""Persistent cursor for the WordPress backfill poller.

The cursor is the newest `modified` timestamp already published, stored as
a small JSON file so a restarted poller only asks for newer deltas.

File format:
    {"source": "wordpress", "last_seen": "2024-03-01T12:00:00Z", "updated_at": "..."}
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path

from content_pipeline.schemas.messages import ensure_aware

logger = logging.getLogger(__name__)


@dataclass
class BackfillCursor:
    source: str
    last_seen: str  # ISO UTC timestamp of the newest published node
    updated_at: str = ""

    def to_datetime(self) -> datetime:
        return ensure_aware(datetime.fromisoformat(self.last_seen.replace("Z", "+00:00")))

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "BackfillCursor":
        return cls(
            source=data["source"],
            last_seen=data["last_seen"],
            updated_at=data.get("updated_at", ""),
        )


class JsonCursorStore:
    """Local JSON cursor file, written with a temp file plus os.replace."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> BackfillCursor | None:
        """Return the stored cursor, or None when absent or unreadable."""
        if not self._path.exists():
            logger.info("No backfill cursor found, starting from the newest page")
            return None

        try:
            with open(self._path) as f:
                data = json.load(f)
            cursor = BackfillCursor.from_dict(data)
            cursor.to_datetime()
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Failed to load backfill cursor, starting fresh",
                extra={"error": str(e)},
            )
            return None

        logger.info("Loaded backfill cursor", extra={"cursor": cursor.last_seen})
        return cursor

    async def save(self, cursor: BackfillCursor) -> bool:
        """Write the cursor atomically. Returns False if the write failed."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            cursor.updated_at = datetime.now(UTC).isoformat()

            temp_path = self._path.with_suffix(".tmp")
            with open(temp_path, "w") as f:
                json.dump(cursor.to_dict(), f, indent=2)

            os.replace(temp_path, self._path)
        except OSError as e:
            logger.error("Failed to save backfill cursor", extra={"error": str(e)})
            return False

        logger.debug("Saved backfill cursor", extra={"cursor": cursor.last_seen})
        return True
