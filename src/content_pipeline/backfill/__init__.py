"""WordPress backfill: scheduled WPGraphQL delta polling onto the change topic."""

from content_pipeline.backfill.cursor import BackfillCursor, JsonCursorStore
from content_pipeline.backfill.wordpress_poller import (
    BackfillResult,
    WordPressBackfillPoller,
    WordPressBackfillWorker,
)

__all__ = [
    "BackfillCursor",
    "BackfillResult",
    "JsonCursorStore",
    "WordPressBackfillPoller",
    "WordPressBackfillWorker",
]
