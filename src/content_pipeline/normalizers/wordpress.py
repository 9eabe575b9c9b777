"""Normalizer for WPGraphQL post nodes."""

import json
from typing import Any

from content_pipeline.normalizers.base import (
    SourceNormalizer,
    register_normalizer,
    resolve_document,
)
from content_pipeline.normalizers.utils import (
    EMPTY_MARKUP,
    UNTITLED,
    safe_str,
    safe_str_id,
)
from core.errors.exceptions import PayloadValidationError


@register_normalizer
class WordPressNormalizer(SourceNormalizer):
    """WordPress posts from WPGraphQL, via the backfill poller or a webhook.

    GMT fields are preferred; the site-local fields carry no offset and are
    read as UTC.
    """

    source = "wordpress"

    def build_fields(self, payload: dict[str, Any]) -> dict[str, Any]:
        node = resolve_document(payload)
        source_id = safe_str_id(node.get("databaseId")) or safe_str_id(node.get("id"))
        if source_id is None:
            raise PayloadValidationError(
                "Node has no databaseId", source=self.source, field="databaseId"
            )

        content = safe_str(node.get("content"))
        typename = safe_str(node.get("__typename"))
        status = safe_str(node.get("status")) or ""

        return {
            "source_id": source_id,
            "type": typename.lower() if typename else "post",
            "slug": safe_str(node.get("slug")) or source_id,
            "title": safe_str(node.get("title")) or UNTITLED,
            "body_structured": json.dumps({"content": node.get("content")}, sort_keys=True),
            "body_rendered": content or EMPTY_MARKUP,
            "summary": safe_str(node.get("excerpt")),
            "updated_at": self.updated_at_or_now(
                node.get("modifiedGmt") or node.get("modified"), "modified", source_id
            ),
            "published_at": self.parse_timestamp(node.get("dateGmt") or node.get("date"), "date"),
            "deleted": status.lower() == "trash",
        }
