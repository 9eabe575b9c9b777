"""Normalizer for Sanity document webhooks."""

import html
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
    safe_bool,
    safe_str,
    safe_str_id,
)
from core.errors.exceptions import PayloadValidationError

BODY_FIELDS = ("body", "content")


def _block_text(block: dict[str, Any]) -> str:
    children = block.get("children")
    if not isinstance(children, list):
        return ""
    return "".join(
        str(child.get("text", "")) for child in children if isinstance(child, dict)
    )


def render_portable_text(blocks: Any) -> str:
    """Render Portable Text blocks as escaped <p> elements.

    Only "block" entries with text spans are rendered; images, embeds and
    marks are dropped. Returns the empty placeholder when nothing renders.
    """
    if not isinstance(blocks, list):
        return EMPTY_MARKUP

    paragraphs = []
    for block in blocks:
        if not isinstance(block, dict) or block.get("_type", "block") != "block":
            continue
        text = _block_text(block)
        if text:
            paragraphs.append(f"<p>{html.escape(text)}</p>")

    if not paragraphs:
        return EMPTY_MARKUP
    return "<div>" + "".join(paragraphs) + "</div>"


def _slug(document: dict[str, Any], source_id: str) -> str:
    slug = document.get("slug")
    if isinstance(slug, dict):
        slug = slug.get("current")
    return safe_str(slug) or source_id


@register_normalizer
class SanityNormalizer(SourceNormalizer):
    """Sanity documents: `_id`, `_type`, `_updatedAt`, Portable Text bodies."""

    source = "sanity"

    def build_fields(self, payload: dict[str, Any]) -> dict[str, Any]:
        document = resolve_document(payload)
        source_id = safe_str_id(document.get("_id"))
        if source_id is None:
            raise PayloadValidationError(
                "Document has no _id", source=self.source, field="_id"
            )

        body = next(
            (document[key] for key in BODY_FIELDS if isinstance(document.get(key), list)),
            None,
        )
        operation = safe_str(payload.get("operation")) or ""

        return {
            "source_id": source_id,
            "type": safe_str(document.get("_type")) or "article",
            "slug": _slug(document, source_id),
            "title": safe_str(document.get("title")) or UNTITLED,
            "body_structured": json.dumps(document, sort_keys=True, default=str),
            "body_rendered": render_portable_text(body),
            "summary": safe_str(document.get("excerpt")) or safe_str(document.get("summary")),
            "updated_at": self.updated_at_or_now(document.get("_updatedAt"), "_updatedAt", source_id),
            "published_at": self.parse_timestamp(
                document.get("publishedAt") or document.get("_createdAt"), "publishedAt"
            ),
            "deleted": safe_bool(document.get("_deleted")) or operation.lower() == "delete",
        }
