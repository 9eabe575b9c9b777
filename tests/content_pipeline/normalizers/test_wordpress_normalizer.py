"""Tests for the WordPress (WPGraphQL) normalizer."""

import json
from datetime import UTC, datetime

import pytest

from content_pipeline.normalizers.wordpress import WordPressNormalizer
from core.errors.exceptions import PayloadValidationError


def _node(**overrides):
    node = {
        "databaseId": 42,
        "date": "2024-03-01T09:00:00",
        "modified": "2024-03-02T10:30:00",
        "slug": "spring-menu",
        "title": "Spring Menu",
        "content": "<p>Asparagus</p>",
        "status": "publish",
    }
    node.update(overrides)
    return node


class TestWordPressNormalizer:

    def test_maps_node_fields(self):
        message = WordPressNormalizer().normalize(_node())

        assert message.content_id == "wordpress:42"
        assert message.source_id == "42"
        assert message.type == "post"
        assert message.slug == "spring-menu"
        assert message.title == "Spring Menu"
        assert message.body_rendered == "<p>Asparagus</p>"
        assert json.loads(message.body_structured) == {"content": "<p>Asparagus</p>"}
        assert message.deleted is False

    def test_naive_local_times_are_read_as_utc(self):
        message = WordPressNormalizer().normalize(_node())
        assert message.updated_at == datetime(2024, 3, 2, 10, 30, tzinfo=UTC)
        assert message.published_at == datetime(2024, 3, 1, 9, 0, tzinfo=UTC)

    def test_gmt_fields_preferred(self):
        message = WordPressNormalizer().normalize(
            _node(modifiedGmt="2024-03-02T08:30:00", dateGmt="2024-03-01T07:00:00")
        )
        assert message.updated_at == datetime(2024, 3, 2, 8, 30, tzinfo=UTC)
        assert message.published_at == datetime(2024, 3, 1, 7, 0, tzinfo=UTC)

    def test_trash_status_is_a_delete(self):
        assert WordPressNormalizer().normalize(_node(status="TRASH")).deleted is True

    def test_typename_sets_type(self):
        assert WordPressNormalizer().normalize(_node(__typename="Page")).type == "page"

    def test_falls_back_to_id_without_database_id(self):
        node = _node(id="cG9zdDo0Mg==")
        del node["databaseId"]
        assert WordPressNormalizer().normalize(node).source_id == "cG9zdDo0Mg=="

    def test_missing_identity_is_rejected(self):
        node = _node()
        del node["databaseId"]
        with pytest.raises(PayloadValidationError):
            WordPressNormalizer().normalize(node)

    def test_empty_content_renders_placeholder(self):
        message = WordPressNormalizer().normalize(_node(content=None))
        assert message.body_rendered == "<div></div>"
        assert json.loads(message.body_structured) == {"content": None}

    def test_excerpt_becomes_summary(self):
        assert WordPressNormalizer().normalize(_node(excerpt="Short")).summary == "Short"

    def test_post_wrapper_via_document_key(self):
        assert WordPressNormalizer().normalize({"document": _node(databaseId=7)}).source_id == "7"
