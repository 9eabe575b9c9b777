"""
pytest configuration for content pipeline tests.

Adds the src directory to the Python path and provides shared builders.
"""

import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from config.config import ContentConfig, SourceConfig  # noqa: E402
from content_pipeline.schemas.messages import ContentChangeMessage  # noqa: E402

SANITY_SECRET = "sanity-test-secret"
WORDPRESS_SECRET = "wordpress-test-secret"


def make_message(
    source_id: str = "doc-1",
    updated_at: datetime | str = "2024-01-01T10:00:00Z",
    slug: str = "hello-world",
    title: str = "Hello",
    deleted: bool = False,
    source: str = "sanity",
    content_type: str = "article",
) -> ContentChangeMessage:
    return ContentChangeMessage(
        source=source,
        source_id=source_id,
        type=content_type,
        slug=slug,
        title=title,
        body_structured='{"blocks": []}',
        body_rendered=f"<div><p>{title}</p></div>",
        updated_at=updated_at,
        published_at=datetime(2024, 1, 1, tzinfo=UTC),
        deleted=deleted,
    )


@pytest.fixture
def content_config() -> ContentConfig:
    """Config with both webhook sources and health probes disabled."""
    disabled = {"processing": {"health_enabled": False}}
    return ContentConfig(
        bootstrap_servers="localhost:9092",
        workers={
            "upsert_consumer": {"processing": {"health_enabled": False, "batch_size": 10}},
            "webhook_ingress": disabled,
            "read_gateway": disabled,
            "wordpress_backfill": disabled,
        },
        sources={
            "sanity": SourceConfig(
                name="sanity",
                secret=SANITY_SECRET,
                signature_scheme="sanity",
                signature_header="sanity-webhook-signature",
            ),
            "wordpress": SourceConfig(
                name="wordpress",
                secret=WORDPRESS_SECRET,
                signature_scheme="hmac-sha256",
                signature_header="X-Signature",
            ),
        },
    )


@pytest.fixture
def message_factory():
    """Builds ContentChangeMessage instances with overridable fields."""
    return make_message
