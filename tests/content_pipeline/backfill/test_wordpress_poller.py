"""Tests for the WordPress backfill poller against a fake WPGraphQL endpoint."""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from config.config import BackfillConfig
from content_pipeline.backfill import (
    BackfillCursor,
    JsonCursorStore,
    WordPressBackfillPoller,
    WordPressBackfillWorker,
)
from content_pipeline.backfill.wordpress_poller import _http_error
from core.errors.exceptions import (
    AuthError,
    PermanentError,
    QueuePublishError,
    TransientError,
)
from core.resilience.retry import RetryConfig

NO_RETRY = RetryConfig(max_attempts=1)
NOW = datetime(2024, 6, 1, tzinfo=UTC)


def _node(database_id: int, modified: str, slug: str | None = None, status: str = "publish") -> dict:
    return {
        "__typename": "Post",
        "databaseId": database_id,
        "dateGmt": "2024-01-01T00:00:00",
        "modifiedGmt": modified,
        "slug": slug or f"post-{database_id}",
        "title": f"Post {database_id}",
        "content": "<p>body</p>",
        "excerpt": None,
        "status": status,
    }


class FakeGraphQL:
    """Serves a canned response and records the requests it saw."""

    def __init__(self, payload=None, status: int = 200):
        self.payload = payload if payload is not None else {"data": {"posts": {"nodes": []}}}
        self.status = status
        self.requests: list[dict] = []
        self.auth_headers: list[str | None] = []

    def set_nodes(self, nodes: list[dict]) -> None:
        self.payload = {"data": {"posts": {"nodes": nodes}}}

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append(await request.json())
        self.auth_headers.append(request.headers.get("Authorization"))
        return web.Response(
            text=json.dumps(self.payload), status=self.status, content_type="application/json"
        )


@pytest.fixture
async def graphql():
    fake = FakeGraphQL()
    app = web.Application()
    app.router.add_post("/graphql", fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.url = str(server.make_url("/graphql"))
    yield fake
    await server.close()


@pytest.fixture
def publisher():
    publisher = AsyncMock()
    publisher.send = AsyncMock()
    return publisher


@pytest.fixture
def cursor_store(tmp_path):
    return JsonCursorStore(tmp_path / "cursor.json")


@pytest.fixture
async def make_poller(graphql, publisher, cursor_store):
    pollers = []

    def factory(**config_overrides):
        config = BackfillConfig(graphql_endpoint=graphql.url, page_size=10, **config_overrides)
        poller = WordPressBackfillPoller(
            config,
            publisher,
            cursor_store,
            topic="content.changes",
            retry_config=NO_RETRY,
            clock=lambda: NOW,
        )
        pollers.append(poller)
        return poller

    yield factory
    for poller in pollers:
        await poller.close()


class TestPollOnce:

    @pytest.mark.asyncio
    async def test_first_poll_publishes_page_and_sets_cursor(
        self, graphql, publisher, cursor_store, make_poller
    ):
        graphql.set_nodes(
            [_node(2, "2024-03-02T00:00:00"), _node(1, "2024-03-01T00:00:00")]
        )

        result = await make_poller().poll_once()

        assert (result.fetched, result.published, result.skipped, result.failed) == (2, 2, 0, 0)
        assert result.cursor == "2024-03-02T00:00:00Z"
        assert (await cursor_store.load()).last_seen == "2024-03-02T00:00:00Z"

        topic, key, message = publisher.send.call_args_list[0].args
        assert topic == "content.changes"
        assert key == "wordpress:2"
        assert message.slug == "post-2"
        assert graphql.requests[0]["variables"] == {"first": 10}

    @pytest.mark.asyncio
    async def test_nodes_not_newer_than_cursor_are_skipped(
        self, graphql, publisher, cursor_store, make_poller
    ):
        await cursor_store.save(BackfillCursor(source="wordpress", last_seen="2024-03-01T00:00:00Z"))
        graphql.set_nodes(
            [_node(3, "2024-03-03T00:00:00"), _node(1, "2024-03-01T00:00:00")]
        )

        result = await make_poller().poll_once()

        assert result.published == 1
        assert result.skipped == 1
        assert result.cursor == "2024-03-03T00:00:00Z"
        assert publisher.send.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_page_keeps_existing_cursor(self, graphql, cursor_store, make_poller):
        await cursor_store.save(BackfillCursor(source="wordpress", last_seen="2024-03-01T00:00:00Z"))

        result = await make_poller().poll_once()

        assert result.cursor == "2024-03-01T00:00:00Z"

    @pytest.mark.asyncio
    async def test_empty_first_page_pins_cursor_to_now(self, graphql, cursor_store, make_poller):
        result = await make_poller().poll_once()

        assert result.cursor == "2024-06-01T00:00:00Z"

    @pytest.mark.asyncio
    async def test_trashed_post_is_published_as_delete(self, graphql, publisher, make_poller):
        graphql.set_nodes([_node(4, "2024-03-04T00:00:00", status="trash")])

        await make_poller().poll_once()

        message = publisher.send.call_args.args[2]
        assert message.deleted

    @pytest.mark.asyncio
    async def test_invalid_node_is_counted_and_skipped(self, graphql, publisher, make_poller):
        graphql.set_nodes([{"slug": "no-id"}, _node(5, "2024-03-05T00:00:00")])

        result = await make_poller().poll_once()

        assert result.failed == 1
        assert result.published == 1

    @pytest.mark.asyncio
    async def test_publish_failure_leaves_cursor_untouched(
        self, graphql, publisher, cursor_store, make_poller
    ):
        publisher.send.side_effect = QueuePublishError("broker down")
        graphql.set_nodes([_node(6, "2024-03-06T00:00:00")])

        with pytest.raises(QueuePublishError):
            await make_poller().poll_once()

        assert await cursor_store.load() is None

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self, graphql, make_poller):
        await make_poller(graphql_token="wp-token").poll_once()

        assert graphql.auth_headers == ["Bearer wp-token"]


class TestGraphQLErrors:

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, graphql, make_poller):
        graphql.status = 503

        with pytest.raises(TransientError):
            await make_poller().poll_once()

    @pytest.mark.asyncio
    async def test_unauthorized_is_auth_error(self, graphql, make_poller):
        graphql.status = 401

        with pytest.raises(AuthError):
            await make_poller().poll_once()

    @pytest.mark.asyncio
    async def test_graphql_errors_are_permanent(self, graphql, make_poller):
        graphql.payload = {"errors": [{"message": "Cannot query field"}]}

        with pytest.raises(PermanentError):
            await make_poller().poll_once()

    @pytest.mark.asyncio
    async def test_non_object_body_is_permanent(self, graphql, make_poller):
        graphql.payload = ["not", "an", "object"]

        with pytest.raises(PermanentError):
            await make_poller().poll_once()

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, graphql, publisher, cursor_store):
        graphql.status = 502
        poller = WordPressBackfillPoller(
            BackfillConfig(graphql_endpoint=graphql.url),
            publisher,
            cursor_store,
            topic="content.changes",
            retry_config=RetryConfig(max_attempts=2, base_delay=0.01, max_delay=0.01),
        )
        try:
            with pytest.raises(TransientError):
                await poller.poll_once()
        finally:
            await poller.close()

        assert len(graphql.requests) == 2

    def test_http_error_mapping(self):
        assert isinstance(_http_error(401, "x"), AuthError)
        assert isinstance(_http_error(404, "x"), PermanentError)
        assert isinstance(_http_error(429, "x"), TransientError)
        assert isinstance(_http_error(500, "x"), TransientError)


class TestValidation:

    def test_endpoint_must_be_http(self, publisher, cursor_store):
        with pytest.raises(ValueError, match="http"):
            WordPressBackfillPoller(
                BackfillConfig(graphql_endpoint="ftp://wp.example.com/graphql"),
                publisher,
                cursor_store,
                topic="content.changes",
            )


class TestWordPressBackfillWorker:

    def test_builds_poller_from_config(self, content_config, cursor_store):
        content_config.backfill.graphql_endpoint = "https://wp.example.com/graphql"

        worker = WordPressBackfillWorker(
            content_config, producer=AsyncMock(), cursor_store=cursor_store
        )

        assert worker.poller.topic == "content.changes"
        assert worker.poller.cursor_store is cursor_store
        assert not worker.health_server.is_enabled
