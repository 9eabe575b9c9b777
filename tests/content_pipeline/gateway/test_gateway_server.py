"""Tests for the read gateway HTTP handlers."""

import pytest
from aiohttp.test_utils import TestClient, TestServer
from conftest import make_message

from content_pipeline.cache import TTLContentCache
from content_pipeline.gateway import ReadGateway, ReadGatewayApp
from content_pipeline.gateway.server import PREVIEW_TOKEN_HEADER, ReadGatewayWorker
from content_pipeline.schemas.records import ContentRecord
from content_pipeline.store import InMemoryContentStore
from core.errors.exceptions import TransientStoreError


async def _put(store, message):
    async with store.transaction(message.content_id) as tx:
        tx.save(ContentRecord.from_message(message))


@pytest.fixture
def store():
    return InMemoryContentStore(replica_lag=True)


def _client(store, preview_token: str = "", cache=None) -> TestClient:
    gateway = ReadGateway(store, cache or TTLContentCache(), ttl_seconds=45)
    app = ReadGatewayApp(gateway, preview_token=preview_token).create_app()
    return TestClient(TestServer(app))


class TestPublicEndpoint:

    @pytest.mark.asyncio
    async def test_found(self, store):
        await _put(store, make_message())
        store.sync_replica()

        async with _client(store) as client:
            resp = await client.get("/content/article/hello-world")
            assert resp.status == 200
            assert resp.headers["Cache-Control"] == "public, max-age=45"
            body = await resp.json()

        assert body["id"] == "sanity:doc-1"
        assert body["updated_at"] == "2024-01-01T10:00:00Z"
        assert body["deleted_at"] is None

    @pytest.mark.asyncio
    async def test_not_found(self, store):
        async with _client(store) as client:
            resp = await client.get("/content/article/missing")
            assert resp.status == 404
            assert resp.headers["Cache-Control"] == "no-store"
            assert await resp.json() == {"error": "not found"}

    @pytest.mark.asyncio
    async def test_by_id(self, store):
        await _put(store, make_message())
        store.sync_replica()

        async with _client(store) as client:
            resp = await client.get("/content/id/sanity:doc-1")
            assert resp.status == 200
            assert (await resp.json())["slug"] == "hello-world"

    @pytest.mark.asyncio
    async def test_store_unavailable(self):
        class DownStore(InMemoryContentStore):
            async def fetch_by_slug(self, content_type, slug, consistency=None):
                raise TransientStoreError("replica down")

        async with _client(DownStore()) as client:
            resp = await client.get("/content/article/hello-world")
            assert resp.status == 503
            assert resp.headers["Cache-Control"] == "no-store"


class TestPreviewEndpoint:

    @pytest.mark.asyncio
    async def test_preview_sees_unreplicated_write(self, store):
        await _put(store, make_message(title="Draft"))

        async with _client(store) as client:
            public = await client.get("/content/article/hello-world")
            preview = await client.get("/content/article/hello-world?preview=1")
            assert public.status == 404
            assert preview.status == 200
            assert preview.headers["Cache-Control"] == "no-store"
            assert (await preview.json())["title"] == "Draft"

    @pytest.mark.asyncio
    async def test_token_required_when_configured(self, store):
        await _put(store, make_message())

        async with _client(store, preview_token="s3cret") as client:
            missing = await client.get("/content/article/hello-world?preview=true")
            wrong = await client.get(
                "/content/article/hello-world?preview=true",
                headers={PREVIEW_TOKEN_HEADER: "guess"},
            )
            right = await client.get(
                "/content/article/hello-world?preview=true",
                headers={PREVIEW_TOKEN_HEADER: "s3cret"},
            )
            assert missing.status == 401
            assert wrong.status == 401
            assert right.status == 200

    @pytest.mark.asyncio
    async def test_public_reads_ignore_token(self, store):
        await _put(store, make_message())
        store.sync_replica()

        async with _client(store, preview_token="s3cret") as client:
            resp = await client.get("/content/article/hello-world")
            assert resp.status == 200

    @pytest.mark.asyncio
    async def test_unrecognized_flag_is_public(self, store):
        await _put(store, make_message())

        async with _client(store) as client:
            resp = await client.get("/content/article/hello-world?preview=0")
            assert resp.status == 404


class TestReadGatewayWorker:

    def test_builds_gateway_from_config(self, content_config, store):
        worker = ReadGatewayWorker(content_config, store, TTLContentCache())

        assert worker.gateway.ttl_seconds == content_config.cache.ttl_seconds
        assert worker.app.preview_token == content_config.gateway.preview_token
        assert not worker.health_server.is_enabled
