"""Tests for the webhook ingress HTTP handlers."""

import json
from unittest.mock import AsyncMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from content_pipeline.common.types import ProduceResult
from content_pipeline.ingress.server import WebhookIngressApp
from content_pipeline.ingress.verifier import IngressVerifier
from core.errors.exceptions import QueuePublishError
from core.security.webhook_signature import sign_hmac_sha256, sign_sanity

TOPIC = "content.changes"


def _sanity_request(secret: str, **doc_overrides):
    doc = {
        "_id": "abc",
        "_type": "article",
        "_updatedAt": "2024-05-01T10:00:00Z",
        "slug": {"current": "hello"},
        "title": "Hello",
    }
    doc.update(doc_overrides)
    body = json.dumps(doc).encode()
    return body, {"sanity-webhook-signature": sign_sanity(secret, body)}


@pytest.fixture
def publisher():
    publisher = AsyncMock()
    publisher.send = AsyncMock(return_value=ProduceResult(topic=TOPIC, partition=0, offset=1))
    return publisher


@pytest.fixture
def ingress_app(content_config, publisher):
    return WebhookIngressApp(IngressVerifier(content_config.sources), publisher, TOPIC)


class TestWebhookEndpoint:

    @pytest.mark.asyncio
    async def test_valid_delivery_is_queued(self, ingress_app, publisher, content_config):
        body, headers = _sanity_request(content_config.sources["sanity"].secret)

        async with TestClient(TestServer(ingress_app.create_app())) as client:
            resp = await client.post("/webhooks/sanity", data=body, headers=headers)
            assert resp.status == 202
            assert await resp.json() == {"status": "queued", "content_id": "sanity:abc"}

        publisher.send.assert_awaited_once()
        args, kwargs = publisher.send.call_args
        assert args[0] == TOPIC
        assert kwargs["key"] == "sanity:abc"
        assert kwargs["value"].slug == "hello"

    @pytest.mark.asyncio
    async def test_hmac_source(self, ingress_app, publisher, content_config):
        body = json.dumps(
            {"databaseId": 9, "slug": "p", "modified": "2024-01-01T00:00:00"}
        ).encode()
        headers = {"X-Signature": sign_hmac_sha256(content_config.sources["wordpress"].secret, body)}

        async with TestClient(TestServer(ingress_app.create_app())) as client:
            resp = await client.post("/webhooks/wordpress", data=body, headers=headers)
            assert resp.status == 202
            assert (await resp.json())["content_id"] == "wordpress:9"

    @pytest.mark.asyncio
    async def test_bad_signature_is_401(self, ingress_app, publisher):
        body, headers = _sanity_request("wrong-secret")

        async with TestClient(TestServer(ingress_app.create_app())) as client:
            resp = await client.post("/webhooks/sanity", data=body, headers=headers)
            assert resp.status == 401
            assert await resp.json() == {"error": "unauthorized"}

        publisher.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_identity_is_400(self, ingress_app, publisher, content_config):
        body = json.dumps({"_type": "article"}).encode()
        headers = {
            "sanity-webhook-signature": sign_sanity(content_config.sources["sanity"].secret, body)
        }

        async with TestClient(TestServer(ingress_app.create_app())) as client:
            resp = await client.post("/webhooks/sanity", data=body, headers=headers)
            assert resp.status == 400

        publisher.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_source_is_404(self, ingress_app):
        async with TestClient(TestServer(ingress_app.create_app())) as client:
            resp = await client.post("/webhooks/contentful", data=b"{}")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_other_paths_are_404(self, ingress_app):
        async with TestClient(TestServer(ingress_app.create_app())) as client:
            resp = await client.post("/hooks/sanity", data=b"{}")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_publish_failure_is_503(self, ingress_app, publisher, content_config):
        publisher.send.side_effect = QueuePublishError("broker down")
        body, headers = _sanity_request(content_config.sources["sanity"].secret)

        async with TestClient(TestServer(ingress_app.create_app())) as client:
            resp = await client.post("/webhooks/sanity", data=body, headers=headers)
            assert resp.status == 503
            assert await resp.json() == {"error": "queue unavailable"}
