"""Tests for the worker health check server."""

import aiohttp
import pytest
from aiohttp.test_utils import TestClient, TestServer

from content_pipeline.common.health import HealthCheckServer


class TestHealthCheckServerInitialization:

    def test_defaults(self):
        server = HealthCheckServer(port=8092, worker_name="upsert_consumer")

        assert server.is_enabled
        assert not server.is_ready
        assert server.actual_port is None
        assert server.error_message is None

    def test_port_none_disables_server(self):
        assert not HealthCheckServer(port=None).is_enabled

    def test_enabled_false(self):
        assert not HealthCheckServer(port=8092, enabled=False).is_enabled


class TestReadiness:

    def test_needs_transport_and_store(self):
        server = HealthCheckServer(port=0)

        server.set_ready(transport_connected=True, store_reachable=False)
        assert not server.is_ready

        server.set_ready(transport_connected=True, store_reachable=True)
        assert server.is_ready

    def test_store_flag_sticks_when_omitted(self):
        server = HealthCheckServer(port=0)
        server.set_ready(transport_connected=True, store_reachable=False)

        server.set_ready(transport_connected=True)

        assert not server.is_ready

    @pytest.mark.asyncio
    async def test_not_ready_reports_reasons(self):
        server = HealthCheckServer(port=0, worker_name="read_gateway")
        server.set_ready(transport_connected=False, store_reachable=False)

        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.get("/health/ready")
            body = await resp.json()

        assert resp.status == 503
        assert body["reasons"] == ["transport_disconnected", "store_unreachable"]

    @pytest.mark.asyncio
    async def test_ready(self):
        server = HealthCheckServer(port=0, worker_name="read_gateway")
        server.set_ready(transport_connected=True)

        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.get("/health/ready")
            assert resp.status == 200
            assert (await resp.json())["status"] == "ready"

    @pytest.mark.asyncio
    async def test_error_mode_is_200_with_error(self):
        server = HealthCheckServer(port=0, worker_name="upsert_consumer")
        server.set_error("Fatal error: broker unreachable")

        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.get("/health/ready")
            body = await resp.json()

        assert resp.status == 200
        assert body["status"] == "error"
        assert body["error"] == "Fatal error: broker unreachable"
        assert not server.is_ready

        server.clear_error()
        assert server.error_message is None


class TestLiveness:

    @pytest.mark.asyncio
    async def test_alive_without_heartbeat(self):
        server = HealthCheckServer(port=0)

        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.get("/health/live")
            assert resp.status == 200
            assert (await resp.json())["status"] == "alive"

    @pytest.mark.asyncio
    async def test_stale_heartbeat_is_unhealthy(self):
        server = HealthCheckServer(port=0, heartbeat_timeout_seconds=0.001)
        server.record_heartbeat()
        server._last_heartbeat -= 10

        async with TestClient(TestServer(server.create_app())) as client:
            resp = await client.get("/health/live")
            assert resp.status == 503
            assert (await resp.json())["reason"] == "event_loop_stale"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_serves_on_dynamic_port(self):
        server = HealthCheckServer(port=0, worker_name="webhook_ingress")
        await server.start()
        try:
            assert server.actual_port
            async with (
                aiohttp.ClientSession() as session,
                session.get(f"http://localhost:{server.actual_port}/health/live") as resp,
            ):
                assert resp.status == 200
        finally:
            await server.stop()

        assert server.actual_port is None

    @pytest.mark.asyncio
    async def test_disabled_server_start_is_noop(self):
        server = HealthCheckServer(port=8092, enabled=False)
        await server.start()
        await server.stop()
        assert server.actual_port is None
