"""
Health check endpoints for pipeline workers.

- /health/live - Liveness probe (is the worker's event loop responsive?)
- /health/ready - Readiness probe (are the queue and the store reachable?)

Usage:
    health = HealthCheckServer(port=8092, worker_name="upsert_consumer")
    await health.start()
    health.set_ready(transport_connected=True, store_reachable=True)
    ...
    await health.stop()

The server runs on its own thread and event loop so a stalled worker loop
cannot also stall its probes.
"""

import asyncio
import logging
import threading
import time
from datetime import UTC, datetime

from aiohttp import web

logger = logging.getLogger(__name__)


class HealthCheckServer:
    """HTTP server for Kubernetes liveness and readiness probes."""

    def __init__(
        self,
        port: int | None = 8080,
        worker_name: str = "worker",
        enabled: bool = True,
        heartbeat_timeout_seconds: float = 60.0,
    ):
        """
        Args:
            port: HTTP port; 0 for dynamic assignment, None to disable
            worker_name: Name of the worker for logging
            enabled: If False, start() and stop() are no-ops
            heartbeat_timeout_seconds: Max seconds since record_heartbeat()
                before liveness returns 503. 0 disables the check.
        """
        self.port = port
        self.worker_name = worker_name
        self._enabled = enabled and port is not None
        self._ready = False
        self._transport_connected = False
        self._store_reachable = True
        self._started_at = datetime.now(UTC)
        self._actual_port: int | None = None
        self._error_message: str | None = None

        self._heartbeat_timeout_seconds = heartbeat_timeout_seconds
        self._last_heartbeat: float | None = None

        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

        self._thread: threading.Thread | None = None
        self._thread_ready = threading.Event()
        self._server_started = threading.Event()
        self._shutdown_event = threading.Event()
        self._state_lock = threading.Lock()

    def set_ready(self, transport_connected: bool, store_reachable: bool | None = None) -> None:
        """Update readiness. store_reachable=None leaves the previous value."""
        with self._state_lock:
            self._transport_connected = transport_connected
            if store_reachable is not None:
                self._store_reachable = store_reachable

            old_ready = self._ready
            self._ready = self._transport_connected and self._store_reachable

            if old_ready != self._ready:
                logger.info(
                    f"Readiness status changed: {old_ready} -> {self._ready}",
                    extra={"worker_name": self.worker_name},
                )

    def set_error(self, error_message: str) -> None:
        """Keep the worker alive for inspection but report it as not ready."""
        with self._state_lock:
            self._error_message = error_message
            self._ready = False
        logger.error(
            f"Health check error state set: {error_message}",
            extra={"worker_name": self.worker_name},
        )

    def clear_error(self) -> None:
        with self._state_lock:
            self._error_message = None

    @property
    def error_message(self) -> str | None:
        with self._state_lock:
            return self._error_message

    def record_heartbeat(self) -> None:
        with self._state_lock:
            self._last_heartbeat = time.monotonic()

    async def handle_liveness(self, request: web.Request) -> web.Response:
        with self._state_lock:
            last_hb = self._last_heartbeat
            hb_timeout = self._heartbeat_timeout_seconds

        uptime_seconds = int((datetime.now(UTC) - self._started_at).total_seconds())

        if hb_timeout > 0 and last_hb is not None:
            staleness = time.monotonic() - last_hb
            if staleness > hb_timeout:
                logger.warning(
                    "Liveness check failed: event loop heartbeat stale",
                    extra={"worker_name": self.worker_name},
                )
                return web.json_response(
                    {
                        "status": "unhealthy",
                        "reason": "event_loop_stale",
                        "worker": self.worker_name,
                        "heartbeat_staleness_seconds": round(staleness, 1),
                        "uptime_seconds": uptime_seconds,
                        "timestamp": datetime.now(UTC).isoformat(),
                    },
                    status=503,
                )

        return web.json_response(
            {
                "status": "alive",
                "worker": self.worker_name,
                "uptime_seconds": uptime_seconds,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        with self._state_lock:
            error_message = self._error_message
            ready = self._ready
            checks = {
                "transport_connected": self._transport_connected,
                "store_reachable": self._store_reachable,
            }

        if error_message:
            # 200 so the deployment completes; the body carries the error
            return web.json_response(
                {
                    "status": "error",
                    "worker": self.worker_name,
                    "error": error_message,
                    "reasons": ["configuration_error"],
                    "timestamp": datetime.now(UTC).isoformat(),
                }
            )

        if ready:
            return web.json_response(
                {
                    "status": "ready",
                    "worker": self.worker_name,
                    "checks": checks,
                    "timestamp": datetime.now(UTC).isoformat(),
                }
            )

        reasons = []
        if not checks["transport_connected"]:
            reasons.append("transport_disconnected")
        if not checks["store_reachable"]:
            reasons.append("store_unreachable")

        return web.json_response(
            {
                "status": "not_ready",
                "worker": self.worker_name,
                "reasons": reasons,
                "checks": checks,
                "timestamp": datetime.now(UTC).isoformat(),
            },
            status=503,
        )

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        return app

    def _run_server_thread(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._thread_ready.set()
        try:
            loop.run_until_complete(self._serve())
        except Exception as e:
            logger.error(
                f"Health server thread error: {e}",
                extra={"worker_name": self.worker_name},
                exc_info=True,
            )
        finally:
            self._server_started.set()
            loop.close()

    async def _serve(self) -> None:
        try:
            if not await self._try_start_on_port(self.port):
                if self.port == 0 or not await self._try_start_on_port(0):
                    logger.warning(
                        "Could not start health check server",
                        extra={"worker_name": self.worker_name},
                    )
                    return
                logger.warning(
                    f"Port {self.port} in use, falling back to dynamic port assignment",
                    extra={"worker_name": self.worker_name},
                )

            logger.info(
                "Health check server started",
                extra={"worker_name": self.worker_name, "port": self._actual_port},
            )
            self._server_started.set()

            while not self._shutdown_event.is_set():
                await asyncio.sleep(0.5)
        finally:
            if self._runner:
                await self._runner.cleanup()
                self._runner = None

    async def _try_start_on_port(self, port: int) -> bool:
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        try:
            self._site = web.TCPSite(self._runner, "0.0.0.0", port, reuse_address=True)
            await self._site.start()
        except OSError as e:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            # EADDRINUSE on Linux and Windows
            if e.errno in (98, 10048):
                return False
            raise

        server = self._site._server
        if server is not None and server.sockets:
            self._actual_port = server.sockets[0].getsockname()[1]
        else:
            self._actual_port = port
        return True

    async def start(self) -> None:
        """Start the probe server in a dedicated thread. Never raises."""
        if not self._enabled:
            return
        if self._thread is not None and self._thread.is_alive():
            return

        self._thread = threading.Thread(
            target=self._run_server_thread,
            name=f"health-server-{self.worker_name}",
            daemon=True,
        )
        self._thread.start()

        if not self._thread_ready.wait(timeout=5.0) or not self._server_started.wait(timeout=5.0):
            logger.error(
                "Health server failed to start listening",
                extra={"worker_name": self.worker_name},
            )
            self._enabled = False

    async def stop(self) -> None:
        if not self._enabled or not self._thread:
            return

        self._shutdown_event.set()
        await asyncio.to_thread(self._thread.join, 5.0)

        if self._thread.is_alive():
            logger.warning(
                "Health server thread did not stop cleanly",
                extra={"worker_name": self.worker_name},
            )
        else:
            logger.info("Health check server stopped", extra={"worker_name": self.worker_name})

        self._thread = None
        self._actual_port = None
        self._thread_ready.clear()
        self._server_started.clear()
        self._shutdown_event.clear()

    @property
    def is_ready(self) -> bool:
        with self._state_lock:
            return self._ready

    @property
    def actual_port(self) -> int | None:
        return self._actual_port

    @property
    def is_enabled(self) -> bool:
        return self._enabled


__all__ = ["HealthCheckServer"]
