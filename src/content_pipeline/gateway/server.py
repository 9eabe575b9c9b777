"""
Read gateway HTTP service.

GET /content/{type}/{slug}
GET /content/id/{content_id}

`?preview=1` switches to preview mode (primary read, no cache). When a
preview token is configured the request must carry it in X-Preview-Token.
"""

import asyncio
import hmac
import logging

from aiohttp import web

from config.config import ContentConfig
from content_pipeline.cache.memory import ContentCache
from content_pipeline.common.health import HealthCheckServer
from content_pipeline.gateway.read_gateway import ContentKey, ReadGateway, ReadMode
from content_pipeline.store.base import ContentStore
from core.errors.exceptions import ContentNotFoundError, TransientError
from core.logging.utilities import log_exception

logger = logging.getLogger(__name__)

WORKER_NAME = "read_gateway"
PREVIEW_TOKEN_HEADER = "X-Preview-Token"
PREVIEW_FLAGS = ("1", "true", "yes")


def _error(status: int, message: str, headers: dict | None = None) -> web.Response:
    return web.json_response({"error": message}, status=status, headers=headers)


class ReadGatewayApp:
    def __init__(self, gateway: ReadGateway, preview_token: str = ""):
        self.gateway = gateway
        self.preview_token = preview_token

    def create_app(self) -> web.Application:
        app = web.Application()
        # The id route is registered first so "id" is never read as a content type
        app.router.add_get("/content/id/{content_id}", self.handle_by_id)
        app.router.add_get("/content/{type}/{slug}", self.handle_by_slug)
        return app

    def _mode(self, request: web.Request) -> ReadMode:
        flag = request.query.get("preview", "").lower()
        return ReadMode.PREVIEW if flag in PREVIEW_FLAGS else ReadMode.PUBLIC

    def _preview_allowed(self, request: web.Request) -> bool:
        if not self.preview_token:
            return True
        supplied = request.headers.get(PREVIEW_TOKEN_HEADER, "")
        return hmac.compare_digest(supplied.encode("utf-8"), self.preview_token.encode("utf-8"))

    async def handle_by_slug(self, request: web.Request) -> web.Response:
        key = ContentKey.by_slug(request.match_info["type"], request.match_info["slug"])
        return await self._serve(request, key)

    async def handle_by_id(self, request: web.Request) -> web.Response:
        return await self._serve(request, ContentKey.by_id(request.match_info["content_id"]))

    async def _serve(self, request: web.Request, key: ContentKey) -> web.Response:
        mode = self._mode(request)
        no_store = {"Cache-Control": "no-store"}

        if mode == ReadMode.PREVIEW and not self._preview_allowed(request):
            logger.warning(
                "Preview read rejected: bad or missing token",
                extra={"read_mode": mode.value, "http_path": request.path},
            )
            return _error(401, "unauthorized", no_store)

        try:
            record = await self.gateway.read(key, mode)
        except ContentNotFoundError:
            return _error(404, "not found", no_store)
        except TransientError as e:
            log_exception(
                logger,
                e,
                "Store unavailable for read",
                level=logging.WARNING,
                read_mode=mode.value,
                http_path=request.path,
            )
            return _error(503, "store unavailable", no_store)

        if mode == ReadMode.PREVIEW:
            cache_control = "no-store"
        else:
            cache_control = f"public, max-age={int(self.gateway.ttl_seconds)}"

        return web.json_response(record.to_view(), headers={"Cache-Control": cache_control})


class ReadGatewayWorker:
    """Runs the gateway HTTP service; start() blocks until stop()."""

    def __init__(
        self,
        config: ContentConfig,
        store: ContentStore,
        cache: ContentCache,
        domain: str = "content",
        instance_id: str | None = None,
    ):
        self.config = config
        self.store = store
        self.domain = domain
        self.instance_id = instance_id
        self.gateway = ReadGateway(store, cache, ttl_seconds=config.cache.ttl_seconds)
        self.app = ReadGatewayApp(self.gateway, preview_token=config.gateway.preview_token)

        processing = config.get_worker_config(WORKER_NAME, "processing")
        self.health_server = HealthCheckServer(
            port=processing.get("health_port", 8095),
            worker_name=WORKER_NAME,
            enabled=processing.get("health_enabled", True),
        )

        self._runner: web.AppRunner | None = None
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        await self.health_server.start()

        self._runner = web.AppRunner(self.app.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.gateway.host, self.config.gateway.port)
        await site.start()

        self.health_server.set_ready(transport_connected=True, store_reachable=True)
        logger.info(
            "Read gateway listening",
            extra={"port": self.config.gateway.port, "reason": f"ttl={self.gateway.ttl_seconds}s"},
        )
        self._stopped.clear()
        await self._stopped.wait()

    async def stop(self) -> None:
        self._stopped.set()
        self.health_server.set_ready(transport_connected=False)
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self.health_server.stop()
        logger.info("Read gateway stopped")
