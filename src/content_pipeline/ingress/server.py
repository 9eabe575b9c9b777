"""
Webhook ingress HTTP service.

POST /webhooks/{source} verifies the delivery, normalizes it and publishes
the change message keyed by content id. Responses:

- 202 {"status": "queued", "content_id": ...} once the broker acknowledged
- 400 malformed or identity-less payload
- 401 missing or invalid signature
- 404 unknown path or unconfigured source
- 503 publish failed; the sender is expected to retry
"""

import asyncio
import logging
from typing import Any, Protocol

from aiohttp import web
from pydantic import BaseModel

from config.config import ContentConfig
from content_pipeline.common.health import HealthCheckServer
from content_pipeline.common.metrics import record_webhook_request
from content_pipeline.common.producer import MessageProducer
from content_pipeline.common.types import ProduceResult
from content_pipeline.ingress.verifier import IngressVerifier
from core.errors.exceptions import AuthenticationError, PayloadValidationError, PipelineError
from core.logging.context import set_log_context
from core.logging.utilities import log_exception

logger = logging.getLogger(__name__)

WORKER_NAME = "webhook_ingress"


class ChangePublisher(Protocol):
    async def send(
        self, topic: str, key: str | bytes | None, value: BaseModel | dict[str, Any] | bytes
    ) -> ProduceResult: ...


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


class WebhookIngressApp:
    """aiohttp request handlers bound to a verifier and a publisher."""

    def __init__(self, verifier: IngressVerifier, publisher: ChangePublisher, topic: str):
        self.verifier = verifier
        self.publisher = publisher
        self.topic = topic

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/webhooks/{source}", self.handle_webhook)
        return app

    async def handle_webhook(self, request: web.Request) -> web.Response:
        source = request.match_info["source"]
        if not self.verifier.knows(source):
            record_webhook_request("unknown", 404)
            return _error(404, "not found")

        body = await request.read()

        try:
            message = self.verifier.verify(source, request.headers, body)
        except AuthenticationError as e:
            logger.warning(
                "Webhook rejected: authentication failed",
                extra={"source": source, "reason": str(e)},
            )
            record_webhook_request(source, 401)
            return _error(401, "unauthorized")
        except PayloadValidationError as e:
            logger.warning(
                "Webhook rejected: invalid payload",
                extra={"source": source, "reason": str(e)},
            )
            record_webhook_request(source, 400)
            return _error(400, "bad request")

        set_log_context(content_id=message.content_id)

        try:
            await self.publisher.send(self.topic, key=message.content_id, value=message)
        except PipelineError as e:
            log_exception(
                logger,
                e,
                "Failed to publish change message",
                source=source,
                content_id=message.content_id,
            )
            record_webhook_request(source, 503)
            return _error(503, "queue unavailable")

        logger.info(
            "Change message queued",
            extra={
                "source": source,
                "content_id": message.content_id,
                "updated_at": message.updated_at,
                "outcome": "deleted" if message.deleted else "upserted",
            },
        )
        record_webhook_request(source, 202)
        return web.json_response(
            {"status": "queued", "content_id": message.content_id}, status=202
        )


class WebhookIngressWorker:
    """Runs the ingress HTTP service with its own producer and health probes.

    start() blocks until stop() is called, matching the consumer workers.
    """

    def __init__(
        self,
        config: ContentConfig,
        domain: str = "content",
        producer: MessageProducer | None = None,
        instance_id: str | None = None,
    ):
        self.config = config
        self.domain = domain
        self.instance_id = instance_id
        self.producer = producer or MessageProducer(config, domain, WORKER_NAME)
        self.verifier = IngressVerifier(config.sources)
        self.app = WebhookIngressApp(self.verifier, self.producer, config.get_topic())

        processing = config.get_worker_config(WORKER_NAME, "processing")
        self.health_server = HealthCheckServer(
            port=processing.get("health_port", 8093),
            worker_name=WORKER_NAME,
            enabled=processing.get("health_enabled", True),
        )

        self._runner: web.AppRunner | None = None
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        await self.health_server.start()
        if not self.producer.is_started:
            await self.producer.start()

        self._runner = web.AppRunner(self.app.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.ingress.host, self.config.ingress.port)
        await site.start()

        self.health_server.set_ready(transport_connected=True)
        logger.info(
            "Webhook ingress listening",
            extra={
                "port": self.config.ingress.port,
                "message_topic": self.app.topic,
                "reason": ",".join(sorted(self.config.sources)),
            },
        )
        self._stopped.clear()
        await self._stopped.wait()

    async def stop(self) -> None:
        self._stopped.set()
        self.health_server.set_ready(transport_connected=False)
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self.producer.stop()
        await self.health_server.stop()
        logger.info("Webhook ingress stopped")
