"""Runner functions for the content pipeline workers."""

import asyncio

from content_pipeline.resources import PipelineResources
from content_pipeline.runners.common import execute_worker_with_shutdown


async def run_upsert_consumer(
    resources: PipelineResources,
    shutdown_event: asyncio.Event,
    instance_id: str | None = None,
):
    """Consumes content.changes and applies each change to the canonical store."""
    from content_pipeline.consumer.worker import UpsertWorker

    worker = UpsertWorker(
        config=resources.config,
        store=resources.store,
        instance_id=instance_id,
    )
    await execute_worker_with_shutdown(
        worker,
        stage_name="upsert-consumer",
        shutdown_event=shutdown_event,
        instance_id=instance_id,
    )


async def run_webhook_ingress(resources: PipelineResources, shutdown_event: asyncio.Event):
    """Verifies CMS webhooks and publishes normalized changes."""
    from content_pipeline.ingress.server import WebhookIngressWorker

    worker = WebhookIngressWorker(config=resources.config)
    await execute_worker_with_shutdown(
        worker, stage_name="webhook-ingress", shutdown_event=shutdown_event
    )


async def run_read_gateway(resources: PipelineResources, shutdown_event: asyncio.Event):
    """Serves public (cached, replica) and preview (primary) reads."""
    from content_pipeline.gateway.server import ReadGatewayWorker

    worker = ReadGatewayWorker(
        config=resources.config,
        store=resources.store,
        cache=resources.cache,
    )
    await execute_worker_with_shutdown(
        worker, stage_name="read-gateway", shutdown_event=shutdown_event
    )


async def run_wordpress_backfill(resources: PipelineResources, shutdown_event: asyncio.Event):
    """Polls WPGraphQL for recently modified posts and publishes them."""
    from content_pipeline.backfill.wordpress_poller import WordPressBackfillWorker

    worker = WordPressBackfillWorker(config=resources.config)
    await execute_worker_with_shutdown(
        worker, stage_name="wordpress-backfill", shutdown_event=shutdown_event
    )
