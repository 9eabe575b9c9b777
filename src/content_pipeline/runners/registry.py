"""Worker registry mapping CLI worker names to runner functions.

Each entry specifies:
- runner: the async function to execute
- scalable: whether --count may start several instances (consumer group members)
"""

import asyncio
import inspect
from typing import Any

from content_pipeline.resources import PipelineResources
from content_pipeline.runners import content_runners

WORKER_REGISTRY: dict[str, dict[str, Any]] = {
    "upsert-consumer": {
        "runner": content_runners.run_upsert_consumer,
        "scalable": True,
    },
    "webhook-ingress": {
        "runner": content_runners.run_webhook_ingress,
    },
    "read-gateway": {
        "runner": content_runners.run_read_gateway,
    },
    "wordpress-backfill": {
        "runner": content_runners.run_wordpress_backfill,
        "requires": "backfill.graphql_endpoint",
    },
}


def is_scalable(worker_name: str) -> bool:
    return bool(WORKER_REGISTRY.get(worker_name, {}).get("scalable"))


async def run_worker_from_registry(
    worker_name: str,
    resources: PipelineResources,
    shutdown_event: asyncio.Event,
    instance_id: str | None = None,
):
    """Run a worker by looking it up in the registry.

    Raises:
        ValueError: If the worker is unknown or its configuration is missing
    """
    if worker_name not in WORKER_REGISTRY:
        raise ValueError(f"Unknown worker: {worker_name}")

    worker_def = WORKER_REGISTRY[worker_name]

    if worker_def.get("requires") == "backfill.graphql_endpoint" and not (
        resources.config.backfill.graphql_endpoint
    ):
        raise ValueError(f"{worker_name} requires WORDPRESS_GRAPHQL_URL (backfill.graphql_endpoint)")

    kwargs = {
        "resources": resources,
        "shutdown_event": shutdown_event,
        "instance_id": instance_id,
    }

    # Pass only the kwargs the runner accepts
    runner = worker_def["runner"]
    sig = inspect.signature(runner)
    filtered_kwargs = {k: v for k, v in kwargs.items() if k in sig.parameters}
    await runner(**filtered_kwargs)
