"""Content pipeline worker orchestration. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import signal
import socket
import sys
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config.config import DOMAIN, ContentConfig, load_config
from content_pipeline.common.health import HealthCheckServer
from content_pipeline.resources import PipelineResources
from content_pipeline.runners.common import start_with_retry
from content_pipeline.runners.registry import (
    WORKER_REGISTRY,
    is_scalable,
    run_worker_from_registry,
)
from core.logging.setup import setup_logging
from core.utils import generate_worker_id

# __main__.py is at src/content_pipeline/__main__.py, so the root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

WORKER_STAGES = list(WORKER_REGISTRY.keys())

logger = logging.getLogger(__name__)

# Set by signal handlers; workers finish their current batch before exiting
_shutdown_event: asyncio.Event | None = None


def get_shutdown_event() -> asyncio.Event:
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run content pipeline workers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run every worker in one process (in-memory store works only here)
    python -m content_pipeline

    # Run the consumer with three group members
    python -m content_pipeline --worker upsert-consumer --count 3

    # Run the gateway with a custom config and metrics port
    python -m content_pipeline --worker read-gateway --config prod.yaml --metrics-port 9090
        """,
    )

    parser.add_argument(
        "--worker",
        choices=WORKER_STAGES + ["all"],
        default="all",
        help="Which worker(s) to run (default: all)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: the packaged config/config.yaml)",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=8000,
        help="Port for Prometheus metrics server (default: 8000)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )

    parser.add_argument(
        "--count",
        "-c",
        type=int,
        default=1,
        help="Number of upsert-consumer instances to run concurrently (default: 1). "
        "Instances share the consumer group for automatic partition distribution.",
    )

    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )

    return parser.parse_args(argv)


async def run_worker_pool(
    worker_fn: Callable[..., Coroutine[Any, Any, None]],
    count: int,
    worker_name: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Run multiple instances of a worker, each with its own instance_id."""
    logger.info("Starting worker instances", extra={"batch_size": count, "worker_name": worker_name})

    tasks = []
    for i in range(count):
        instance_kwargs = kwargs.copy()
        instance_kwargs["instance_id"] = str(i)
        tasks.append(
            asyncio.create_task(
                worker_fn(worker_name, *args, **instance_kwargs),
                name=f"{worker_name}-{i}",
            )
        )

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Worker pool cancelled, shutting down", extra={"worker_name": worker_name})
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def run_all_workers(resources: PipelineResources, shutdown_event: asyncio.Event) -> None:
    """Run every registered worker in this process.

    The backfill poller is skipped when no GraphQL endpoint is configured.
    """
    tasks = []
    for worker_name in WORKER_STAGES:
        if worker_name == "wordpress-backfill" and not resources.config.backfill.graphql_endpoint:
            logger.info("WordPress backfill disabled: no GraphQL endpoint configured")
            continue
        tasks.append(
            asyncio.create_task(
                run_worker_from_registry(worker_name, resources, shutdown_event),
                name=worker_name,
            )
        )

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Workers cancelled, shutting down...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def run_pipeline(args: argparse.Namespace, config: ContentConfig) -> None:
    shutdown_event = get_shutdown_event()
    resources = PipelineResources.from_config(config)

    await start_with_retry(resources.open, "pipeline resources", shutdown_event=shutdown_event)
    try:
        if args.worker == "all":
            await run_all_workers(resources, shutdown_event)
        elif args.count > 1:
            await run_worker_pool(
                run_worker_from_registry, args.count, args.worker, resources, shutdown_event
            )
        else:
            await run_worker_from_registry(args.worker, resources, shutdown_event)
    finally:
        await resources.close()


def start_metrics_server(preferred_port: int) -> int:
    """Start the Prometheus metrics server, falling back to a free port."""
    try:
        start_http_server(preferred_port)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise
        logger.info("Metrics port already in use, finding available port", extra={"port": preferred_port})

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            s.listen(1)
            available_port = s.getsockname()[1]

        start_http_server(available_port)
        return available_port


def setup_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """First signal: graceful shutdown. Second signal: cancel every task.

    Signal handlers are not supported on Windows; KeyboardInterrupt is used instead.
    """

    def handle_signal(sig):
        logger.info("Received signal, initiating graceful shutdown", extra={"reason": sig.name})
        shutdown_event = get_shutdown_event()
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("true", "1", "yes")


def _setup_logging(args: argparse.Namespace) -> str:
    worker_id = os.getenv("WORKER_ID") or generate_worker_id(args.worker)
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR") or "logs")

    setup_logging(
        name="content_pipeline",
        stage=args.worker,
        domain=DOMAIN,
        log_dir=log_dir,
        json_format=os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes"),
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=args.log_to_stdout or _env_flag("LOG_TO_STDOUT"),
    )
    return worker_id


def main(argv: list[str] | None = None) -> None:
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    worker_id = _setup_logging(args)
    logger = logging.getLogger(__name__)
    print(f"[STARTUP] Worker ID: {worker_id}", flush=True)

    if args.count > 1 and not is_scalable(args.worker):
        logger.error("--count > 1 is only supported for upsert-consumer", extra={"worker_name": args.worker})
        sys.exit(2)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    setup_signal_handlers(loop)

    actual_port = start_metrics_server(args.metrics_port)
    logger.info("Metrics server started", extra={"port": actual_port})

    try:
        config = load_config(args.config) if args.config else load_config()
    except (ValueError, FileNotFoundError, KeyError) as e:
        # Keep a probe endpoint up so the failure is visible from outside
        logger.exception("Configuration error", extra={"error": str(e)})
        health_server = HealthCheckServer(port=8080, worker_name=args.worker)
        health_server.set_error(f"Configuration error: {e}")
        loop.run_until_complete(health_server.start())
        loop.run_until_complete(get_shutdown_event().wait())
        loop.run_until_complete(health_server.stop())
        loop.close()
        return

    try:
        loop.run_until_complete(run_pipeline(args, config))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
    finally:
        loop.close()
        logger.info("Pipeline shutdown complete")


if __name__ == "__main__":
    main()
