"""Common worker execution patterns.

Every runner goes through execute_worker_with_shutdown() so workers get the
same startup retry, shutdown handling and error mode.
"""

import asyncio
import logging
import os
from collections.abc import Callable

from content_pipeline.common.health import HealthCheckServer
from core.logging.context import set_log_context

logger = logging.getLogger(__name__)

# Startup retry configuration (overridable via env vars)
DEFAULT_STARTUP_RETRIES = 5
DEFAULT_STARTUP_BACKOFF_BASE = 5  # seconds


async def _cleanup_watcher_task(task: asyncio.Task) -> None:
    """Cancel and await the watcher task.

    RuntimeError is raised here when the loop closes during shutdown.
    """
    try:
        task.cancel()
        await task
    except (asyncio.CancelledError, RuntimeError):
        pass


async def start_with_retry(
    start_fn: Callable,
    label: str,
    max_retries: int | None = None,
    backoff_base: float | None = None,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Retry an async start function with linear backoff.

    On exhaustion, re-raises the last exception so the caller can enter
    error mode.

    Args:
        start_fn: Async callable (worker.start, resources.open)
        label: Human-readable label for log messages
        max_retries: Attempts (default: 5, env: STARTUP_MAX_RETRIES)
        backoff_base: Seconds per attempt (default: 5, env: STARTUP_BACKOFF_SECONDS)
        shutdown_event: If set, no retries happen during shutdown
    """
    max_retries = max_retries or int(
        os.getenv("STARTUP_MAX_RETRIES", str(DEFAULT_STARTUP_RETRIES))
    )
    if backoff_base is None:
        backoff_base = float(
            os.getenv("STARTUP_BACKOFF_SECONDS", str(DEFAULT_STARTUP_BACKOFF_BASE))
        )

    for attempt in range(1, max_retries + 1):
        try:
            await start_fn()
            return
        except Exception as e:
            if shutdown_event and shutdown_event.is_set():
                logger.info(f"Shutdown in progress, not retrying {label}")
                raise
            if attempt == max_retries:
                logger.error(
                    f"Failed to start {label} after {max_retries} attempts, giving up",
                    extra={"error": str(e), "max_attempts": max_retries},
                )
                raise
            delay = backoff_base * attempt
            logger.warning(
                f"Failed to start {label} (attempt {attempt}/{max_retries}), "
                f"retrying in {delay}s",
                extra={"error": str(e), "attempt": attempt, "delay_seconds": delay},
            )
            await asyncio.sleep(delay)


async def enter_worker_error_mode(
    health_server: HealthCheckServer,
    stage_name: str,
    error_msg: str,
    shutdown_event: asyncio.Event,
) -> None:
    """Keep the worker's health server alive in error state until shutdown.

    Liveness keeps passing so the pod is not restarted in a loop; readiness
    reports the error so it receives no traffic.
    """
    logger.warning(f"Entering ERROR MODE for {stage_name} - health endpoint will remain alive")
    health_server.set_error(error_msg)

    logger.info(
        "Health server running in error mode",
        extra={"stage": stage_name, "port": health_server.actual_port, "error": error_msg},
    )

    await shutdown_event.wait()
    logger.info(f"Shutdown signal received in error mode for {stage_name}")


async def execute_worker_with_shutdown(
    worker_instance,
    stage_name: str,
    shutdown_event: asyncio.Event,
    instance_id: str | None = None,
) -> None:
    """Run worker.start() until the shutdown event, then worker.stop().

    A start that keeps failing puts the worker's health server into error
    mode until shutdown instead of exiting the process.
    """
    if instance_id is not None:
        set_log_context(stage=stage_name, worker_id=f"{stage_name}-{instance_id}")
        logger_suffix = f" (instance {instance_id})"
    else:
        set_log_context(stage=stage_name)
        logger_suffix = ""

    logger.info("Starting %s%s...", stage_name, logger_suffix)

    worker_stopped = False

    async def shutdown_watcher():
        nonlocal worker_stopped
        await shutdown_event.wait()
        logger.info(f"Shutdown signal received, stopping {stage_name}{logger_suffix}...")
        await worker_instance.stop()
        worker_stopped = True

    watcher_task = asyncio.create_task(shutdown_watcher())

    try:
        await start_with_retry(worker_instance.start, stage_name, shutdown_event=shutdown_event)
    except Exception as e:
        if shutdown_event.is_set():
            logger.info(f"{stage_name} exited during shutdown", extra={"error": str(e)})
        elif hasattr(worker_instance, "health_server"):
            await _cleanup_watcher_task(watcher_task)
            await enter_worker_error_mode(
                worker_instance.health_server,
                stage_name,
                f"Fatal error: {e}",
                shutdown_event,
            )
        else:
            raise
    finally:
        await _cleanup_watcher_task(watcher_task)
        if not worker_stopped:
            await worker_instance.stop()
