"""Logging utility functions."""

import logging
from typing import Any

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Example:
        log_with_context(
            logger, logging.INFO, "Change applied",
            source="sanity",
            version=3,
            duration_ms=elapsed,
        )

    exc_info=True is passed through to the logger rather than into extra.
    """
    exc_info = kwargs.pop("exc_info", None)
    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Extracts error_category from PipelineError subclasses and truncates
    long error messages.

    Example:
        try:
            await store.fetch_by_id(content_id, ReadConsistency.PRIMARY)
        except TransientStoreError as e:
            log_exception(logger, e, "Primary read failed", level=logging.WARNING)
    """
    if kwargs.get("error_category") is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}
    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)


def format_cycle_output(
    cycle_count: int,
    applied: int,
    discarded: int,
    failed: int = 0,
    retried: int = 0,
    since_last: dict[str, int] | None = None,
    interval_seconds: int = 30,
) -> str:
    """
    Format standardized cycle output for the upsert worker.

    Args:
        cycle_count: Current cycle number
        applied: Total changes written to the store
        discarded: Total stale or no-op changes
        failed: Total permanent failures (dead-lettered)
        retried: Total messages left for redelivery
        since_last: Optional deltas since the last cycle (same keys)
        interval_seconds: Cycle interval in seconds

    Example:
        >>> format_cycle_output(1, 120, 4)
        'Cycle 1: processed=124 (applied=120, discarded=4)'
        >>> format_cycle_output(5, 120, 4, since_last={"applied": 30, "discarded": 0}, interval_seconds=30)
        'Cycle 5: +30 this cycle | total: 120 applied, 4 discarded | 1.0 msg/s'
    """
    total = applied + discarded + failed

    if since_last is not None:
        delta_total = sum(since_last.get(k, 0) for k in ("applied", "discarded", "failed"))
        rate = delta_total / interval_seconds if interval_seconds > 0 else 0

        total_parts = [f"{applied} applied", f"{discarded} discarded"]
        if failed > 0:
            total_parts.append(f"{failed} failed")
        if retried > 0:
            total_parts.append(f"{retried} retried")

        return (
            f"Cycle {cycle_count}: +{delta_total} this cycle | "
            f"total: {', '.join(total_parts)} | {rate:.1f} msg/s"
        )

    parts = [f"applied={applied}", f"discarded={discarded}"]
    if failed > 0:
        parts.append(f"failed={failed}")
    if retried > 0:
        parts.append(f"retried={retried}")

    return f"Cycle {cycle_count}: processed={total} ({', '.join(parts)})"
