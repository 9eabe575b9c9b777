"""
Async retry utilities with exception-aware handling.

Uses the exception hierarchy to decide whether another attempt can help:
- Transient errors: retry with exponential backoff and jitter
- Unknown errors: retry conservatively
- Auth and permanent errors: fail immediately
"""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps

from core.errors.exceptions import (
    PipelineError,
    classify_exception,
    wrap_exception,
)
from core.types import ErrorCategory

logger = logging.getLogger(__name__)


def _error_category(wrapped: Exception) -> str:
    if isinstance(wrapped, PipelineError):
        return wrapped.category.value
    return classify_exception(wrapped).value


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    # If True, don't retry permanent errors even if attempts remain
    respect_permanent: bool = True

    # Exception types that override classification
    always_retry: set[type[Exception]] = field(default_factory=set)
    never_retry: set[type[Exception]] = field(default_factory=set)

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)
        if not isinstance(self.respect_permanent, bool):
            self.respect_permanent = str(self.respect_permanent).lower() in ("1", "true", "yes")

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay with equal jitter to prevent thundering herd.

        Args:
            attempt: 0-indexed attempt number

        Returns:
            Delay in seconds, capped at max_delay
        """
        base_delay = self.base_delay * (self.exponential_base**attempt)
        jitter = random.uniform(0, base_delay / 2)
        return min((base_delay / 2) + jitter, self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Determine if error should be retried.

        Args:
            error: The exception that occurred
            attempt: 0-indexed current attempt
        """
        if attempt >= self.max_attempts - 1:
            return False

        if self.never_retry and isinstance(error, tuple(self.never_retry)):
            return False

        if self.always_retry and isinstance(error, tuple(self.always_retry)):
            return True

        if isinstance(error, PipelineError):
            if self.respect_permanent and error.category == ErrorCategory.PERMANENT:
                return False
            return error.is_retryable

        category = classify_exception(error)
        if self.respect_permanent and category == ErrorCategory.PERMANENT:
            return False

        return category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)


# Default configurations
DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0)
STORE_CONNECT_RETRY = RetryConfig(max_attempts=5, base_delay=2.0, max_delay=30.0)


def with_retry_async(
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
    wrap_errors: bool = True,
):
    """
    Decorator for retrying async functions with backoff.

    Args:
        config: Retry configuration (defaults to DEFAULT_RETRY)
        on_retry: Callback before each retry (error, attempt, delay)
        wrap_errors: If True, wrap unknown exceptions in PipelineError

    Usage:
        @with_retry_async(config=STORE_CONNECT_RETRY)
        async def open_pool():
            ...
    """
    if config is None:
        config = DEFAULT_RETRY

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    wrapped = wrap_exception(e) if wrap_errors else e
                    error_category = _error_category(wrapped)

                    if not config.should_retry(wrapped, attempt):
                        logger.warning(
                            "Giving up on %s after %d attempt(s)",
                            func.__name__,
                            attempt + 1,
                            extra={
                                "operation": func.__name__,
                                "attempt": attempt + 1,
                                "max_attempts": config.max_attempts,
                                "error_category": error_category,
                                "error_message": str(e)[:200],
                            },
                        )
                        if wrapped is e:
                            raise
                        raise wrapped from e

                    delay = config.get_delay(attempt)
                    logger.warning(
                        "Retryable error for %s, will retry",
                        func.__name__,
                        extra={
                            "operation": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": config.max_attempts,
                            "error_category": error_category,
                            "delay_seconds": round(delay, 2),
                            "error_message": str(e)[:200],
                        },
                    )
                    if on_retry:
                        on_retry(wrapped, attempt, delay)

                    await asyncio.sleep(delay)
                else:
                    if attempt > 0:
                        logger.info(
                            "Retry succeeded for %s after %d attempts",
                            func.__name__,
                            attempt + 1,
                            extra={"operation": func.__name__, "attempt": attempt + 1},
                        )
                    return result

            raise RuntimeError(f"{func.__name__}: retry loop exited without result")

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
    "STORE_CONNECT_RETRY",
]
