"""
Unified exception hierarchy for the content pipeline.

Provides typed exceptions with retry classification so that each stage
(ingress, upsert consumer, read gateway) can map a failure onto its
response: reject, dead-letter, redeliver, or report not-found.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(PipelineError):
    """Base class for authentication errors."""

    category = ErrorCategory.AUTH

    @property
    def is_retryable(self) -> bool:
        return False


class AuthenticationError(AuthError):
    """Webhook signature missing, malformed, or not matching the shared secret."""

    def __init__(
        self,
        message: str,
        source: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        context = dict(context or {})
        if source:
            context.setdefault("source", source)
        super().__init__(message, cause, context)
        self.source = source


# =============================================================================
# Transient Errors
# =============================================================================


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class TransientStoreError(TransientError):
    """Canonical store unavailable (connection lost, pool exhausted, failover)."""

    pass


class QueuePublishError(TransientError):
    """Publishing a change message to the queue failed."""

    pass


class TimeoutError(TransientError):
    """Operation timeout error (transient, retryable)."""

    pass


class ConnectionError(TransientError):
    """Connection error (transient, retryable)."""

    pass


# =============================================================================
# Permanent Errors (Don't Retry)
# =============================================================================


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class PayloadValidationError(PermanentError):
    """Payload is not valid JSON or carries no source identity."""

    def __init__(
        self,
        message: str,
        source: str | None = None,
        field: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        context = dict(context or {})
        if source:
            context.setdefault("source", source)
        if field:
            context.setdefault("field", field)
        super().__init__(message, cause, context)
        self.source = source
        self.field = field


class RedeliveryExhaustedError(PermanentError):
    """A message kept failing transiently past the redelivery bound."""

    def __init__(self, attempts: int, cause: Exception | None = None):
        super().__init__(f"Gave up after {attempts} delivery attempts", cause, {"attempts": attempts})
        self.attempts = attempts


class ContentNotFoundError(PermanentError):
    """No live record exists for the requested key."""

    def __init__(self, key: str, cause: Exception | None = None):
        super().__init__(f"Content not found: {key}", cause, {"content_key": key})
        self.key = key


# =============================================================================
# Error Classification Utilities
# =============================================================================

# Markers for string-based detection (fallback for non-PipelineError exceptions)
AUTH_ERROR_MARKERS = frozenset(
    {
        "401",
        "unauthorized",
        "authentication",
        "invalid signature",
        "signature mismatch",
    }
)

TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "429",
        "503",
        "502",
        "504",
        "timeout",
        "connection",
        "throttl",
        "temporarily unavailable",
        "service unavailable",
        "server closed the connection",
    }
)


def is_auth_error(exc: Exception) -> bool:
    """Check if exception is authentication-related."""
    if isinstance(exc, PipelineError):
        return exc.category == ErrorCategory.AUTH

    error_str = str(exc).lower()
    return any(marker in error_str for marker in AUTH_ERROR_MARKERS)


def is_transient_error(exc: Exception) -> bool:
    """
    Check if exception is transient (retriable).

    Returns True if this is a transient error that may succeed on retry.
    """
    if isinstance(exc, PipelineError):
        return exc.category == ErrorCategory.TRANSIENT

    error_str = str(exc).lower()
    return any(marker in error_str for marker in TRANSIENT_ERROR_MARKERS)


def is_retryable_error(exc: Exception) -> bool:
    """
    Check if exception should be retried.

    Retryable errors include:
    - Transient errors (connection, timeout, 5xx)
    - Unknown errors (conservative retry)

    Non-retryable:
    - Authentication errors (bad signatures never become good)
    - Permanent errors (validation, not found)
    """
    if isinstance(exc, PipelineError):
        return exc.is_retryable

    category = classify_exception(exc)
    return category in (
        ErrorCategory.TRANSIENT,
        ErrorCategory.UNKNOWN,
    )


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code == 429:
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, PipelineError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    # Payload decoding problems never fix themselves
    if isinstance(exc, (ValueError, TypeError, KeyError)) and "timeout" not in exc_str:
        return ErrorCategory.PERMANENT

    connection_markers = (
        "connectionerror",
        "operationalerror",
        "interfaceerror",
        "connection refused",
        "connection reset",
        "connection aborted",
        "name resolution",
        "broken pipe",
        "server closed the connection",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    if "401" in exc_str or "unauthorized" in exc_str:
        return ErrorCategory.AUTH

    if "429" in exc_str or "503" in exc_str or "502" in exc_str or "504" in exc_str:
        return ErrorCategory.TRANSIENT

    if "404" in exc_str or "not found" in exc_str:
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """Wrap a generic exception in appropriate PipelineError subclass."""
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    exc_str = str(exc).lower()
    context = context or {}

    if "timeout" in exc_str:
        context["error_type"] = "timeout"
    elif "connection" in exc_str:
        context["error_type"] = "connection"
    elif "not found" in exc_str:
        context["error_type"] = "not_found"

    if category == ErrorCategory.AUTH:
        return AuthError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.TRANSIENT:
        return TransientError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return PermanentError(str(exc), cause=exc, context=context)

    return default_class(str(exc), cause=exc, context=context)
