"""
Error classification and exception hierarchy.

Provides:
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
- Transport/store classifier for aiokafka and psycopg errors
"""

from core.errors.exceptions import (
    AuthenticationError,
    AuthError,
    ContentNotFoundError,
    PayloadValidationError,
    PermanentError,
    PipelineError,
    QueuePublishError,
    RedeliveryExhaustedError,
    TransientError,
    TransientStoreError,
    classify_exception,
    classify_http_status,
    is_auth_error,
    is_retryable_error,
    is_transient_error,
    wrap_exception,
)
from core.errors.transport_classifier import TransportErrorClassifier
from core.types import ErrorCategory

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    # Domain errors
    "AuthenticationError",
    "PayloadValidationError",
    "TransientStoreError",
    "QueuePublishError",
    "ContentNotFoundError",
    "RedeliveryExhaustedError",
    # Classification utilities
    "is_auth_error",
    "is_transient_error",
    "is_retryable_error",
    "classify_http_status",
    "classify_exception",
    "wrap_exception",
    "TransportErrorClassifier",
]
