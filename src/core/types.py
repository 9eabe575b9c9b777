"""
Core types and protocols used across modules.

Shared enums and protocol definitions so that the ingress, consumer and
gateway layers agree on how failures are classified.
"""

from enum import Enum
from typing import Protocol


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., store connection lost, broker unavailable)
        AUTH: Authentication failures (e.g., bad webhook signature).
              Never retried at the ingress edge.
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., malformed payload, missing source identity)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class ErrorClassifier(Protocol):
    """
    Protocol for error classification implementations.

    Transport (Kafka) and storage (PostgreSQL) classifiers implement this
    protocol to map library exceptions onto ErrorCategory.
    """

    def classify_error(self, error: Exception) -> ErrorCategory:
        """
        Classify an exception into an error category.

        Args:
            error: Exception to classify

        Returns:
            ErrorCategory indicating how to handle this error
        """
        ...

    def is_transient(self, error: Exception) -> bool:
        """Check if error is transient (retriable)."""
        ...


__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
]
