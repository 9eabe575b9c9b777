"""
Error classification for queue and store operations.

Maps aiokafka and psycopg exceptions onto the PipelineError hierarchy so
that consumers can decide between redelivery and dead-lettering without
knowing which library raised.
"""

import json

from pydantic import ValidationError

from core.errors.exceptions import (
    AuthError,
    ConnectionError,
    PermanentError,
    PipelineError,
    TimeoutError,
    TransientError,
    TransientStoreError,
    wrap_exception,
)

# Kafka error classifications based on aiokafka exception types
KAFKA_ERROR_MAPPINGS = {
    "transient": [
        "BrokerNotAvailableError",
        "KafkaConnectionError",
        "NodeNotReadyError",
        "LeaderNotAvailableError",
        "NotLeaderForPartitionError",
        "RequestTimedOutError",
        "KafkaTimeoutError",
        "NetworkException",
        "CorrelationIdError",
    ],
    "auth": [
        "TopicAuthorizationFailedError",
        "GroupAuthorizationFailedError",
        "ClusterAuthorizationFailedError",
        "SaslAuthenticationError",
    ],
    "permanent": [
        "UnknownTopicOrPartitionError",
        "MessageSizeTooLargeError",
        "RecordTooLargeError",
        "InvalidTopicError",
        "UnsupportedVersionError",
        "IllegalStateError",
    ],
}

# psycopg error classifications (class names from psycopg.errors)
STORE_ERROR_MAPPINGS = {
    "transient": [
        "OperationalError",
        "InterfaceError",
        "PoolTimeout",
        "TooManyConnections",
        "AdminShutdown",
        "CannotConnectNow",
        "SerializationFailure",
        "DeadlockDetected",
        "LockNotAvailable",
        "QueryCanceled",
    ],
    "permanent": [
        "DataError",
        "IntegrityError",
        "ProgrammingError",
        "UniqueViolation",
        "NotNullViolation",
        "InvalidTextRepresentation",
    ],
}


def classify_error_type(error_type_name: str) -> str | None:
    """
    Classify error by exception type name, checking Kafka then store mappings.

    Returns:
        Error category: "transient", "auth", "permanent", or None
    """
    for category, error_types in KAFKA_ERROR_MAPPINGS.items():
        if error_type_name in error_types:
            return category

    for category, error_types in STORE_ERROR_MAPPINGS.items():
        if error_type_name in error_types:
            return category

    return None


def _classify_by_string_fallback(
    error_str: str, label: str, error: Exception, ctx: dict,
) -> PipelineError:
    """Classify error by string markers when type-based classification fails."""
    if any(m in error_str for m in ("unauthorized", "authentication", "authorization")):
        return AuthError(f"{label} auth error: {error}", cause=error, context=ctx)

    if "timeout" in error_str:
        return TimeoutError(f"{label} timeout: {error}", cause=error, context=ctx)

    if any(m in error_str for m in ("connection", "broker", "network", "node not ready")):
        return ConnectionError(f"{label} connection error: {error}", cause=error, context=ctx)

    return wrap_exception(error, context=ctx)


def _classify_error(
    error: Exception,
    service_name: str,
    context: dict | None = None,
) -> PipelineError:
    """
    Shared classification logic for consumer, producer and store errors.

    Args:
        error: Original exception
        service_name: "consumer", "producer" or "store"
        context: Additional context to merge
    """
    if isinstance(error, PipelineError):
        return error

    error_str = str(error).lower()
    error_type = type(error).__name__
    error_context = {"service": f"content_{service_name}"}
    if context:
        error_context.update(context)

    label = "Content store" if service_name == "store" else f"Kafka {service_name}"

    # Malformed data won't fix on retry
    if isinstance(error, (json.JSONDecodeError, UnicodeDecodeError, ValidationError)):
        return PermanentError(
            f"Message deserialization failed: {error}",
            cause=error,
            context=error_context,
        )

    category = classify_error_type(error_type)

    if category == "auth":
        return AuthError(f"{label} authentication failed: {error}", cause=error, context=error_context)

    if category == "permanent":
        return PermanentError(f"{label} permanent error: {error}", cause=error, context=error_context)

    if category == "transient":
        if service_name == "store":
            return TransientStoreError(f"{label} unavailable: {error}", cause=error, context=error_context)
        if "timeout" in error_str or "Timeout" in error_type:
            return TransientError(f"{label} timeout: {error}", cause=error, context=error_context)
        return TransientError(f"{label} transient error: {error}", cause=error, context=error_context)

    return _classify_by_string_fallback(error_str, label, error, error_context)


class TransportErrorClassifier:
    """
    Centralized error classification for queue and store operations.

    Maps aiokafka and psycopg exceptions to the PipelineError hierarchy.
    """

    @staticmethod
    def classify_consumer_error(error: Exception, context: dict | None = None) -> PipelineError:
        """Classify an error raised while consuming or applying a change message."""
        return _classify_error(error, "consumer", context)

    @staticmethod
    def classify_producer_error(error: Exception, context: dict | None = None) -> PipelineError:
        """Classify an error raised while publishing a change message."""
        return _classify_error(error, "producer", context)

    @staticmethod
    def classify_store_error(error: Exception, context: dict | None = None) -> PipelineError:
        """Classify an error raised by the canonical store driver."""
        return _classify_error(error, "store", context)

    @staticmethod
    def classify_transport_error(
        error: Exception,
        operation_type: str,
        context: dict | None = None,
    ) -> PipelineError:
        """Route to the operation-specific classifier."""
        classifiers = {
            "consumer": TransportErrorClassifier.classify_consumer_error,
            "producer": TransportErrorClassifier.classify_producer_error,
            "store": TransportErrorClassifier.classify_store_error,
        }
        classifier = classifiers.get(operation_type.lower(), wrap_exception)
        return classifier(error, context=context)
