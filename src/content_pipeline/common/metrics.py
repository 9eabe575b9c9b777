"""
Prometheus metrics for pipeline monitoring.

Focused on essential metrics:
- Message production and consumption counts
- Upsert outcomes (applied, discarded, retried, dead-lettered)
- Read gateway and cache behaviour
- Error rates and connection health

Exposed by the CLI through prometheus_client.start_http_server.
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Queue metrics
# =============================================================================

messages_produced_counter = Counter(
    "content_messages_produced_total",
    "Total number of messages produced to topics",
    labelnames=["topic"],
)

messages_consumed_counter = Counter(
    "content_messages_consumed_total",
    "Total number of messages consumed from topics",
    labelnames=["topic", "consumer_group"],
)

processing_errors_counter = Counter(
    "content_processing_errors_total",
    "Total processing errors by error category",
    labelnames=["topic", "consumer_group", "error_category"],
)

producer_errors_counter = Counter(
    "content_producer_errors_total",
    "Total producer errors by error type",
    labelnames=["topic", "error_type"],
)

dlq_messages_counter = Counter(
    "content_dlq_messages_total",
    "Total messages sent to dead letter queue",
    labelnames=["domain", "reason"],
)

batch_redeliveries_counter = Counter(
    "content_batch_redeliveries_total",
    "Total batches rewound for redelivery after a transient failure",
    labelnames=["consumer_group"],
)

connection_status_gauge = Gauge(
    "content_connection_status",
    "Connection status (1=connected, 0=disconnected)",
    labelnames=["component"],
)

consumer_assigned_partitions_gauge = Gauge(
    "content_consumer_assigned_partitions",
    "Number of partitions assigned to consumer",
    labelnames=["consumer_group"],
)

message_processing_duration_seconds = Histogram(
    "content_message_processing_duration_seconds",
    "Time spent applying individual change messages",
    labelnames=["topic", "consumer_group"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)

# =============================================================================
# Domain metrics
# =============================================================================

upsert_outcomes_counter = Counter(
    "content_upsert_outcomes_total",
    "Upsert consumer outcomes by result",
    labelnames=["outcome"],
)

webhook_requests_counter = Counter(
    "content_webhook_requests_total",
    "Webhook requests by source and HTTP status",
    labelnames=["source", "status"],
)

gateway_reads_counter = Counter(
    "content_gateway_reads_total",
    "Read gateway requests by mode and result",
    labelnames=["mode", "result"],
)

cache_lookups_counter = Counter(
    "content_cache_lookups_total",
    "Read cache lookups by result",
    labelnames=["result"],
)

backfill_nodes_counter = Counter(
    "content_backfill_nodes_total",
    "Backfill nodes by result",
    labelnames=["source", "result"],
)


# =============================================================================
# Convenience Functions
# =============================================================================


def record_message_produced(topic: str, success: bool = True) -> None:
    messages_produced_counter.labels(topic=topic).inc()
    if not success:
        producer_errors_counter.labels(topic=topic, error_type="send_failed").inc()


def record_message_consumed(topic: str, consumer_group: str) -> None:
    messages_consumed_counter.labels(topic=topic, consumer_group=consumer_group).inc()


def record_processing_error(topic: str, consumer_group: str, error_category: str) -> None:
    processing_errors_counter.labels(
        topic=topic, consumer_group=consumer_group, error_category=error_category
    ).inc()


def record_producer_error(topic: str, error_type: str) -> None:
    producer_errors_counter.labels(topic=topic, error_type=error_type).inc()


def record_dlq_message(domain: str, reason: str) -> None:
    dlq_messages_counter.labels(domain=domain, reason=reason).inc()


def record_batch_redelivery(consumer_group: str) -> None:
    batch_redeliveries_counter.labels(consumer_group=consumer_group).inc()


def update_connection_status(component: str, connected: bool) -> None:
    connection_status_gauge.labels(component=component).set(1 if connected else 0)


def update_assigned_partitions(consumer_group: str, count: int) -> None:
    consumer_assigned_partitions_gauge.labels(consumer_group=consumer_group).set(count)


def record_upsert_outcome(outcome: str) -> None:
    upsert_outcomes_counter.labels(outcome=outcome).inc()


def record_webhook_request(source: str, status: int) -> None:
    webhook_requests_counter.labels(source=source, status=str(status)).inc()


def record_gateway_read(mode: str, result: str) -> None:
    gateway_reads_counter.labels(mode=mode, result=result).inc()


def record_cache_lookup(hit: bool) -> None:
    cache_lookups_counter.labels(result="hit" if hit else "miss").inc()


def record_backfill_node(source: str, result: str) -> None:
    backfill_nodes_counter.labels(source=source, result=result).inc()


__all__ = [
    "messages_produced_counter",
    "messages_consumed_counter",
    "processing_errors_counter",
    "producer_errors_counter",
    "dlq_messages_counter",
    "batch_redeliveries_counter",
    "connection_status_gauge",
    "consumer_assigned_partitions_gauge",
    "message_processing_duration_seconds",
    "upsert_outcomes_counter",
    "webhook_requests_counter",
    "gateway_reads_counter",
    "cache_lookups_counter",
    "backfill_nodes_counter",
    "record_message_produced",
    "record_message_consumed",
    "record_processing_error",
    "record_producer_error",
    "record_dlq_message",
    "record_batch_redelivery",
    "update_connection_status",
    "update_assigned_partitions",
    "record_upsert_outcome",
    "record_webhook_request",
    "record_gateway_read",
    "record_cache_lookup",
    "record_backfill_node",
]
