"""Shared infrastructure for the content pipeline workers.

Provides domain-agnostic infrastructure:
- MessageBatchConsumer: manual-commit batch consumer with DLQ routing
- MessageProducer: JSON producer keyed by content id
- HealthCheckServer: liveness/readiness endpoints
- metrics: Prometheus instruments

Import classes directly from submodules to avoid loading heavy dependencies:
    from content_pipeline.common.batch_consumer import MessageBatchConsumer
    from content_pipeline.common.producer import MessageProducer
"""

__all__: list[str] = []
