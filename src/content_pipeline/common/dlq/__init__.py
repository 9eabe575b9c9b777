"""Dead-letter routing for messages that can never be applied."""

from content_pipeline.common.dlq.producer import DLQProducer

__all__ = ["DLQProducer"]
