"""Core utility functions."""

from core.utils.json_serializers import format_timestamp, json_serializer
from core.utils.worker_id import generate_worker_id

__all__ = ["format_timestamp", "json_serializer", "generate_worker_id"]
