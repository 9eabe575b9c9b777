"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.logging.message_context import get_message_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Sanitizes URLs to remove sensitive tokens before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Correlation
        "trace_id",
        "batch_id",
        "duration_ms",
        # HTTP
        "http_status",
        "http_method",
        "http_path",
        "http_url",
        "remote",
        "port",
        "worker_name",
        # Errors
        "error_category",
        "error_message",
        "error_type",
        "error",
        # Processing metrics
        "records_processed",
        "records_applied",
        "records_discarded",
        "records_failed",
        "records_retried",
        "delta_applied",
        "delta_discarded",
        "delta_failed",
        "delta_retried",
        "cycle",
        "batch_size",
        "group_count",
        "retry_count",
        "processing_time_ms",
        # Resilience
        "attempt",
        "max_attempts",
        "delay_seconds",
        # Content identity
        "source",
        "source_id",
        "content_type",
        "slug",
        "version",
        "outcome",
        "reason",
        "read_mode",
        "cache_hit",
        "updated_at",
        "stored_updated_at",
        # Backfill
        "cursor",
        "node_count",
        "graphql_endpoint",
        # Message transport metadata
        "message_topic",
        "message_partition",
        "message_offset",
        "message_key",
    ]

    # Numeric fields keep their type so aggregations work downstream
    NUMERIC_FIELDS = {
        "processing_time_ms": float,
        "duration_ms": float,
        "delay_seconds": float,
        "retry_count": int,
        "attempt": int,
        "max_attempts": int,
        "http_status": int,
        "message_partition": int,
        "message_offset": int,
        "batch_size": int,
        "group_count": int,
        "records_processed": int,
        "records_applied": int,
        "records_discarded": int,
        "records_failed": int,
        "node_count": int,
        "version": int,
    }

    # Fields that contain URLs and should be sanitized
    URL_FIELDS = ["url", "http_url", "graphql_endpoint"]

    # Pattern to match sensitive query parameters
    SENSITIVE_PARAMS_PATTERN = re.compile(
        r"([?&])(sig|token|key|secret|password|auth)=[^&]*",
        re.IGNORECASE,
    )

    def _coerce_extra(self, field: str, value: Any) -> Any:
        """Numeric extras keep their declared type (None if not convertible); URLs are redacted."""
        expected_type = self.NUMERIC_FIELDS.get(field)
        if expected_type is not None:
            try:
                return expected_type(value)
            except (ValueError, TypeError):
                return None
        if field in self.URL_FIELDS and isinstance(value, str):
            return self.SENSITIVE_PARAMS_PATTERN.sub(r"\1\2=[REDACTED]", value)
        return value

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(UTC)
        log_entry: dict[str, Any] = {
            "ts": now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_entry.update({k: v for k, v in get_log_context().items() if v})
        # Partition and offset 0 are real positions
        log_entry.update(get_message_context())

        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._coerce_extra(field, value)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context["domain"]:
            parts.append(f"[{log_context['domain']}]")
        if log_context["stage"]:
            parts.append(f"[{log_context['stage']}]")

        return " - ".join(parts)

    @staticmethod
    def _build_tags(record: logging.LogRecord, log_context: dict[str, Any]) -> list[str]:
        batch_id = getattr(record, "batch_id", None)
        trace_id = getattr(record, "trace_id", None) or log_context.get("trace_id")
        content_id = getattr(record, "content_id", None) or log_context.get("content_id")

        tags = []
        if batch_id:
            tags.append(f"[batch:{batch_id}]")
        if trace_id:
            tags.append(f"[{trace_id[:8]}]")
        if content_id:
            tags.append(f"[{content_id}]")
        return tags

    def format(self, record: logging.LogRecord) -> str:
        log_context = get_log_context()

        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, log_context)
        tags = self._build_tags(record, log_context)
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        if tags:
            return f"{prefix} - {' '.join(tags)} {message}"

        return f"{prefix} - {message}"
