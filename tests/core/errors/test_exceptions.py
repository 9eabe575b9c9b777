"""Tests for the pipeline exception hierarchy and classification helpers."""

import pytest

from core.errors.exceptions import (
    AuthenticationError,
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
    is_retryable_error,
    wrap_exception,
)
from core.types import ErrorCategory


class TestExceptionCategories:

    def test_authentication_error_is_never_retryable(self):
        error = AuthenticationError("bad signature", source="sanity")
        assert error.category == ErrorCategory.AUTH
        assert error.is_retryable is False
        assert error.context["source"] == "sanity"

    def test_payload_validation_error_is_permanent(self):
        error = PayloadValidationError("no id", source="wordpress", field="databaseId")
        assert error.category == ErrorCategory.PERMANENT
        assert not error.is_retryable
        assert error.context == {"source": "wordpress", "field": "databaseId"}

    @pytest.mark.parametrize("cls", [TransientStoreError, QueuePublishError])
    def test_transport_errors_are_transient(self, cls):
        error = cls("down")
        assert isinstance(error, TransientError)
        assert error.is_retryable

    def test_not_found_keeps_key(self):
        error = ContentNotFoundError("content:article:hello")
        assert error.key == "content:article:hello"
        assert not error.is_retryable

    def test_redelivery_exhausted_is_permanent_and_keeps_cause(self):
        cause = TransientStoreError("db down")
        error = RedeliveryExhaustedError(6, cause=cause)
        assert error.category == ErrorCategory.PERMANENT
        assert not error.is_retryable
        assert error.attempts == 6
        assert error.context == {"attempts": 6}
        assert "db down" in str(error)

    def test_str_includes_cause(self):
        error = PipelineError("outer", cause=ValueError("inner"))
        assert str(error) == "outer | Caused by: inner"


class TestClassification:

    def test_value_error_is_permanent(self):
        assert classify_exception(ValueError("bad")) == ErrorCategory.PERMANENT

    def test_connection_refused_is_transient(self):
        assert classify_exception(OSError("connection refused")) == ErrorCategory.TRANSIENT

    def test_unknown_exception_is_retryable(self):
        error = RuntimeError("something odd")
        assert classify_exception(error) == ErrorCategory.UNKNOWN
        assert is_retryable_error(error)

    @pytest.mark.parametrize(
        "status,category",
        [
            (401, ErrorCategory.AUTH),
            (404, ErrorCategory.PERMANENT),
            (429, ErrorCategory.TRANSIENT),
            (503, ErrorCategory.TRANSIENT),
        ],
    )
    def test_http_status(self, status, category):
        assert classify_http_status(status) == category

    def test_wrap_exception_returns_typed_error(self):
        wrapped = wrap_exception(OSError("timeout while reading"))
        assert isinstance(wrapped, TransientError)
        assert wrapped.context["error_type"] == "timeout"

    def test_wrap_exception_passes_pipeline_errors_through(self):
        error = PermanentError("x")
        assert wrap_exception(error, context={"a": 1}) is error
        assert error.context == {"a": 1}
