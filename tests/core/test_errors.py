"""Tests for conduit.core.errors module."""

import asyncio

import pytest

from conduit.core.errors import (
    ConduitError,
    ConfigError,
    DatabaseConnectionError,
    DatabaseError,
    ErrorCategory,
    ErrorContext,
    HandlerNotFoundError,
    InvalidConfigError,
    MissingConfigError,
    NotFoundError,
    TransactionStateError,
    TransientError,
    ValidationError,
    is_retryable,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_empty_context_serializes_to_empty_dict(self):
        assert ErrorContext().to_dict() == {}

    def test_only_set_fields_are_included(self):
        ctx = ErrorContext(request_type="CreateArticle", attempt=2, metadata={"slug": "x"})
        assert ctx.to_dict() == {"request_type": "CreateArticle", "attempt": 2, "slug": "x"}


class TestConduitError:
    """Test the base error."""

    def test_defaults(self):
        error = ConduitError("boom")
        assert error.message == "boom"
        assert error.category is ErrorCategory.INTERNAL
        assert error.retryable is False
        assert str(error) == "boom"

    def test_cause_is_chained(self):
        root = OSError("disk")
        error = DatabaseError("write failed", cause=root)
        assert error.__cause__ is root
        assert error.to_dict()["cause"] == "disk"

    def test_to_dict(self):
        payload = NotFoundError("Article not found").to_dict()
        assert payload == {
            "error_type": "NotFoundError",
            "message": "Article not found",
            "category": "NOT_FOUND",
            "retryable": False,
        }

    def test_repr(self):
        assert repr(ConfigError("bad")) == "ConfigError('bad', category=CONFIG)"


class TestSubclasses:
    """Each subclass carries its own category and retry flag."""

    @pytest.mark.parametrize(
        "error,category,retryable",
        [
            (TransientError("t"), ErrorCategory.NETWORK, True),
            (DatabaseConnectionError("c"), ErrorCategory.DATABASE, True),
            (ConfigError("c"), ErrorCategory.CONFIG, False),
            (DatabaseError("d"), ErrorCategory.DATABASE, False),
            (TransactionStateError("s"), ErrorCategory.DATABASE, False),
            (NotFoundError("n"), ErrorCategory.NOT_FOUND, False),
        ],
    )
    def test_category_and_retry_flag(self, error, category, retryable):
        assert error.category is category
        assert error.retryable is retryable

    def test_missing_config_names_key(self):
        error = MissingConfigError("DB_CONNECTION_STRING")
        assert error.key == "DB_CONNECTION_STRING"
        assert "DB_CONNECTION_STRING" in error.message

    def test_invalid_config_keeps_value(self):
        error = InvalidConfigError("port", -1)
        assert error.value == -1
        assert "-1" in error.message

    def test_validation_error_carries_field_errors(self):
        error = ValidationError("invalid", errors={"title": ["is required"]})
        assert error.to_dict()["errors"] == {"title": ["is required"]}

    def test_handler_not_found_names_request_type(self):
        class Ping:
            pass

        error = HandlerNotFoundError(Ping)
        assert error.request_type is Ping
        assert "Ping" in error.message


class TestIsRetryable:
    def test_conduit_errors_use_their_flag(self):
        assert is_retryable(TransientError("x")) is True
        assert is_retryable(ConfigError("x")) is False
        assert is_retryable(ConduitError("x", retryable=True)) is True

    def test_builtin_connection_and_timeout_errors(self):
        assert is_retryable(ConnectionResetError()) is True
        assert is_retryable(TimeoutError()) is True

    def test_other_errors_are_not_retryable(self):
        assert is_retryable(ValueError("x")) is False

    def test_cancellation_is_never_retryable(self):
        assert is_retryable(asyncio.CancelledError()) is False
