"""
Structured error types for Conduit.

Every error raised by the infrastructure layer carries a category and an
explicit retry flag so the execution strategy can decide whether a failed
unit of work is worth re-running, and the HTTP error handler can pick a
status code without inspecting messages.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        ConduitError                           │
        │            (category, retryable, context, cause)              │
        ├──────────────────────────────────────────────────────────────┤
        │  TransientError         ConfigError          DatabaseError    │
        │  (retryable=True)       (CONFIG)             (DATABASE)       │
        │       │                     │                                 │
        │  DatabaseConnectionError  MissingConfigError                  │
        │                           InvalidConfigError                  │
        │                                                               │
        │  ValidationError        NotFoundError        DispatchError    │
        │  (VALIDATION)           (NOT_FOUND)          (DISPATCH)       │
        │                                                   │           │
        │                                          HandlerNotFoundError │
        └──────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Wrap exceptions raised by request handlers
    ✅ DO: Let them propagate unchanged to the HTTP error handler

    ❌ DON'T: Mark configuration errors retryable
    ✅ DO: Fail fast at startup when configuration is missing

Tags:
    error-handling, exception-hierarchy, retry-logic, conduit

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and HTTP mapping."""

    NETWORK = "NETWORK"
    DATABASE = "DATABASE"
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    DISPATCH = "DISPATCH"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        request_id: Correlation id of the HTTP request, when known
        request_type: Name of the dispatched request class
        attempt: Attempt number for retried operations
        metadata: Additional key-value pairs
    """

    request_id: str | None = None
    request_type: str | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["request_id", "request_type", "attempt"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ConduitError(Exception):
    """
    Base exception for all Conduit errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    rarely need to pass them explicitly.

    Examples:
        >>> error = ConduitError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> error = TransientError("Connection reset")
        >>> error.retryable
        True
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(ConduitError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class DatabaseConnectionError(TransientError):
    """Lost or refused database connection."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(ConduitError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(ConduitError):
    """Database query or transaction error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class TransactionStateError(DatabaseError):
    """A transaction was begun twice, or completed twice."""


# =============================================================================
# REQUEST ERRORS
# =============================================================================


class ValidationError(ConduitError):
    """Request payload failed validation. Never retryable."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        errors: dict[str, list[str]] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.errors = errors or {}

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.errors:
            result["errors"] = self.errors
        return result


class NotFoundError(ConduitError):
    """Requested resource does not exist."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


class DispatchError(ConduitError):
    """Request could not be routed through the mediator."""

    default_category = ErrorCategory.DISPATCH
    default_retryable = False


class HandlerNotFoundError(DispatchError):
    """No handler registered for a request type."""

    def __init__(self, request_type: type):
        self.request_type = request_type
        super().__init__(f"No handler registered for {request_type.__name__}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable.

    ``asyncio.CancelledError`` is never retryable: it is a ``BaseException``
    and falls through every check below.
    """
    if isinstance(error, ConduitError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))
