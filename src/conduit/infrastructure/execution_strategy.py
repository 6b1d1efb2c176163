"""
Execution strategies — re-run a unit of work on transient database failures.

A ``DatabaseContext`` hands out an execution strategy when retry-on-failure
is enabled.  The transaction behavior passes the whole
"begin → handler → commit" closure to ``execute()``, so a retried attempt
always starts from a fresh transaction.

Only errors classified by :func:`is_transient` are retried: dropped or
refused connections, pool timeouts, deadlocks and serialization failures,
a locked SQLite database, and anything flagged retryable in the Conduit
error hierarchy.  Everything else propagates on the first failure.

Example::

    strategy = RetryingExecutionStrategy.create(max_retry_count=15, max_retry_delay=500)
    result = await strategy.execute(lambda: do_work())
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from sqlalchemy import exc as sa_exc

from conduit.core.errors import is_retryable
from conduit.core.logging import get_logger
from conduit.core.retry import ExponentialBackoff

T = TypeVar("T")

log = get_logger(__name__)


class ExecutionStrategy(Protocol):
    """Runs an async operation, possibly more than once."""

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T: ...


# Class 08: connection exceptions.
_TRANSIENT_SQLSTATE_CLASSES = ("08",)
# Serialization failure, deadlock, admin/crash shutdown, cannot connect now.
_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "57P01", "57P02", "57P03"})
_SQLITE_TRANSIENT_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def _sqlstate(error: sa_exc.DBAPIError) -> str | None:
    code = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    return str(code) if code else None


def is_transient(error: BaseException) -> bool:
    """Classify *error* as a transient infrastructure failure.

    Driver errors are judged by what the database reported, not by their
    SQLAlchemy class: SQLite raises ``OperationalError`` for a missing
    table just as it does for a locked database.
    """
    if isinstance(error, sa_exc.DBAPIError):
        if error.connection_invalidated:
            return True
        code = _sqlstate(error)
        if code is not None:
            return code in _TRANSIENT_SQLSTATES or code.startswith(_TRANSIENT_SQLSTATE_CLASSES)
        message = str(error.orig).lower()
        if any(fragment in message for fragment in _SQLITE_TRANSIENT_MESSAGES):
            return True
        return error.orig is not None and is_retryable(error.orig)
    if isinstance(error, (sa_exc.DisconnectionError, sa_exc.TimeoutError)):
        return True
    return is_retryable(error)


class RetryingExecutionStrategy:
    """Retries an operation on transient errors with exponential backoff."""

    def __init__(
        self,
        backoff: ExponentialBackoff,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backoff = backoff
        self._sleep = sleep

    @classmethod
    def create(
        cls,
        *,
        max_retry_count: int = 15,
        max_retry_delay: float = 500.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> RetryingExecutionStrategy:
        backoff = ExponentialBackoff(
            max_retries=max_retry_count,
            base_delay=1.0,
            max_delay=max_retry_delay,
            multiplier=2.0,
            retryable=is_transient,
        )
        return cls(backoff, sleep=sleep)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        retries = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not self._backoff.should_retry(retries, exc):
                    raise
                delay = self._backoff.next_delay(retries)
                retries += 1
                log.warning(
                    "execution_strategy.retrying",
                    retry=retries,
                    max_retries=self._backoff.max_retries,
                    delay_s=round(delay, 3),
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                await self._sleep(delay)
