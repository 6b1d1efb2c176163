"""Transaction pipeline behavior.

Wraps every dispatched request in a ``READ COMMITTED`` database
transaction on the request's ``DatabaseContext``:

* no transaction open, strategy available → ``RetryingTransactionRunner``;
  the strategy re-runs "begin → handler → commit" on transient failures,
  and each failed attempt is rolled back before the strategy sees it.
* no transaction open, no strategy → ``PlainTransactionRunner``; one
  attempt, commit on success, rollback and re-raise on failure.
* transaction already open (a handler dispatching another request) → the
  inner request joins the ambient transaction; the outermost invocation
  owns the single commit or rollback.

A handler returning an ``Err`` result is treated like a raised exception
for commit purposes: the transaction is rolled back and the ``Err`` is
returned as-is.  Exceptions are never wrapped; ``asyncio.CancelledError``
triggers the same rollback and then propagates.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from conduit.core.logging import get_logger
from conduit.core.result import is_fault
from conduit.infrastructure.database import DatabaseContext, DatabaseTransaction, IsolationLevel
from conduit.infrastructure.execution_strategy import ExecutionStrategy
from conduit.infrastructure.mediator import NextHandler

log = get_logger(__name__)

TRANSACTION_ISOLATION_LEVEL = IsolationLevel.READ_COMMITTED


class TransactionRunner(Protocol):
    """Runs a unit of work transactionally."""

    async def run(self, unit_of_work: NextHandler) -> Any: ...


async def _rollback_logged(transaction: DatabaseTransaction, error: BaseException) -> None:
    try:
        await transaction.rollback()
    except Exception as rollback_error:
        log.error(
            "transaction.rollback_failed",
            error_type=type(rollback_error).__name__,
            error=str(rollback_error),
            original_error_type=type(error).__name__,
        )


async def _rollback_preserving(
    context: DatabaseContext, transaction: DatabaseTransaction, error: BaseException
) -> None:
    # The rollback must finish even if the surrounding task is being cancelled;
    # the context keeps it so closing the session waits for it.
    rollback = asyncio.create_task(_rollback_logged(transaction, error))
    context.track_rollback(rollback)
    await asyncio.shield(rollback)


class PlainTransactionRunner:
    """One attempt: begin, run, commit; rollback on any failure."""

    def __init__(
        self,
        context: DatabaseContext,
        isolation_level: IsolationLevel = TRANSACTION_ISOLATION_LEVEL,
    ) -> None:
        self._context = context
        self._isolation_level = isolation_level

    async def run(self, unit_of_work: NextHandler) -> Any:
        transaction = await self._context.begin_transaction(self._isolation_level)
        try:
            result = await unit_of_work()
            if is_fault(result):
                await transaction.rollback()
                log.debug("transaction.rolled_back", reason="fault_result")
                return result
            await transaction.commit()
            return result
        except BaseException as exc:
            if transaction.is_active:
                await _rollback_preserving(self._context, transaction, exc)
                log.debug("transaction.rolled_back", reason=type(exc).__name__)
            raise


class RetryingTransactionRunner:
    """Hands each transactional attempt to an execution strategy."""

    def __init__(self, strategy: ExecutionStrategy, attempt_runner: PlainTransactionRunner) -> None:
        self._strategy = strategy
        self._attempt_runner = attempt_runner

    async def run(self, unit_of_work: NextHandler) -> Any:
        return await self._strategy.execute(lambda: self._attempt_runner.run(unit_of_work))


class TransactionPipelineBehavior:
    """Pipeline behavior enclosing each request in a database transaction."""

    def __init__(self, context: DatabaseContext) -> None:
        self._context = context

    def select_runner(self) -> TransactionRunner:
        plain = PlainTransactionRunner(self._context, TRANSACTION_ISOLATION_LEVEL)
        strategy = self._context.create_execution_strategy()
        if strategy is None:
            return plain
        return RetryingTransactionRunner(strategy, plain)

    async def handle(self, request: Any, next_: NextHandler) -> Any:
        if self._context.current_transaction is not None:
            log.debug("transaction.join_ambient", request_type=type(request).__name__)
            return await next_()
        return await self.select_runner().run(next_)
