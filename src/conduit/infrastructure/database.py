"""Async SQLAlchemy engine factory, database context and transaction handle.

This module provides:

* ``create_conduit_engine``  -- Create an ``AsyncEngine`` from a URL with sane defaults.
* ``ConduitBase``            -- Declarative base whose metadata ``ensure_created`` provisions.
* ``Database``               -- Process-wide owner of the engine, session factory and
  retry policy; hands out scoped ``DatabaseContext`` objects.
* ``DatabaseContext``        -- One unit of work: an ``AsyncSession`` plus the
  "current transaction" bookkeeping the transaction behavior relies on.
* ``DatabaseTransaction``    -- Handle for a single transaction, completed by
  exactly one ``commit()`` or ``rollback()``.

Every call that touches the database is awaitable, so transaction
boundaries and schema provisioning suspend the calling task instead of
blocking the event loop.  Cancellation is the task's own: a cancelled task
raises ``asyncio.CancelledError`` at its next await.

Tags:
    conduit, orm, sqlalchemy, asyncio, session, transaction

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, MetaData, Text, event, inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from conduit.core.errors import TransactionStateError
from conduit.core.logging import get_logger
from conduit.core.settings import ConduitSettings
from conduit.infrastructure.execution_strategy import ExecutionStrategy, RetryingExecutionStrategy
from conduit.infrastructure.migrations import MigrationResult, MigrationRunner

log = get_logger(__name__)


class IsolationLevel(str, Enum):
    """Transaction isolation levels, spelled the way SQLAlchemy expects them."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


class ConduitBase(DeclarativeBase):
    """Shared declarative base for every Conduit table.

    * ``str``   → ``Text``
    * ``int``   → ``Integer``
    * ``datetime.datetime`` → ``DateTime``
    * ``dict`` / ``list``  → ``JSON``
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        datetime.datetime: DateTime,
        dict: JSON,
        list: JSON,
    }


def create_conduit_engine(
    url: str,
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: int | None = None,
    **kwargs: Any,
) -> AsyncEngine:
    """Create an async SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Async database URL (``postgresql+asyncpg://…``, ``sqlite+aiosqlite:///…``).
    echo:
        If ``True``, log all SQL.
    pool_size, max_overflow, pool_timeout:
        Connection pool parameters (ignored for SQLite).
    **kwargs:
        Extra arguments forwarded to ``create_async_engine``.
    """
    if url.startswith("sqlite"):
        # In-memory databases live inside one connection; share it.
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs.setdefault("poolclass", StaticPool)
        engine = create_async_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    pool_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    if pool_timeout is not None:
        pool_kwargs["pool_timeout"] = pool_timeout

    return create_async_engine(url, echo=echo, **pool_kwargs, **kwargs)


def conduit_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory bound to *engine* with ``expire_on_commit=False``."""
    return async_sessionmaker(bind=engine, expire_on_commit=False)


def _create_missing_tables(connection: Connection, metadata: MetaData) -> bool:
    existing = set(inspect(connection).get_table_names())
    missing = [table.name for table in metadata.sorted_tables if table.name not in existing]
    metadata.create_all(connection, checkfirst=True)
    return bool(missing)


class DatabaseTransaction:
    """A single open transaction on a ``DatabaseContext``.

    The handle is finished by exactly one successful ``commit()`` or one
    ``rollback()``.  A commit that raises leaves the transaction open so
    the caller can still roll it back.
    """

    def __init__(self, context: DatabaseContext, isolation_level: IsolationLevel) -> None:
        self._context = context
        self.isolation_level = isolation_level
        self.outcome: str | None = None

    @property
    def is_active(self) -> bool:
        return self.outcome is None

    async def commit(self) -> None:
        self._require_active("commit")
        await self._context.session.commit()
        self._finish("committed")

    async def rollback(self) -> None:
        self._require_active("rollback")
        try:
            await self._context.session.rollback()
        finally:
            self._finish("rolled_back")

    def _require_active(self, action: str) -> None:
        if not self.is_active:
            raise TransactionStateError(f"Cannot {action}: transaction already {self.outcome}")

    def _finish(self, outcome: str) -> None:
        self.outcome = outcome
        self._context._transaction_finished(self)


class DatabaseContext:
    """Scoped unit of work over one ``AsyncSession``.

    Created per request (or per startup attempt) and closed afterwards;
    never shared between concurrent tasks.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        execution_strategy_factory: Callable[[], ExecutionStrategy | None] | None = None,
        metadata: MetaData | None = None,
        migrations_dir: Path | None = None,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory or conduit_session_factory(engine)
        self._execution_strategy_factory = execution_strategy_factory
        self._metadata = metadata if metadata is not None else ConduitBase.metadata
        self._migrations_dir = migrations_dir
        self._session: AsyncSession | None = None
        self._transaction: DatabaseTransaction | None = None
        self._pending_rollbacks: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> DatabaseContext:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def session(self) -> AsyncSession:
        """The context's session, opened on first use."""
        if self._session is None:
            self._session = self._session_factory()
        return self._session

    @property
    def current_transaction(self) -> DatabaseTransaction | None:
        return self._transaction

    def create_execution_strategy(self) -> ExecutionStrategy | None:
        """Retry-capable execution strategy, or ``None`` when retry is disabled."""
        if self._execution_strategy_factory is None:
            return None
        return self._execution_strategy_factory()

    async def begin_transaction(
        self, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> DatabaseTransaction:
        """Open a transaction with *isolation_level* on this context's session."""
        if self._transaction is not None:
            raise TransactionStateError("A transaction is already open on this context")

        options: dict[str, Any] = {}
        # SQLite transactions are always serializable.
        if self._engine.dialect.name != "sqlite":
            options["isolation_level"] = isolation_level.value
        await self.session.connection(execution_options=options or None)

        transaction = DatabaseTransaction(self, isolation_level)
        self._transaction = transaction
        log.debug("transaction.begin", isolation_level=isolation_level.value)
        return transaction

    def track_rollback(self, rollback: asyncio.Task[None]) -> None:
        """Keep a shielded rollback alive until it finishes; ``close()`` waits for it."""
        self._pending_rollbacks.add(rollback)
        rollback.add_done_callback(self._pending_rollbacks.discard)

    def _transaction_finished(self, transaction: DatabaseTransaction) -> None:
        if self._transaction is transaction:
            self._transaction = None
        log.debug("transaction.end", outcome=transaction.outcome)

    async def ensure_created(self) -> bool:
        """Create any missing tables. Returns ``True`` if something was created."""
        async with self._engine.begin() as conn:
            return await conn.run_sync(_create_missing_tables, self._metadata)

    async def migrate(self) -> MigrationResult:
        """Apply pending SQL migrations from the configured directory."""
        return await MigrationRunner(self._engine, self._migrations_dir).apply_pending()

    async def can_connect(self) -> bool:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        # A rollback outliving its cancelled request still owns the session.
        if self._pending_rollbacks:
            await asyncio.wait(set(self._pending_rollbacks))
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._transaction = None


class Database:
    """Process-wide database resources: engine, session factory, retry policy.

    Example::

        database = Database.from_settings(settings)
        async with database.context() as ctx:
            await ctx.ensure_created()
        await database.dispose()
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        retry_on_failure: bool = True,
        max_retry_count: int = 15,
        max_retry_delay: float = 500.0,
        metadata: MetaData | None = None,
        migrations_dir: Path | None = None,
    ) -> None:
        self.engine = engine
        self.session_factory = conduit_session_factory(engine)
        self.retry_on_failure = retry_on_failure
        self.max_retry_count = max_retry_count
        self.max_retry_delay = max_retry_delay
        self.metadata = metadata
        self.migrations_dir = migrations_dir

    @classmethod
    def from_settings(cls, settings: ConduitSettings) -> Database:
        engine = create_conduit_engine(settings.require_connection_string(), echo=settings.db_echo)
        return cls(
            engine,
            retry_on_failure=settings.db_retry_on_failure,
            max_retry_count=settings.db_max_retry_count,
            max_retry_delay=settings.db_max_retry_delay,
            migrations_dir=settings.migrations_dir,
        )

    def create_execution_strategy(self) -> ExecutionStrategy | None:
        if not self.retry_on_failure:
            return None
        return RetryingExecutionStrategy.create(
            max_retry_count=self.max_retry_count,
            max_retry_delay=self.max_retry_delay,
        )

    def context(self) -> DatabaseContext:
        """A new scoped ``DatabaseContext``; close it (or use ``async with``) when done."""
        return DatabaseContext(
            self.engine,
            session_factory=self.session_factory,
            execution_strategy_factory=self.create_execution_strategy,
            metadata=self.metadata,
            migrations_dir=self.migrations_dir,
        )

    async def ping(self) -> bool:
        async with self.context() as ctx:
            return await ctx.can_connect()

    async def dispose(self) -> None:
        await self.engine.dispose()
