"""
Database initialization service.

Started once by the API lifespan as a background task.  In Development
and Staging it makes sure the database schema exists, retrying while the
database server is still coming up; in every other environment the schema
is managed by migrations and the service does nothing.

Lifecycle::

    SKIPPED                                   (environment not Development/Staging)
    ATTEMPTING(1) ─ok──▶ SUCCEEDED
        │ fail
        ▼  wait 40s
    ATTEMPTING(2) ─ok──▶ SUCCEEDED
        │ fail
        ▼  wait 60s  (×1.5 each time, capped at 250s)
       ...
    ATTEMPTING(10) ─fail──▶ EXHAUSTED         (critical log, no exception)

    shutdown during an attempt  ──▶ CANCELLED  (CancelledError propagates)
    shutdown during a wait      ──▶ CANCELLED  (returns quietly)

Each attempt uses its own ``DatabaseContext`` and is bounded by a
three-minute budget that is cut short by the shutdown event.  An attempt
that runs out of budget counts as an ordinary failure.

Tags:
    conduit, startup, database, retry, background-task

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

from conduit.core.errors import TransientError
from conduit.core.logging import get_logger
from conduit.core.retry import GrowingDelay
from conduit.core.settings import Environment
from conduit.infrastructure.database import DatabaseContext

log = get_logger(__name__)

ATTEMPT_TIMEOUT_SECONDS = 180.0
DEFAULT_POLICY = GrowingDelay(max_attempts=10, initial_delay=40.0, multiplier=1.5, max_delay=250.0)


class InitializationOutcome(str, Enum):
    """Terminal state of one ``run()``."""

    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


async def wait_for_shutdown(shutdown: asyncio.Event, delay: float) -> bool:
    """Sleep up to *delay* seconds. Returns ``True`` if *shutdown* was set meanwhile."""
    try:
        async with asyncio.timeout(delay):
            await shutdown.wait()
    except TimeoutError:
        return False
    return True


class DatabaseInitializationService:
    """Ensures the database schema exists at startup, with bounded retries."""

    def __init__(
        self,
        context_factory: Callable[[], DatabaseContext],
        environment: Environment,
        *,
        policy: GrowingDelay = DEFAULT_POLICY,
        attempt_timeout: float = ATTEMPT_TIMEOUT_SECONDS,
        wait: Callable[[asyncio.Event, float], Awaitable[bool]] = wait_for_shutdown,
    ) -> None:
        self._context_factory = context_factory
        self._environment = environment
        self._policy = policy
        self._attempt_timeout = attempt_timeout
        self._wait = wait
        self.attempts = 0

    @property
    def enabled(self) -> bool:
        return self._environment.is_development or self._environment.is_staging

    async def run(self, shutdown: asyncio.Event | None = None) -> InitializationOutcome:
        shutdown = shutdown if shutdown is not None else asyncio.Event()

        if not self.enabled:
            log.info("db_init.skipped", environment=self._environment.value)
            return InitializationOutcome.SKIPPED

        max_attempts = self._policy.max_attempts
        delays = self._policy.delays()
        log.info("db_init.starting", environment=self._environment.value, max_retries=max_attempts)

        outcome: InitializationOutcome | None = None
        attempt = 0
        while outcome is None:
            attempt += 1
            if shutdown.is_set():
                log.warning("db_init.cancelled", reason="shutdown", attempt=attempt)
                outcome = InitializationOutcome.CANCELLED
                break

            self.attempts = attempt
            try:
                created = await self._attempt(shutdown)
            except asyncio.CancelledError:
                log.warning("db_init.cancelled", reason="shutdown", attempt=attempt)
                raise
            except Exception as exc:
                log.error(
                    "db_init.attempt_failed",
                    attempt=attempt,
                    max_retries=max_attempts,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                if attempt >= max_attempts:
                    log.critical(
                        "db_init.exhausted",
                        max_retries=max_attempts,
                        message="Could not ensure database. The application might not function correctly.",
                    )
                    outcome = InitializationOutcome.EXHAUSTED
                    break

                delay = next(delays)
                log.info("db_init.retrying", delay_s=delay, next_attempt=attempt + 1)
                if await self._wait(shutdown, delay):
                    log.warning("db_init.retry_wait_cancelled", reason="shutdown")
                    outcome = InitializationOutcome.CANCELLED
            else:
                log.info("db_init.succeeded", attempt=attempt, created=created)
                outcome = InitializationOutcome.SUCCEEDED

        return outcome

    async def stop(self) -> None:
        """Nothing to release."""

    async def _attempt(self, shutdown: asyncio.Event) -> bool:
        async with self._context_factory() as context:
            ensure = asyncio.create_task(context.ensure_created())
            watcher = asyncio.create_task(shutdown.wait())
            try:
                done, _ = await asyncio.wait(
                    {ensure, watcher},
                    timeout=self._attempt_timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                watcher.cancel()
                if not ensure.done():
                    ensure.cancel()

            if ensure in done:
                return ensure.result()

            await asyncio.gather(ensure, return_exceptions=True)
            if shutdown.is_set():
                raise asyncio.CancelledError("shutdown requested during database initialization")
            raise TransientError(
                f"Schema check did not finish within {self._attempt_timeout:g}s"
            )
