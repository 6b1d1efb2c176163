"""Tests for the startup database initialization service."""

import asyncio
from unittest.mock import patch

import pytest

from conduit.core.retry import GrowingDelay
from conduit.core.settings import Environment
from conduit.infrastructure.database import Database, create_conduit_engine
from conduit.services.database_initialization import (
    DatabaseInitializationService,
    InitializationOutcome,
    wait_for_shutdown,
)
from tests._support import MEMORY_URL

LOG = "conduit.services.database_initialization.log"


class FlakyContext:
    """Context whose ``ensure_created`` fails a fixed number of times."""

    def __init__(self, owner: "FlakyContextFactory") -> None:
        self._owner = owner

    async def __aenter__(self) -> "FlakyContext":
        return self

    async def __aexit__(self, *args) -> None:
        self._owner.closed += 1

    async def ensure_created(self) -> bool:
        self._owner.calls += 1
        if self._owner.block is not None:
            await self._owner.block.wait()
        if self._owner.calls <= self._owner.failures:
            raise ConnectionRefusedError(f"database not reachable (call {self._owner.calls})")
        return True


class FlakyContextFactory:
    def __init__(self, failures: int = 0, block: asyncio.Event | None = None) -> None:
        self.failures = failures
        self.block = block
        self.calls = 0
        self.closed = 0

    def __call__(self) -> FlakyContext:
        return FlakyContext(self)


class RecordingWait:
    """Stand-in for ``wait_for_shutdown`` that never sleeps."""

    def __init__(self, shutdown_on_call: int | None = None) -> None:
        self.delays: list[float] = []
        self._shutdown_on_call = shutdown_on_call

    async def __call__(self, shutdown: asyncio.Event, delay: float) -> bool:
        self.delays.append(delay)
        if self._shutdown_on_call == len(self.delays):
            shutdown.set()
        return shutdown.is_set()


def _service(factory, environment=Environment.DEVELOPMENT, **kwargs) -> DatabaseInitializationService:
    kwargs.setdefault("wait", RecordingWait())
    return DatabaseInitializationService(factory, environment, **kwargs)


class TestEnvironmentGate:
    @pytest.mark.asyncio
    async def test_production_makes_no_attempt(self):
        factory = FlakyContextFactory()
        service = _service(factory, Environment.PRODUCTION)

        assert service.enabled is False
        assert await service.run() is InitializationOutcome.SKIPPED
        assert service.attempts == 0
        assert factory.calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("environment", [Environment.DEVELOPMENT, Environment.STAGING])
    async def test_development_and_staging_ensure_schema(self, environment):
        factory = FlakyContextFactory()
        service = _service(factory, environment)

        assert await service.run() is InitializationOutcome.SUCCEEDED
        assert service.attempts == 1
        assert factory.closed == 1


class TestRetrySchedule:
    @pytest.mark.asyncio
    async def test_recovers_after_three_failures(self):
        wait = RecordingWait()
        service = _service(FlakyContextFactory(failures=3), wait=wait)

        with patch(LOG) as mock_log:
            outcome = await service.run()

        assert outcome is InitializationOutcome.SUCCEEDED
        assert service.attempts == 4
        assert wait.delays == [40.0, 60.0, 90.0]
        assert mock_log.error.call_count == 3
        mock_log.critical.assert_not_called()

    @pytest.mark.asyncio
    async def test_gives_up_after_ten_attempts(self):
        wait = RecordingWait()
        factory = FlakyContextFactory(failures=100)
        service = _service(factory, wait=wait)

        with patch(LOG) as mock_log:
            outcome = await service.run()

        assert outcome is InitializationOutcome.EXHAUSTED
        assert service.attempts == 10
        assert factory.calls == 10
        assert wait.delays == [40.0, 60.0, 90.0, 135.0, 202.5, 250.0, 250.0, 250.0, 250.0]
        mock_log.critical.assert_called_once()
        assert mock_log.critical.call_args.args[0] == "db_init.exhausted"

    @pytest.mark.asyncio
    async def test_custom_policy(self):
        wait = RecordingWait()
        policy = GrowingDelay(max_attempts=3, initial_delay=1.0, multiplier=2.0, max_delay=10.0)
        service = _service(FlakyContextFactory(failures=5), policy=policy, wait=wait)

        assert await service.run() is InitializationOutcome.EXHAUSTED
        assert service.attempts == 3
        assert wait.delays == [1.0, 2.0]


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_during_wait_stops_retrying(self):
        wait = RecordingWait(shutdown_on_call=2)
        factory = FlakyContextFactory(failures=100)
        service = _service(factory, wait=wait)

        with patch(LOG) as mock_log:
            outcome = await service.run(asyncio.Event())

        assert outcome is InitializationOutcome.CANCELLED
        assert service.attempts == 2
        assert factory.calls == 2
        mock_log.critical.assert_not_called()

    @pytest.mark.asyncio
    async def test_shutdown_before_start(self):
        shutdown = asyncio.Event()
        shutdown.set()
        factory = FlakyContextFactory()

        assert await _service(factory).run(shutdown) is InitializationOutcome.CANCELLED
        assert factory.calls == 0

    @pytest.mark.asyncio
    async def test_shutdown_during_attempt_cancels(self):
        shutdown = asyncio.Event()
        factory = FlakyContextFactory(block=asyncio.Event())
        service = _service(factory)

        task = asyncio.create_task(service.run(shutdown))
        while factory.calls == 0:
            await asyncio.sleep(0)
        shutdown.set()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert service.attempts == 1
        assert factory.closed == 1

    @pytest.mark.asyncio
    async def test_attempt_timeout_counts_as_failure(self):
        factory = FlakyContextFactory(block=asyncio.Event())
        policy = GrowingDelay(max_attempts=2, initial_delay=0.0)
        service = _service(factory, policy=policy, attempt_timeout=0.01)

        with patch(LOG) as mock_log:
            outcome = await service.run()

        assert outcome is InitializationOutcome.EXHAUSTED
        assert service.attempts == 2
        first_failure = mock_log.error.call_args_list[0]
        assert first_failure.kwargs["error_type"] == "TransientError"

    @pytest.mark.asyncio
    async def test_stop_is_harmless(self):
        service = _service(FlakyContextFactory())
        await service.stop()
        assert await service.run() is InitializationOutcome.SUCCEEDED


class TestWaitForShutdown:
    @pytest.mark.asyncio
    async def test_elapses_without_shutdown(self):
        assert await wait_for_shutdown(asyncio.Event(), 0.01) is False

    @pytest.mark.asyncio
    async def test_returns_early_on_shutdown(self):
        shutdown = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, shutdown.set)
        assert await wait_for_shutdown(shutdown, 30.0) is True


@pytest.mark.integration
@pytest.mark.asyncio
async def test_ensures_schema_on_sqlite():
    db = Database(create_conduit_engine(MEMORY_URL))
    try:
        service = DatabaseInitializationService(db.context, Environment.DEVELOPMENT)
        assert await service.run() is InitializationOutcome.SUCCEEDED
        assert service.attempts == 1
    finally:
        await db.dispose()
