"""
Shared pytest fixtures and configuration for Conduit tests.

This module provides:
- Settings builders that ignore the developer's environment and ``.env``
- A fresh handler registry per test
- An in-memory SQLite ``Database`` for integration tests

Usage:
    Fixtures are auto-discovered by pytest.  Ask for them by name::

        def test_something(dev_settings, registry):
            ...
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
import structlog

from conduit.core.settings import CONNECTION_STRING_KEY, ConduitSettings, get_settings
from conduit.infrastructure.database import Database, create_conduit_engine
from conduit.infrastructure.mediator import HandlerRegistry
from tests._support import MEMORY_URL


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without an explicit marker as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Environment isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep real deployment variables out of the settings under test."""
    monkeypatch.delenv(CONNECTION_STRING_KEY, raising=False)
    monkeypatch.delenv("CONDUIT_ENVIRONMENT", raising=False)
    monkeypatch.delenv("CONDUIT_DB_CONNECTION_STRING", raising=False)
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _reset_structlog() -> Generator[None, None, None]:
    """Undo ``configure_logging()`` so cached loggers never outlive a test's stdout."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def make_settings() -> Callable[..., ConduitSettings]:
    """Factory for settings that never read ``.env``."""

    def _make(**overrides: Any) -> ConduitSettings:
        values: dict[str, Any] = {
            "environment": "Development",
            "db_connection_string": MEMORY_URL,
        }
        values.update(overrides)
        return ConduitSettings(_env_file=None, **values)

    return _make


@pytest.fixture
def dev_settings(make_settings) -> ConduitSettings:
    return make_settings()


# =============================================================================
# Mediator
# =============================================================================


@pytest.fixture
def registry() -> HandlerRegistry:
    """A private handler registry so tests never leak handlers."""
    return HandlerRegistry()


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    """In-memory SQLite database with retry disabled."""
    db = Database(create_conduit_engine(MEMORY_URL), retry_on_failure=False)
    yield db
    await db.dispose()


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    path = tmp_path / "migrations"
    path.mkdir()
    return path
