"""
Conduit settings.

All runtime configuration comes from environment variables (prefixed
``CONDUIT_``) or a ``.env`` file.  The database connection string keeps its
historical name, ``DB_CONNECTION_STRING``, so existing deployments need no
changes.

Order of precedence (highest → lowest):
    1. Constructor arguments (tests)
    2. Environment variables
    3. ``.env`` file
    4. Defaults below

Examples:
    >>> settings = ConduitSettings(environment="development", db_connection_string="sqlite+aiosqlite:///conduit.db")
    >>> settings.environment.is_development
    True

Tags:
    settings, configuration, pydantic, environment, conduit

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from conduit.core.errors import MissingConfigError

CONNECTION_STRING_KEY = "DB_CONNECTION_STRING"


class Environment(str, Enum):
    """Deployment environment classification."""

    DEVELOPMENT = "Development"
    STAGING = "Staging"
    PRODUCTION = "Production"

    @classmethod
    def _missing_(cls, value: object) -> Environment | None:
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        return None

    @property
    def is_development(self) -> bool:
        return self is Environment.DEVELOPMENT

    @property
    def is_staging(self) -> bool:
        return self is Environment.STAGING


class ConduitSettings(BaseSettings):
    """Settings for the Conduit API process."""

    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ── Deployment ───────────────────────────────────────────────
    environment: Environment = Field(
        default=Environment.PRODUCTION,
        description="Development, Staging or Production",
    )

    # ── Database ─────────────────────────────────────────────────
    db_connection_string: str = Field(
        default="",
        validation_alias=AliasChoices(CONNECTION_STRING_KEY, "CONDUIT_DB_CONNECTION_STRING"),
        description="SQLAlchemy async URL, e.g. postgresql+asyncpg://… or sqlite+aiosqlite:///…",
    )
    db_echo: bool = Field(default=False, description="Log all SQL statements")
    db_retry_on_failure: bool = Field(
        default=True,
        description="Retry request transactions on transient database errors",
    )
    db_max_retry_count: int = Field(default=15, ge=0)
    db_max_retry_delay: float = Field(default=500.0, gt=0, description="Seconds")
    migrations_dir: Path | None = Field(
        default=None,
        description="Directory of numbered .sql migration files",
    )

    # ── API ──────────────────────────────────────────────────────
    api_title: str = "RealWorld API"
    api_version: str = "v1"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # ── Server / observability ───────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 5000
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("environment", mode="before")
    @classmethod
    def _normalise_environment(cls, value: object) -> object:
        if isinstance(value, str):
            return Environment(value)
        return value

    def require_connection_string(self) -> str:
        """Return the connection string or fail fast when it is unset."""
        if not self.db_connection_string or not self.db_connection_string.strip():
            raise MissingConfigError(
                CONNECTION_STRING_KEY,
                f"Database connection string ('{CONNECTION_STRING_KEY}') is not configured. "
                "Application cannot start.",
            )
        return self.db_connection_string


@lru_cache(maxsize=1)
def get_settings() -> ConduitSettings:
    """Cached settings — loaded once per process."""
    return ConduitSettings()
