"""
FastAPI application factory.

``create_app()`` wires settings, the database, middleware, error handlers,
health endpoints and the lifespan into a single ``FastAPI`` instance.

Startup order:
    1. The connection string is validated; a missing one raises
       ``MissingConfigError`` and the process never serves traffic.
    2. The lifespan configures logging and starts the database
       initialization service as a background task.  Startup does not
       wait for it.
    3. On shutdown the service is signalled, given a short grace period,
       and the engine is disposed.

Tags:
    conduit, api, app-factory, composition-root, FastAPI

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from conduit import __version__
from conduit.api.health import HealthCheck, create_health_router
from conduit.api.middleware.errors import conduit_exception_handler, unhandled_exception_handler
from conduit.api.middleware.request_id import RequestIDMiddleware
from conduit.core.errors import ConduitError
from conduit.core.logging import configure_logging, get_logger
from conduit.core.settings import ConduitSettings, get_settings
from conduit.infrastructure.database import Database
from conduit.services.database_initialization import (
    DatabaseInitializationService,
    InitializationOutcome,
)

log = get_logger(__name__)

SHUTDOWN_GRACE_SECONDS = 5.0


def _log_initialization_outcome(task: asyncio.Task[InitializationOutcome]) -> None:
    if task.cancelled():
        log.warning("db_init.task_cancelled")
        return
    exc = task.exception()
    if exc is not None:
        log.error("db_init.task_failed", error_type=type(exc).__name__, error=str(exc))
        return
    log.info("db_init.finished", outcome=task.result().value)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup / shutdown hooks."""
    settings: ConduitSettings = app.state.settings
    database: Database = app.state.database

    configure_logging(level=settings.log_level, json_format=settings.log_json, service="conduit")
    log.info(
        "conduit API starting",
        version=app.version,
        environment=settings.environment.value,
    )

    service = DatabaseInitializationService(database.context, settings.environment)
    shutdown = asyncio.Event()
    task = asyncio.create_task(service.run(shutdown), name="database-initialization")
    task.add_done_callback(_log_initialization_outcome)
    app.state.db_initialization = task

    try:
        yield
    finally:
        shutdown.set()
        await service.stop()
        _, pending = await asyncio.wait({task}, timeout=SHUTDOWN_GRACE_SECONDS)
        if pending:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await database.dispose()
        log.info("conduit API shutting down")


def create_app(
    *,
    settings: ConduitSettings | None = None,
    database: Database | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : ConduitSettings | None
        Override settings (useful for testing).  When ``None`` the cached
        singleton from :func:`get_settings` is used.
    database : Database | None
        Pre-built database resources; built from *settings* when ``None``.
    """
    settings = settings or get_settings()
    settings.require_connection_string()
    database = database or Database.from_settings(settings)

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url="/swagger",
        redoc_url=None,
        openapi_url=f"/swagger/{settings.api_version}/swagger.json",
    )

    app.state.settings = settings
    app.state.database = database

    # ── Middleware ───────────────────────────────────────────────────
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(ConduitError, conduit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    app.include_router(
        create_health_router(
            "conduit",
            version=__version__,
            checks=[HealthCheck("database", database.ping)],
        ),
    )

    return app
