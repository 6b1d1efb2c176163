"""
Conduit command line.

    conduit serve               Start the API with uvicorn.
    conduit db ensure-created   Create any missing tables (development).
    conduit db migrate          Apply pending SQL migrations (production).
    conduit db pending          List migrations not yet applied.

All commands read the same settings as the API (``DB_CONNECTION_STRING``,
``CONDUIT_*`` environment variables, ``.env``).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from rich.console import Console

from conduit.core.errors import ConfigError
from conduit.core.logging import configure_logging
from conduit.core.settings import ConduitSettings, get_settings
from conduit.infrastructure.database import Database
from conduit.infrastructure.migrations import MigrationResult, MigrationRunner

T = TypeVar("T")

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="conduit",
    help="Conduit: RealWorld article API.",
    no_args_is_help=True,
)
db_app = typer.Typer(no_args_is_help=True, help="Database management commands.")
app.add_typer(db_app, name="db")


def _load_settings() -> ConduitSettings:
    settings = get_settings()
    try:
        settings.require_connection_string()
    except ConfigError as exc:
        err_console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=2) from exc
    configure_logging(level=settings.log_level, json_format=settings.log_json, service="conduit-cli")
    return settings


def _with_database(settings: ConduitSettings, action: Callable[[Database], Awaitable[T]]) -> T:
    async def _run() -> T:
        database = Database.from_settings(settings)
        try:
            return await action(database)
        finally:
            await database.dispose()

    return asyncio.run(_run())


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
) -> None:
    """Start the Conduit REST API server."""
    import uvicorn

    settings = _load_settings()
    bind_host = host or settings.host
    bind_port = port or settings.port
    console.print(f"[bold green]Starting Conduit API[/bold green] on {bind_host}:{bind_port}")
    uvicorn.run(
        "conduit.api.app:create_app",
        factory=True,
        host=bind_host,
        port=bind_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@db_app.command("ensure-created")
def ensure_created() -> None:
    """Create any missing tables without applying migrations."""
    settings = _load_settings()

    async def _ensure(database: Database) -> bool:
        async with database.context() as ctx:
            return await ctx.ensure_created()

    created = _with_database(settings, _ensure)
    if created:
        console.print("[green]Database schema created.[/green]")
    else:
        console.print("Database schema already present.")


@db_app.command()
def migrate() -> None:
    """Apply pending SQL migrations."""
    settings = _load_settings()

    async def _migrate(database: Database) -> MigrationResult:
        async with database.context() as ctx:
            return await ctx.migrate()

    result = _with_database(settings, _migrate)
    for name in result.applied:
        console.print(f"[green]applied[/green] {name}")
    for name, error in result.errors.items():
        err_console.print(f"[red]failed[/red] {name}: {error}")
    if not result.success:
        raise typer.Exit(code=1)
    if not result.applied:
        console.print("No pending migrations.")


@db_app.command()
def pending() -> None:
    """List migrations that have not been applied yet."""
    settings = _load_settings()

    async def _pending(database: Database) -> list[str]:
        return await MigrationRunner(database.engine, database.migrations_dir).get_pending()

    names = _with_database(settings, _pending)
    if not names:
        console.print("No pending migrations.")
    for name in names:
        console.print(name)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
