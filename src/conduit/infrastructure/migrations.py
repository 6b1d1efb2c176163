"""SQL migration runner.

Reads ``.sql`` files from a migrations directory, tracks applied migrations
in the ``_migrations`` table, and applies pending ones in filename order.
Each file runs in its own transaction together with its tracking record.

Statements inside a file are separated by ``;`` at the end of a line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, insert, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from conduit.core.logging import get_logger

log = get_logger(__name__)

_tracking_metadata = MetaData()

migrations_table = Table(
    "_migrations",
    _tracking_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("filename", String(255), nullable=False, unique=True),
    Column("applied_at", DateTime(timezone=True), nullable=False),
)


@dataclass
class MigrationRecord:
    """Record of a single applied migration."""

    id: int
    filename: str
    applied_at: datetime


@dataclass
class MigrationResult:
    """Result of a migration run."""

    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


def split_statements(sql: str) -> list[str]:
    """Split a migration script into individual statements."""
    statements: list[str] = []
    current: list[str] = []
    for line in sql.splitlines():
        if line.strip().startswith("--"):
            continue
        current.append(line)
        if line.rstrip().endswith(";"):
            statement = "\n".join(current).strip().rstrip(";").strip()
            if statement:
                statements.append(statement)
            current = []
    tail = "\n".join(current).strip()
    if tail:
        statements.append(tail)
    return statements


class MigrationRunner:
    """Applies SQL migrations from a directory against an async engine.

    Example::

        runner = MigrationRunner(engine, Path("migrations"))
        result = await runner.apply_pending()
        print(f"Applied {len(result.applied)} migrations")
    """

    def __init__(self, engine: AsyncEngine, migrations_dir: Path | str | None) -> None:
        self._engine = engine
        self._migrations_dir = Path(migrations_dir) if migrations_dir else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def apply_pending(self) -> MigrationResult:
        """Apply all pending migrations in filename order, stopping at the first error."""
        result = MigrationResult()
        await self._ensure_migrations_table()
        applied = {r.filename for r in await self.get_applied()}

        for sql_file in self._discover_migrations():
            name = sql_file.name
            if name in applied:
                result.skipped.append(name)
                continue

            try:
                sql = sql_file.read_text(encoding="utf-8")
                async with self._engine.begin() as conn:
                    for statement in split_statements(sql):
                        await conn.exec_driver_sql(statement)
                    await self._record_migration(conn, name)
            except Exception as exc:
                result.errors[name] = str(exc)
                log.error("migration.failed", migration=name, error=str(exc))
                break
            result.applied.append(name)
            log.info("migration.applied", migration=name)

        return result

    async def get_applied(self) -> list[MigrationRecord]:
        """Return list of already-applied migrations."""
        await self._ensure_migrations_table()
        async with self._engine.connect() as conn:
            rows = await conn.execute(
                select(
                    migrations_table.c.id,
                    migrations_table.c.filename,
                    migrations_table.c.applied_at,
                ).order_by(migrations_table.c.id)
            )
            return [
                MigrationRecord(id=row.id, filename=row.filename, applied_at=row.applied_at)
                for row in rows
            ]

    async def get_pending(self) -> list[str]:
        """Return filenames of migrations not yet applied."""
        applied = {r.filename for r in await self.get_applied()}
        return [f.name for f in self._discover_migrations() if f.name not in applied]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_migrations_table(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(_tracking_metadata.create_all, checkfirst=True)

    def _discover_migrations(self) -> list[Path]:
        if self._migrations_dir is None or not self._migrations_dir.exists():
            return []
        return sorted(self._migrations_dir.glob("*.sql"))

    @staticmethod
    async def _record_migration(conn: AsyncConnection, filename: str) -> None:
        await conn.execute(
            insert(migrations_table).values(filename=filename, applied_at=datetime.now(UTC))
        )
