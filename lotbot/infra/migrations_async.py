# lotbot/infra/migrations_async.py
"""
Async database migrations runner (asyncpg) and startup schema check.

The application does NOT run migrations itself: they run separately
(``python -m lotbot.infra.migrate``) and startup only verifies that the
latest applied migration is the one this build expects.
"""
from __future__ import annotations
from pathlib import Path

from lotbot.config import settings
from lotbot.infra.db_async import db_conn
from lotbot.infra.logging_config import get_logger

logger = get_logger(__name__)


MIGRATION_LOCK_ID = 7_341_002


def _sql_dir() -> Path:
    return Path(__file__).resolve().parent / "sql"


def pending_migrations(files: list[Path], applied: set[str]) -> list[Path]:
    """Files not yet recorded in ``schema_migrations``, in filename order."""
    return sorted((p for p in files if p.name not in applied), key=lambda p: p.name)


async def apply_migrations() -> dict:
    """
    Apply every pending ``sql/*.sql`` file in one transaction.

    A transaction-scoped advisory lock serializes concurrent runs (two
    deploys starting at once); the second run sees nothing pending.

    Returns:
        ``{"ok": True, "applied": [filenames], "count": n}``
    """
    files = [p for p in _sql_dir().glob("*.sql") if p.is_file()]

    async with db_conn(autocommit=False) as conn:
        await conn.execute("SELECT pg_advisory_xact_lock($1)", MIGRATION_LOCK_ID)
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations(
              version text PRIMARY KEY,
              applied_at timestamptz NOT NULL DEFAULT now()
            )
            """
        )
        applied = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}

        todo = pending_migrations(files, applied)
        for path in todo:
            logger.info(f"Applying migration {path.name}")
            await conn.execute(path.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO schema_migrations(version) VALUES ($1)", path.name)

    names = [p.name for p in todo]
    logger.info(f"Migrations complete: {len(names)} applied, {len(applied)} already present")
    return {"ok": True, "applied": names, "count": len(names)}


async def validate_schema_version() -> dict:
    """
    Check that the latest applied migration matches ``expected_schema_version``.

    Raises:
        RuntimeError: schema not initialized or at a different version
    """
    async with db_conn() as conn:
        table_exists = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public'
                AND table_name = 'schema_migrations'
            )
            """
        )
        latest = None
        if table_exists:
            latest = await conn.fetchrow(
                "SELECT version FROM schema_migrations ORDER BY version DESC LIMIT 1"
            )

    if not latest:
        error = "No migrations have been applied. Run migrations first: python -m lotbot.infra.migrate"
        logger.critical(error)
        raise RuntimeError(error)

    current_version = latest['version']
    if current_version != settings.expected_schema_version:
        error = (
            f"Schema version mismatch! "
            f"Expected: {settings.expected_schema_version}, Found: {current_version}. "
            f"Run migrations to update schema: python -m lotbot.infra.migrate"
        )
        logger.critical(error)
        raise RuntimeError(error)

    return {"ok": True, "current_version": current_version}
