"""Versioned SQL migrations.

Files are named ``NNN_description.sql`` and applied in version order, each in
its own transaction together with its ``schema_migrations`` row.
"""

import logging
from pathlib import Path
from typing import Any

from scheduling.db.core import _get_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent

_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        description TEXT
    );
"""


async def get_current_version() -> int:
    async with _get_connection() as conn:
        await conn.execute(_CREATE_TABLE)
        cur = await conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
        row = await cur.fetchone()
        return int(row[0]) if row and row[0] else 0


async def apply_migration(version: int, sql: str, description: str = "") -> bool:
    """Apply a single migration.

    Returns:
        True if the migration was applied, False if it was already applied.
    """
    current = await get_current_version()
    if version <= current:
        logger.debug("Migration %d already applied", version)
        return False

    async with _get_connection(autocommit=False) as conn:
        try:
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (version, description) VALUES (%s, %s)",
                    (version, description),
                )
        except Exception as e:
            logger.error("Failed to apply migration %d: %s", version, e)
            raise
    logger.info("Applied migration %d: %s", version, description)
    return True


def list_migration_files() -> list[dict[str, Any]]:
    migrations = []
    for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
        # "001_booking_core.sql" -> 1
        try:
            version = int(path.stem.split("_")[0])
        except ValueError:
            continue
        migrations.append({
            "version": version,
            "filename": path.name,
            "description": "_".join(path.stem.split("_")[1:]),
            "path": path,
        })
    return migrations


async def get_pending_migrations() -> list[dict[str, Any]]:
    current = await get_current_version()
    return [m for m in list_migration_files() if m["version"] > current]


async def run_migrations() -> int:
    """Run all pending migrations and return how many were applied."""
    applied = 0
    for migration in await get_pending_migrations():
        sql = migration["path"].read_text()
        if await apply_migration(migration["version"], sql, migration["description"]):
            applied += 1

    if applied:
        logger.info("Applied %d migrations", applied)
    else:
        logger.debug("No pending migrations")
    return applied


async def get_migration_history() -> list[dict[str, Any]]:
    async with _get_connection() as conn:
        await conn.execute(_CREATE_TABLE)
        cur = await conn.execute(
            "SELECT version, applied_at, description FROM schema_migrations ORDER BY version"
        )
        rows = await cur.fetchall()
    return [
        {"version": version, "applied_at": applied_at, "description": description}
        for version, applied_at, description in rows
    ]
