"""Schema initialization on top of the versioned migrations in ``migrations/``."""

import logging

from scheduling.db.migrations import get_current_version, get_migration_history, run_migrations

logger = logging.getLogger(__name__)


async def ensure_schema() -> None:
    """Apply pending migrations. Safe to call repeatedly."""
    current_version = await get_current_version()
    logger.info("Current schema version: %d", current_version)

    applied = await run_migrations()

    if applied > 0:
        new_version = await get_current_version()
        logger.info("Schema updated from version %d to %d", current_version, new_version)
    else:
        logger.debug("Schema is up to date at version %d", current_version)


async def get_schema_info() -> dict:
    return {
        "current_version": await get_current_version(),
        "migration_history": await get_migration_history(),
    }
