"""Schema versioning for the image store.

A migration is a module exposing ``async upgrade(db)``. Applied names are
kept in ``_migrations``, and each migration is committed together with its
record, so a failed step is retried on the next start.
"""

import importlib
import logging

import aiosqlite

logger = logging.getLogger(__name__)

# Applied in this order
SCHEMA_MIGRATIONS = (
    "imageservice.migrations.m001_initial",
)

_TRACKING_TABLE = """
    CREATE TABLE IF NOT EXISTS _migrations (
        name        TEXT PRIMARY KEY,
        applied_at  TEXT NOT NULL DEFAULT (datetime('now'))
    )
"""


async def pending_migrations(db: aiosqlite.Connection) -> list[str]:
    """Names from SCHEMA_MIGRATIONS not yet recorded in this database."""
    await db.execute(_TRACKING_TABLE)
    async with db.execute("SELECT name FROM _migrations") as cursor:
        done = {row[0] async for row in cursor}
    return [name for name in SCHEMA_MIGRATIONS if name not in done]


async def run_migrations(db: aiosqlite.Connection) -> list[str]:
    """Bring the schema up to date and return the names applied this time."""
    pending = await pending_migrations(db)
    await db.commit()
    if not pending:
        logger.debug("Schema up to date (%d migrations)", len(SCHEMA_MIGRATIONS))
        return []

    for name in pending:
        module = importlib.import_module(name)
        try:
            await module.upgrade(db)
            await db.execute("INSERT INTO _migrations (name) VALUES (?)", (name,))
        except aiosqlite.Error:
            await db.rollback()
            logger.exception("Migration %s failed", name)
            raise
        await db.commit()

    logger.info("Applied %d migration(s): %s", len(pending), ", ".join(pending))
    return pending
