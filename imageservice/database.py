"""SQLite connection pool management and initialization."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite

from imageservice.config import settings
from imageservice.migrations.runner import run_migrations

logger = logging.getLogger(__name__)


class ConnectionPool:
    """A fixed set of aiosqlite connections handed out one caller at a time."""

    def __init__(self, connections: list[aiosqlite.Connection]):
        self._all = list(connections)
        self._idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        for conn in self._all:
            self._idle.put_nowait(conn)

    @property
    def size(self) -> int:
        return len(self._all)

    @property
    def available(self) -> int:
        return self._idle.qsize()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a connection, waiting while the pool is exhausted.

        Uncommitted work is rolled back if the block raises. The connection
        always goes back to the pool.
        """
        conn = await self._idle.get()
        try:
            yield conn
        except BaseException:
            try:
                await conn.rollback()
            except aiosqlite.Error:
                logger.warning("Rollback failed on pooled connection", exc_info=True)
            raise
        finally:
            self._idle.put_nowait(conn)

    async def close(self) -> None:
        for conn in self._all:
            await conn.close()
        self._all.clear()


# Process-scoped pool, created by init_db() during application startup
_pool: ConnectionPool | None = None


async def _open_connection() -> aiosqlite.Connection:
    conn = await aiosqlite.connect(str(settings.db_path))
    # Enable WAL mode for better read concurrency
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute(f"PRAGMA busy_timeout={int(settings.db_busy_timeout_ms)}")
    await conn.commit()
    return conn


def get_pool() -> ConnectionPool:
    """Get the connection pool. Raises if not initialized."""
    if _pool is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _pool


@asynccontextmanager
async def connection() -> AsyncIterator[aiosqlite.Connection]:
    """Borrow one pooled connection for the duration of the block."""
    async with get_pool().acquire() as conn:
        yield conn


async def init_db() -> None:
    """Open the connection pool and run migrations."""
    global _pool

    settings.db_path.parent.mkdir(parents=True, exist_ok=True)

    size = max(1, settings.db_pool_size)
    first = await _open_connection()
    # Migrations run once, before the rest of the pool exists
    await run_migrations(first)

    connections = [first]
    for _ in range(size - 1):
        connections.append(await _open_connection())

    _pool = ConnectionPool(connections)
    logger.info("Opened %d database connections at %s", size, settings.db_path)


async def close_db() -> None:
    """Close every pooled connection."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def ping() -> bool:
    """Return True if the store answers a trivial query."""
    try:
        async with connection() as db:
            cursor = await db.execute("SELECT 1")
            row = await cursor.fetchone()
            return row is not None and row[0] == 1
    except (RuntimeError, aiosqlite.Error):
        logger.warning("Database ping failed", exc_info=True)
        return False
