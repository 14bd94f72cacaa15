"""
Shared connection pool for the Continuum stores.

A single ``StorePool`` manages one ``aiosqlite.Connection`` per database
path. The session store, the conversation log and the summary store all
borrow that connection, and the pool hands out one write lock per path so
their transactions never interleave.

Usage::

    pool = StorePool()
    sessions = SessionStore(config.store, pool=pool)
    summaries = SummaryStore(config.store, pool=pool)

    await sessions.initialize()   # opens the connection, applies the schema
    await summaries.initialize()  # reuses both

    # … use stores …

    await pool.close_all()        # close every managed connection at shutdown
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

_logger = structlog.get_logger("continuum.store.pool")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


def resolve_db_path(db_path: str) -> str:
    """Return the absolute, ``~``-expanded form of *db_path* used as the pool key."""
    return str(Path(db_path).expanduser().resolve())


class StorePool:
    """
    Process-scoped registry of open ``aiosqlite.Connection`` objects.

    Only safe to use from a single asyncio event loop.

    For each unique resolved path the pool holds exactly one connection and
    one write lock. Concurrent ``acquire()`` callers are serialised on a
    per-path open guard so only the first opens the file and applies the
    schema; later callers receive the same connection.
    """

    def __init__(self) -> None:
        self._connections: dict[str, aiosqlite.Connection] = {}
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._open_locks: dict[str, asyncio.Lock] = {}

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> aiosqlite.Connection:
        """
        Return the shared connection for *db_path*, opening it if needed.

        On first open the schema in ``schema.sql`` is applied idempotently.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        resolved = resolve_db_path(db_path)

        if resolved in self._connections:
            return self._connections[resolved]

        open_lock = self._open_locks.setdefault(resolved, asyncio.Lock())
        async with open_lock:
            if resolved in self._connections:
                return self._connections[resolved]

            conn = await open_connection(
                resolved, wal_mode=wal_mode, connection_timeout=connection_timeout
            )
            self._connections[resolved] = conn
            self._write_locks[resolved] = asyncio.Lock()
            _logger.debug("pool_connection_opened", db_path=resolved)
            return conn

    def write_lock(self, db_path: str) -> asyncio.Lock:
        """
        Return the write-serialisation lock for *db_path*.

        Raises:
            KeyError: If ``acquire()`` has not been called for this path.
        """
        return self._write_locks[resolve_db_path(db_path)]

    async def close_path(self, db_path: str) -> None:
        """Close and remove the connection for a single path."""
        resolved = resolve_db_path(db_path)
        conn = self._connections.pop(resolved, None)
        self._write_locks.pop(resolved, None)
        self._open_locks.pop(resolved, None)
        if conn is not None:
            await conn.close()
            _logger.debug("pool_connection_closed", db_path=resolved)

    async def close_all(self) -> None:
        """Close every connection managed by this pool."""
        for path in list(self._connections):
            await self.close_path(path)


async def open_connection(
    db_path: str,
    *,
    wal_mode: bool = True,
    connection_timeout: float = 30.0,
) -> aiosqlite.Connection:
    """Open a configured connection to *db_path* and apply the schema."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path, timeout=connection_timeout)
    try:
        conn.row_factory = aiosqlite.Row
        if wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.executescript(SCHEMA_PATH.read_text())
        await conn.commit()
    except Exception:
        await conn.close()
        raise
    return conn
