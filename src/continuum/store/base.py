"""Connection handling shared by every SQLite-backed store."""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

from continuum.errors import ContinuumStoreError
from continuum.models.config import StoreConfig
from continuum.store.pool import StorePool, open_connection


class SQLiteStore:
    """
    Base class owning (or borrowing) one ``aiosqlite`` connection.

    When a ``StorePool`` is supplied the store borrows the pool's shared
    connection and write lock; ``close()`` then leaves the connection open
    because the pool owns its lifetime. Without a pool the store opens a
    private connection and closes it itself.

    Usage (standalone)::

        store = SessionStore(StoreConfig())
        await store.initialize()
        try:
            ...
        finally:
            await store.close()
    """

    _logger_name = "continuum.store"

    def __init__(self, config: StoreConfig, pool: StorePool | None = None) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._conn: aiosqlite.Connection | None = None
        self._private_lock: asyncio.Lock | None = None
        self._logger = structlog.get_logger(self._logger_name)

    async def initialize(self) -> None:
        """
        Open (or borrow) a database connection with the schema applied.

        Idempotent: a second call on an initialized store is a no-op.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._conn is not None:
            return
        if self._pool is not None:
            self._conn = await self._pool.acquire(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
        else:
            self._conn = await open_connection(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
            self._private_lock = asyncio.Lock()
        self._logger.debug("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Release the connection; a no-op for pool-managed connections."""
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise ContinuumStoreError("Store is not initialized. Call initialize() first.")
        return self._conn

    def _write_lock(self) -> asyncio.Lock:
        if self._pool is not None:
            return self._pool.write_lock(self._db_path)
        if self._private_lock is None:
            raise ContinuumStoreError("Store is not initialized. Call initialize() first.")
        return self._private_lock
