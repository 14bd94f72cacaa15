"""Durable (conversation, engine) -> engine session mappings."""

from __future__ import annotations

from typing import Any

import aiosqlite

from continuum.errors import DuplicateIDError, SessionNotFoundError
from continuum.models.engine import Engine
from continuum.models.message import now_ms
from continuum.models.session import EngineSession
from continuum.store.base import SQLiteStore

_UPDATABLE_FIELDS = frozenset(
    {"title", "native_thread_id", "workspace_path", "last_used_at", "message_count"}
)


class SessionStore(SQLiteStore):
    """
    The ``engine_sessions`` table.

    At most one row exists per ``(conversation_id, engine)``. Rows written by
    older clients may carry the conversation id in the ``id`` column instead;
    :meth:`find_by_conversation` matches those too.
    """

    _logger_name = "continuum.store.sessions"

    async def insert(self, session: EngineSession) -> EngineSession:
        """
        Insert a new session row.

        Raises:
            DuplicateIDError: If the id, or the (conversation, engine) pair, exists.
        """
        conn = self._conn_or_raise()
        async with self._write_lock():
            try:
                await conn.execute(
                    """
                    INSERT INTO engine_sessions
                        (id, conversation_id, engine, workspace_path, native_thread_id,
                         title, message_count, created_at, last_used_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        session.id,
                        session.conversation_id,
                        session.engine.value,
                        session.workspace_path,
                        session.native_thread_id,
                        session.title,
                        session.message_count,
                        session.created_at,
                        session.last_used_at,
                        session.updated_at,
                    ),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                raise DuplicateIDError(session.id) from exc
        return session

    async def get(self, session_id: str) -> EngineSession:
        """
        Fetch a session row by its engine session id.

        Raises:
            SessionNotFoundError: If no row has this id.
        """
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM engine_sessions WHERE id = ?", (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise SessionNotFoundError(session_id)
        return self._row_to_session(row)

    async def find_by_conversation(
        self, conversation_id: str, engine: Engine
    ) -> EngineSession | None:
        """Return the row for ``(conversation_id, engine)``, or None."""
        conn = self._conn_or_raise()
        async with conn.execute(
            """
            SELECT * FROM engine_sessions
            WHERE (conversation_id = ? OR id = ?) AND engine = ?
            ORDER BY (conversation_id = ?) DESC, last_used_at DESC
            LIMIT 1
            """,
            (conversation_id, conversation_id, engine.value, conversation_id),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_session(row) if row is not None else None

    async def list_by_conversation(self, conversation_id: str) -> list[EngineSession]:
        """Return every engine's session for a conversation, most recently used first."""
        conn = self._conn_or_raise()
        async with conn.execute(
            """
            SELECT * FROM engine_sessions
            WHERE conversation_id = ? OR id = ?
            ORDER BY last_used_at DESC
            """,
            (conversation_id, conversation_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_session(r) for r in rows]

    async def update(self, session_id: str, **fields: Any) -> None:
        """
        Update selected columns of one row and bump ``updated_at``.

        Raises:
            ValueError: If a field name is not updatable.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update engine_sessions columns: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        params: list[Any] = [*fields.values(), now_ms(), session_id]
        conn = self._conn_or_raise()
        async with self._write_lock():
            await conn.execute(
                f"UPDATE engine_sessions SET {assignments}, updated_at = ? WHERE id = ?",
                params,
            )
            await conn.commit()

    async def record_activity(self, session_id: str, turns: int = 1) -> None:
        """Bump ``message_count`` by *turns* and stamp ``last_used_at``."""
        now = now_ms()
        conn = self._conn_or_raise()
        async with self._write_lock():
            await conn.execute(
                """
                UPDATE engine_sessions
                SET message_count = message_count + ?, last_used_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (turns, now, now, session_id),
            )
            await conn.commit()

    async def delete(self, session_id: str) -> bool:
        """Delete one row. Returns True if a row was removed."""
        conn = self._conn_or_raise()
        async with self._write_lock():
            cursor = await conn.execute("DELETE FROM engine_sessions WHERE id = ?", (session_id,))
            await conn.commit()
        return cursor.rowcount > 0

    async def delete_by_conversation(self, conversation_id: str) -> list[EngineSession]:
        """Delete every engine's row for a conversation and return the removed rows."""
        conn = self._conn_or_raise()
        async with self._write_lock():
            async with conn.execute(
                "SELECT * FROM engine_sessions WHERE conversation_id = ? OR id = ?",
                (conversation_id, conversation_id),
            ) as cursor:
                rows = await cursor.fetchall()
            await conn.execute(
                "DELETE FROM engine_sessions WHERE conversation_id = ? OR id = ?",
                (conversation_id, conversation_id),
            )
            await conn.commit()
        return [self._row_to_session(r) for r in rows]

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> EngineSession:
        return EngineSession(
            id=row["id"],
            conversation_id=row["conversation_id"],
            engine=Engine(row["engine"]),
            workspace_path=row["workspace_path"],
            title=row["title"],
            created_at=row["created_at"],
            last_used_at=row["last_used_at"],
            native_thread_id=row["native_thread_id"],
            message_count=row["message_count"],
            updated_at=row["updated_at"],
        )
