"""Cross-engine conversation log."""

from __future__ import annotations

import json

import aiosqlite

from continuum.errors import DuplicateIDError
from continuum.models.engine import Engine
from continuum.models.message import ConversationMessage
from continuum.store.base import SQLiteStore


class MessageLog(SQLiteStore):
    """
    The ``conversation_messages`` table.

    Every turn of a conversation is appended here regardless of which engine
    served it, so the bridge can replay recent turns to the next engine.
    Reads always return messages in chronological order.
    """

    _logger_name = "continuum.store.messages"

    async def append(self, message: ConversationMessage) -> ConversationMessage:
        """
        Append one message to the log.

        Raises:
            DuplicateIDError: If a message with this id already exists.
        """
        conn = self._conn_or_raise()
        meta_json = json.dumps(message.metadata) if message.metadata else None
        async with self._write_lock():
            try:
                await conn.execute(
                    """
                    INSERT INTO conversation_messages
                        (id, conversation_id, role, content, engine, created_at, metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.id,
                        message.conversation_id,
                        message.role,
                        message.content,
                        message.engine.value,
                        message.created_at,
                        meta_json,
                    ),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                raise DuplicateIDError(message.id) from exc
        return message

    async def recent(self, conversation_id: str, limit: int) -> list[ConversationMessage]:
        """Return the *limit* most recent messages, oldest first."""
        if limit <= 0:
            return []
        conn = self._conn_or_raise()
        async with conn.execute(
            """
            SELECT * FROM conversation_messages
            WHERE conversation_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (conversation_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_message(r) for r in reversed(rows)]

    async def count(self, conversation_id: str) -> int:
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT COUNT(*) FROM conversation_messages WHERE conversation_id = ?",
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    async def last_engine(self, conversation_id: str) -> Engine | None:
        """Return the engine that served the conversation's latest message."""
        conn = self._conn_or_raise()
        async with conn.execute(
            """
            SELECT engine FROM conversation_messages
            WHERE conversation_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1
            """,
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return Engine(row["engine"]) if row is not None else None

    async def delete_conversation(self, conversation_id: str) -> int:
        """Delete every logged message of a conversation. Returns the row count."""
        conn = self._conn_or_raise()
        async with self._write_lock():
            cursor = await conn.execute(
                "DELETE FROM conversation_messages WHERE conversation_id = ?",
                (conversation_id,),
            )
            await conn.commit()
        return cursor.rowcount

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> ConversationMessage:
        return ConversationMessage(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            engine=Engine(row["engine"]),
            created_at=row["created_at"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        )
