"""
Versioned conversation summaries.

Each successful write inserts a new row at ``version + 1`` and marks the
previous row superseded in the same transaction. Superseded rows are kept;
reads return the newest live version.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import TYPE_CHECKING

import aiosqlite

from continuum.errors import SummaryParseError
from continuum.models.config import StoreConfig
from continuum.models.message import ConversationMessage, Message, now_ms
from continuum.models.summary import ConversationSummary, SummaryDraft
from continuum.store.base import SQLiteStore
from continuum.store.pool import StorePool

if TYPE_CHECKING:
    from continuum.summary.generator import SummaryGenerator


class SummaryStore(SQLiteStore):
    """
    The ``conversation_summaries`` table plus the generate-then-save operation.

    ``generate_and_save`` needs a :class:`SummaryGenerator`; stores built
    without one can still read and write summaries directly.
    """

    _logger_name = "continuum.store.summaries"

    def __init__(
        self,
        config: StoreConfig,
        pool: StorePool | None = None,
        generator: SummaryGenerator | None = None,
    ) -> None:
        super().__init__(config, pool)
        self._generator = generator

    async def get_summary(self, conversation_id: str) -> ConversationSummary | None:
        """Return the newest live summary for a conversation, or None."""
        conn = self._conn_or_raise()
        async with conn.execute(
            """
            SELECT * FROM conversation_summaries
            WHERE conversation_id = ? AND superseded = 0
            ORDER BY version DESC
            LIMIT 1
            """,
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_summary(row) if row is not None else None

    async def get_versions(self, conversation_id: str) -> list[ConversationSummary]:
        """Return every stored version, oldest first, superseded ones included."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM conversation_summaries WHERE conversation_id = ? ORDER BY version ASC",
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_summary(r) for r in rows]

    async def save_summary(self, conversation_id: str, draft: SummaryDraft) -> ConversationSummary:
        """
        Persist *draft* as the next version for *conversation_id*.

        The version is computed from the highest stored version (live or
        superseded), so it never resets or decreases.
        """
        conn = self._conn_or_raise()
        now = now_ms()
        async with self._write_lock():
            async with conn.execute(
                "SELECT MAX(version) FROM conversation_summaries WHERE conversation_id = ?",
                (conversation_id,),
            ) as cursor:
                row = await cursor.fetchone()
            version = (row[0] or 0) + 1 if row is not None else 1
            try:
                await conn.execute(
                    """
                    UPDATE conversation_summaries SET superseded = 1
                    WHERE conversation_id = ? AND superseded = 0
                    """,
                    (conversation_id,),
                )
                await conn.execute(
                    """
                    INSERT INTO conversation_summaries
                        (conversation_id, version, summary_short, summary_long,
                         key_decisions, tools_used, files_modified, superseded, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
                    """,
                    (
                        conversation_id,
                        version,
                        draft.summary_short,
                        draft.summary_long,
                        json.dumps(draft.key_decisions),
                        json.dumps(draft.tools_used),
                        json.dumps(draft.files_modified),
                        now,
                    ),
                )
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

        self._logger.info(
            "summary_saved",
            conversation_id=conversation_id,
            version=version,
            decisions=len(draft.key_decisions),
            files=len(draft.files_modified),
        )
        return ConversationSummary(
            conversation_id=conversation_id,
            version=version,
            updated_at=now,
            **draft.model_dump(),
        )

    async def generate_and_save(
        self,
        conversation_id: str,
        messages: Sequence[ConversationMessage | Message],
    ) -> ConversationSummary:
        """
        Summarise *messages* with the configured generator and store the result.

        The current summary, if any, is passed to the model as a base to refresh.

        Raises:
            RuntimeError: If this store was built without a generator.
            SummaryParseError: If the model reply lacks a short or long summary.
            SummaryGenerationError: If the model call fails.
        """
        if self._generator is None:
            raise RuntimeError("SummaryStore has no generator configured.")
        existing = await self.get_summary(conversation_id)
        draft = await self._generator.generate(messages, existing)
        if not draft.summary_short.strip():
            raise SummaryParseError("summary_short is empty")
        if not (draft.summary_long or "").strip():
            raise SummaryParseError("summary_long is empty")
        return await self.save_summary(conversation_id, draft)

    async def bridge_text(
        self,
        conversation_id: str,
        *,
        max_decisions: int = 5,
        max_files: int = 10,
    ) -> str | None:
        """
        Render the live summary as a context block, or None when there is none.

        Format::

            [Session Summary]
            <summary_short>

            Key decisions:
            - ...

            Files worked on:
            - ...
        """
        summary = await self.get_summary(conversation_id)
        if summary is None or not summary.summary_short:
            return None
        return render_summary_block(summary, max_decisions=max_decisions, max_files=max_files)

    @staticmethod
    def _row_to_summary(row: aiosqlite.Row) -> ConversationSummary:
        return ConversationSummary(
            conversation_id=row["conversation_id"],
            version=row["version"],
            summary_short=row["summary_short"],
            summary_long=row["summary_long"],
            key_decisions=json.loads(row["key_decisions"] or "[]"),
            tools_used=json.loads(row["tools_used"] or "[]"),
            files_modified=json.loads(row["files_modified"] or "[]"),
            updated_at=row["updated_at"],
        )


def render_summary_block(
    summary: SummaryDraft, *, max_decisions: int = 5, max_files: int = 10
) -> str:
    """Format a summary as the ``[Session Summary]`` context block."""
    text = f"[Session Summary]\n{summary.summary_short}"
    decisions = summary.key_decisions[:max_decisions]
    if decisions:
        text += "\n\nKey decisions:\n" + "\n".join(f"- {d}" for d in decisions)
    files = summary.files_modified[:max_files]
    if files:
        text += "\n\nFiles worked on:\n" + "\n".join(f"- {f}" for f in files)
    return text
