"""Loading normalized, paginated history from engine transcripts."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import structlog

from continuum.history.pagination import Order, empty_page, paginate
from continuum.history.parsers import TranscriptParser, parser_for
from continuum.models.config import ContinuumConfig
from continuum.models.engine import Engine
from continuum.models.message import Message, MessagePage
from continuum.transcripts.locator import TranscriptLocator


class HistoryLoader:
    """
    Reads an engine's own transcript and returns it as a page of messages.

    The transcript is streamed line by line in a worker thread; it is never
    read into memory whole. Each line is decoded independently, so a
    malformed line is skipped and the rest of the file still loads. A
    transcript that does not exist yields an empty page: a brand-new session
    simply has no history yet.

    Example::

        loader = HistoryLoader(config)
        page = await loader.load_messages("abc123", Engine.CLAUDE, "/home/me/app", limit=20)
        older = await loader.load_messages(
            "abc123", Engine.CLAUDE, "/home/me/app",
            limit=20, before=page.pagination.oldest_timestamp,
        )
    """

    def __init__(
        self,
        config: ContinuumConfig,
        locator: TranscriptLocator | None = None,
    ) -> None:
        self._config = config
        self._locator = locator or TranscriptLocator(config)
        self._logger = structlog.get_logger("continuum.history")

    async def load_messages(
        self,
        session_id: str,
        engine: Engine,
        workspace_path: str | None = None,
        *,
        limit: int | None = None,
        before: int | None = None,
        order: Order = "asc",
        native_id: str | None = None,
    ) -> MessagePage:
        """
        Load one page of a session's history.

        Args:
            session_id: The engine session id.
            engine: Which engine's transcript format and location to use.
            workspace_path: Workspace the session ran in (used to find Claude transcripts).
            limit: Page size; defaults to ``HistoryConfig.default_limit``.
            before: Only return messages strictly older than this timestamp (ms).
            order: ``"asc"`` (chronological, default) or ``"desc"``.
            native_id: Engine-native thread id, preferred over *session_id* when set.

        Returns:
            A :class:`MessagePage`; empty when no transcript exists.
        """
        parser = parser_for(engine)
        if parser is None:
            return empty_page()

        transcript_id = native_id or session_id
        path = await asyncio.to_thread(
            self._locator.locate, engine, transcript_id, workspace_path
        )
        if path is None:
            self._logger.debug(
                "transcript_not_found", engine=engine.value, session_id=transcript_id
            )
            return empty_page()

        messages = await asyncio.to_thread(self._read_transcript, path, parser)
        page_size = limit if limit is not None else self._config.history.default_limit
        return paginate(messages, limit=page_size, before=before, order=order)

    def _read_transcript(self, path: Path, parser: TranscriptParser) -> list[Message]:
        messages: list[Message] = []
        skipped = 0
        try:
            with path.open("r", encoding="utf-8", errors="replace") as handle:
                for line_no, line in enumerate(handle, start=1):
                    if not line.strip():
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        skipped += 1
                        continue
                    if not isinstance(entry, dict):
                        continue
                    message = parser.parse_entry(entry, line_no)
                    if message is not None:
                        messages.append(message)
        except OSError as exc:
            self._logger.warning("transcript_read_failed", path=str(path), error=str(exc))
            return []
        if skipped:
            self._logger.warning("transcript_malformed_lines", path=str(path), skipped=skipped)
        return messages
