"""
Per-engine transcript line parsers.

Each engine writes a different JSONL shape. A parser turns one decoded line
into a normalized :class:`~continuum.models.message.Message`, or returns None
for bookkeeping records (tool events, token counters, session metadata) and
anything that is not a user or assistant turn.

Parsers are selected through :func:`parser_for`, never by matching engine
name strings.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from continuum.models.engine import Engine
from continuum.models.message import Message, now_ms

_CHAT_ROLES = frozenset({"user", "assistant"})


def parse_timestamp(value: Any) -> int | None:
    """Convert an ISO-8601 string or epoch number into Unix milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Epoch seconds are far below 1e11; milliseconds are above it.
        return int(value) if value > 1e11 else int(value * 1000)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return int(datetime.fromisoformat(text).timestamp() * 1000)
        except ValueError:
            return None
    return None


class TranscriptParser:
    """Base class for one engine's transcript format."""

    engine: Engine

    def parse_entry(self, entry: dict[str, Any], line_no: int) -> Message | None:
        """Normalize one decoded transcript line, or return None to skip it."""
        raise NotImplementedError

    def _make(
        self,
        entry_id: Any,
        role: str,
        content: str,
        timestamp: Any,
        line_no: int,
        **metadata: Any,
    ) -> Message | None:
        if role not in _CHAT_ROLES or not content.strip():
            return None
        created_at = parse_timestamp(timestamp) or now_ms()
        return Message(
            id=str(entry_id) if entry_id else f"{self.engine.value}-{created_at}-{line_no}",
            role=role,  # type: ignore[arg-type]
            content=content,
            engine=self.engine,
            created_at=created_at,
            model=metadata.get("model"),
            metadata={k: v for k, v in metadata.items() if v is not None},
        )


class ClaudeTranscriptParser(TranscriptParser):
    """
    ``~/.claude/projects/<slug>/<id>.jsonl``.

    Chat lines carry ``type`` ``user``/``assistant`` and a ``message`` object
    whose ``content`` is a string or a list of typed blocks; only ``text``
    blocks are kept, so lines holding only ``tool_use`` or ``tool_result``
    blocks are dropped. Older lines hold the text in ``display`` or ``text``.
    """

    engine = Engine.CLAUDE

    def parse_entry(self, entry: dict[str, Any], line_no: int) -> Message | None:
        if entry.get("type") not in _CHAT_ROLES:
            return None
        message = entry.get("message")
        if not isinstance(message, dict):
            message = {}
        raw = message.get("content")
        if isinstance(raw, str):
            content = raw
        elif isinstance(raw, list):
            content = "\n".join(
                block["text"]
                for block in raw
                if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
            )
        else:
            content = entry.get("display") or entry.get("text") or ""
        role = message.get("role") or entry.get("type")
        return self._make(
            message.get("id"),
            role,
            str(content),
            entry.get("timestamp"),
            line_no,
            model=message.get("model"),
            stop_reason=message.get("stop_reason"),
        )


class CodexTranscriptParser(TranscriptParser):
    """
    ``~/.codex/sessions/**/rollout-*<thread>*.jsonl``.

    Lines may hold chat text at the top level, inside ``payload`` (as a
    string, a list of blocks or ``text``), or in ``message``. Lines typed as
    session metadata, turn context, events or token counts are bookkeeping.
    """

    engine = Engine.CODEX

    SKIP_TYPES = frozenset({"session_meta", "turn_context", "event_msg", "token_count"})
    # function_call, function_call_output and reasoning payloads are not turns.
    CHAT_PAYLOAD_TYPES = frozenset({"message"})

    def parse_entry(self, entry: dict[str, Any], line_no: int) -> Message | None:
        if entry.get("type") in self.SKIP_TYPES:
            return None
        payload = entry.get("payload")
        if not isinstance(payload, dict):
            payload = {}
        if payload.get("type") and payload["type"] not in self.CHAT_PAYLOAD_TYPES:
            return None
        message = entry.get("message")

        role = (
            entry.get("role")
            or payload.get("role")
            or (message.get("role") if isinstance(message, dict) else None)
            or "assistant"
        )

        payload_content = payload.get("content")
        if isinstance(entry.get("content"), str):
            content = entry["content"]
        elif isinstance(payload_content, str):
            content = payload_content
        elif isinstance(payload_content, list):
            texts = (
                block.get("text") or block.get("message") or block.get("title")
                for block in payload_content
                if isinstance(block, dict)
            )
            content = "\n".join(str(t) for t in texts if t)
        elif payload.get("text"):
            content = str(payload["text"])
        elif isinstance(message, str):
            content = message
        elif message:
            content = json.dumps(message)
        else:
            content = ""

        return self._make(
            entry.get("id"),
            role,
            content,
            entry.get("timestamp") or payload.get("timestamp"),
            line_no,
            model=entry.get("model"),
            reasoning_effort=entry.get("reasoning_effort"),
        )


class GeminiTranscriptParser(TranscriptParser):
    """
    ``~/.gemini/sessions/<id>.jsonl``; Qwen Code writes the same shape.

    The assistant role is spelled ``model``; text lives in ``content``,
    ``parts[].text`` or ``text``.
    """

    engine = Engine.GEMINI

    def __init__(self, engine: Engine = Engine.GEMINI) -> None:
        self.engine = engine

    def parse_entry(self, entry: dict[str, Any], line_no: int) -> Message | None:
        role = entry.get("role")
        if role == "model":
            role = "assistant"
        if role not in _CHAT_ROLES:
            return None
        parts = entry.get("parts")
        if isinstance(entry.get("content"), str):
            content = entry["content"]
        elif isinstance(parts, list):
            content = "\n".join(
                part["text"] for part in parts if isinstance(part, dict) and part.get("text")
            )
        else:
            content = str(entry.get("text") or "")
        return self._make(
            entry.get("id"),
            role,
            content,
            entry.get("timestamp"),
            line_no,
            model=entry.get("model"),
        )


_PARSERS: dict[Engine, TranscriptParser] = {
    Engine.CLAUDE: ClaudeTranscriptParser(),
    Engine.CODEX: CodexTranscriptParser(),
    Engine.GEMINI: GeminiTranscriptParser(Engine.GEMINI),
    Engine.QWEN: GeminiTranscriptParser(Engine.QWEN),
}


def parser_for(engine: Engine) -> TranscriptParser | None:
    """Return the transcript parser for *engine*, or None if it keeps no transcript."""
    return _PARSERS.get(engine)
