"""Prompting a fast model for conversation summaries and titles."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from jinja2 import Template

from continuum.adapters import SummaryModel
from continuum.errors import SummaryError, SummaryGenerationError, SummaryParseError
from continuum.models.config import SummaryConfig
from continuum.models.message import ConversationMessage, Message
from continuum.models.summary import ConversationSummary, SummaryDraft
from continuum.registry.session_registry import extract_title

SUMMARY_PROMPT = Template(
    """You are a concise assistant. Summarize the coding/chat session into JSON.

{% if existing %}Existing summary (for refresh): {{ existing }}{% else %}No existing summary.{% endif %}

Provide JSON with keys:
- summary_short (<=80 words)
- summary_long (<=200 words)
- key_decisions (array of short bullet strings)
- tools_used (array of tool names or commands)
- files_modified (array of file paths)

Do not include any extra text outside valid JSON.

Transcript:
{{ transcript }}
"""
)

TITLE_PROMPT = Template(
    """Generate a brief title (3-8 words, no quotes) for this conversation:

{{ context }}

Reply with ONLY the title, nothing else."""
)

_TITLE_MAX_CHARS = 60
_SHORT_MAX_WORDS = 80
_LONG_MAX_WORDS = 200
_TITLE_TOKENS = 32


def parse_summary_json(text: str) -> SummaryDraft:
    """
    Extract the summary object from a model reply.

    The substring from the first ``{`` to the last ``}`` is parsed, so prose
    or code fences around the object are tolerated. List fields returned as a
    bare string become single-element lists. Summaries running past their
    word limits (80 short, 200 long) are clipped.

    Raises:
        SummaryParseError: If no JSON object can be parsed.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise SummaryParseError("no JSON object in reply", raw_text=text)
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise SummaryParseError(str(exc), raw_text=text) from exc
    if not isinstance(data, dict):
        raise SummaryParseError("reply JSON is not an object", raw_text=text)
    if data.get("summary_short") is None:
        data["summary_short"] = ""
    draft = SummaryDraft.model_validate(data)
    draft.summary_short = _clip_words(draft.summary_short, _SHORT_MAX_WORDS)
    if draft.summary_long is not None:
        draft.summary_long = _clip_words(draft.summary_long, _LONG_MAX_WORDS)
    return draft


def _clip_words(text: str, limit: int) -> str:
    words = text.split()
    if len(words) <= limit:
        return text
    return " ".join(words[:limit]) + "..."


def _iso(ms: int) -> str:
    return (
        datetime.fromtimestamp(ms / 1000, UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class SummaryGenerator:
    """
    Builds summary and title prompts and interprets the model's replies.

    The transcript window is the most recent ``transcript_turns`` messages,
    one ``[timestamp] ROLE: content`` line each, with only the last
    ``transcript_max_chars`` characters kept.
    """

    def __init__(self, config: SummaryConfig, model: SummaryModel) -> None:
        self._config = config
        self._model = model
        self._logger = structlog.get_logger("continuum.summary")

    def build_transcript(self, messages: Sequence[ConversationMessage | Message]) -> str:
        window = list(messages)[-self._config.transcript_turns :]
        text = "\n".join(
            f"[{_iso(m.created_at)}] {m.role.upper()}: {m.content.strip()}" for m in window
        )
        return text[-self._config.transcript_max_chars :]

    def build_prompt(
        self,
        messages: Sequence[ConversationMessage | Message],
        existing: ConversationSummary | None = None,
    ) -> str:
        existing_json = (
            existing.model_dump_json(include=set(SummaryDraft.model_fields))
            if existing is not None
            else ""
        )
        return SUMMARY_PROMPT.render(
            existing=existing_json, transcript=self.build_transcript(messages)
        )

    async def generate(
        self,
        messages: Sequence[ConversationMessage | Message],
        existing: ConversationSummary | None = None,
    ) -> SummaryDraft:
        """
        Ask the model for a summary of *messages*.

        Raises:
            SummaryGenerationError: If the model call fails.
            SummaryParseError: If the reply holds no parseable JSON object.
        """
        prompt = self.build_prompt(messages, existing)
        try:
            reply = await self._model.complete(prompt, max_tokens=self._config.max_output_tokens)
        except SummaryError:
            raise
        except Exception as exc:
            raise SummaryGenerationError(f"summary model call failed: {exc}") from exc
        return parse_summary_json(reply)

    async def generate_title(self, user_message: str, assistant_response: str = "") -> str:
        """
        Ask the model for a 3-8 word title; falls back to :func:`extract_title`.

        Never raises.
        """
        if assistant_response:
            context = f"User: {user_message[:500]}\nAssistant: {assistant_response[:500]}"
        else:
            context = f"User: {user_message[:800]}"
        try:
            reply = await self._model.complete(
                TITLE_PROMPT.render(context=context), max_tokens=_TITLE_TOKENS
            )
        except Exception as exc:
            self._logger.warning("title_generation_failed", error=str(exc))
            return extract_title(user_message)
        title = reply.strip()
        if title.lower().startswith("title:"):
            title = title[len("title:") :]
        title = title.strip().strip("\"'").strip()[:_TITLE_MAX_CHARS].strip()
        return title or extract_title(user_message)
