"""Result types produced by the context bridge and the service."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from continuum.models.engine import Engine
from continuum.models.message import TokenUsage

ContextSource = Literal[
    "none",
    "native_resume",
    "budget_exhausted",
    "summary",
    "history",
    "history_fallback",
    "handoff+summary",
    "handoff+history",
    "handoff_fallback_history",
]


class BuiltContext(BaseModel):
    """The prompt handed to an engine, with its token accounting."""

    prompt: str
    is_engine_bridge: bool
    context_tokens: int
    context_source: ContextSource
    total_tokens: int
    """Estimated context tokens plus estimated user-message tokens."""


class ContextStats(BaseModel):
    """Diagnostic view of a conversation's replay state."""

    message_count: int
    last_engine: Engine | None
    has_summary: bool
    summary_threshold: int


class ExchangeResult(BaseModel):
    """
    The result of a single :meth:`ContinuumService.exchange` call.

    ``summary_scheduled`` reports whether a background summary was submitted;
    the summary itself completes after this result is returned.
    """

    conversation_id: str
    session_id: str
    engine: Engine
    is_new_session: bool
    text: str
    usage: TokenUsage | None = None
    native_thread_id: str | None = None
    context: BuiltContext
    summary_scheduled: bool = False
