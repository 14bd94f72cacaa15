"""Normalized message models shared by the history loader and the bridge."""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, Field
from ulid import ULID

from continuum.models.engine import Engine

Role = Literal["user", "assistant", "system"]


def now_ms() -> int:
    """Return the current time as a Unix millisecond timestamp."""
    return int(time.time() * 1000)


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"msg"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


class TokenUsage(BaseModel):
    """Token counts reported by an engine for a single exchange."""

    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total: int = 0

    def effective_total(self) -> int:
        """Return total, computing from parts when the explicit total is zero."""
        if self.total:
            return self.total
        return self.input + self.output + self.cache_read + self.cache_write


class Message(BaseModel):
    """
    One user or assistant turn, normalized from any engine's transcript.

    ``content`` is always flattened plain text: block and part arrays are
    joined with newlines by the engine's parser.
    """

    id: str
    role: Role
    content: str
    engine: Engine
    created_at: int
    """Unix millisecond timestamp."""
    model: str | None = None
    usage: TokenUsage | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversationMessage(BaseModel):
    """
    A turn recorded in the conversation log, tagged with the engine that served it.

    The log spans every engine a conversation has used, which is what lets the
    bridge replay history across an engine switch.
    """

    id: str
    conversation_id: str
    role: Role
    content: str
    engine: Engine
    created_at: int = Field(default_factory=now_ms)
    metadata: dict[str, Any] | None = None


class Pagination(BaseModel):
    """Cursor information returned alongside a page of messages."""

    has_more: bool = False
    oldest_timestamp: int | None = None
    """Pass back as ``before`` to fetch the next older page."""
    total: int = 0


class MessagePage(BaseModel):
    """A page of normalized messages."""

    messages: list[Message] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)
