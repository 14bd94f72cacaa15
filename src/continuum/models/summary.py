"""Conversation summary models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

LIST_FIELDS: tuple[str, ...] = ("key_decisions", "tools_used", "files_modified")


def coerce_str_list(value: Any) -> list[str]:
    """Coerce a model-returned value into a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        # Models occasionally return a bare string where a list was asked for.
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return [str(value)]


class SummaryDraft(BaseModel):
    """The fields a summary model is asked to produce, before persistence."""

    summary_short: str = ""
    """At most ~80 words."""
    summary_long: str | None = None
    """At most ~200 words."""
    key_decisions: list[str] = Field(default_factory=list)
    tools_used: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)

    @field_validator(*LIST_FIELDS, mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> list[str]:
        return coerce_str_list(value)


class ConversationSummary(SummaryDraft):
    """
    A persisted summary for one conversation.

    Versions increase monotonically per conversation. A new version supersedes
    the previous one; the older row is retained, never deleted.
    """

    conversation_id: str
    version: int = 0
    updated_at: int = 0
