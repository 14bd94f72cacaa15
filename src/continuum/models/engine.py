"""The closed set of supported engines and their capability table."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from continuum.errors import UnknownEngineError


class Engine(StrEnum):
    """An independent, vendor-owned AI command-line backend."""

    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    QWEN = "qwen"
    DEEPSEEK = "deepseek"

    @property
    def display_name(self) -> str:
        """Human-readable name used in handoff headers."""
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES: dict[Engine, str] = {
    Engine.CLAUDE: "Claude Code (Anthropic)",
    Engine.CODEX: "Codex (OpenAI)",
    Engine.GEMINI: "Gemini (Google)",
    Engine.QWEN: "Qwen Code (Alibaba)",
    Engine.DEEPSEEK: "DeepSeek",
}

# Substrings that identify an engine in free-form names such as "claude-code"
# or a provider name such as "openai". First match wins.
_ALIASES: tuple[tuple[str, Engine], ...] = (
    ("claude", Engine.CLAUDE),
    ("anthropic", Engine.CLAUDE),
    ("codex", Engine.CODEX),
    ("openai", Engine.CODEX),
    ("gemini", Engine.GEMINI),
    ("google", Engine.GEMINI),
    ("qwen", Engine.QWEN),
    ("deepseek", Engine.DEEPSEEK),
)


def normalize_engine(name: str | Engine | None) -> Engine:
    """
    Map a free-form engine name onto :class:`Engine`.

    ``None`` or an empty string maps to :attr:`Engine.CLAUDE`, the default
    engine for conversations that predate engine tracking.

    Raises:
        UnknownEngineError: If no known engine matches *name*.
    """
    if isinstance(name, Engine):
        return name
    if not name:
        return Engine.CLAUDE
    lower = name.strip().lower()
    try:
        return Engine(lower)
    except ValueError:
        pass
    for alias, engine in _ALIASES:
        if alias in lower:
            return engine
    raise UnknownEngineError(name)


StorageKind = Literal["transcript_file", "engine_thread"]
"""
How an engine persists its own history.

``transcript_file``: a JSONL transcript lives under a workspace-derived
directory; liveness requires finding that file.
``engine_thread``: the engine owns a resumable identifier with no
discoverable file; the durable row is authoritative.
"""


class EngineProfile(BaseModel):
    """Per-engine budget and replay preferences."""

    max_context_tokens: int = Field(
        ge=0,
        description="Approximate token budget for replayed context plus the user message.",
    )
    prefers_summary_over_history: bool = True
    """Use the stored summary (when it fits) instead of replaying raw turns."""

    code_only_compression: bool = False
    """Compress assistant turns to their fenced code blocks in windowed history."""

    storage: StorageKind = "engine_thread"
    native_resume: bool = True
    """The engine reloads its own history when handed its session/thread id."""


ENGINE_PROFILES: dict[Engine, EngineProfile] = {
    Engine.CLAUDE: EngineProfile(
        max_context_tokens=4_000,
        prefers_summary_over_history=True,
        storage="transcript_file",
    ),
    Engine.CODEX: EngineProfile(
        max_context_tokens=3_000,
        prefers_summary_over_history=True,
        code_only_compression=True,
    ),
    Engine.GEMINI: EngineProfile(
        max_context_tokens=6_000,
        prefers_summary_over_history=False,
    ),
    Engine.QWEN: EngineProfile(
        max_context_tokens=6_000,
        prefers_summary_over_history=False,
    ),
    Engine.DEEPSEEK: EngineProfile(
        max_context_tokens=3_000,
        prefers_summary_over_history=True,
        native_resume=False,
    ),
}
