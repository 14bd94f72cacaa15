"""Configuration models for Continuum components."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from continuum.models.engine import ENGINE_PROFILES, Engine, EngineProfile


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.continuum/continuum.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


class RegistryConfig(BaseModel):
    """Configuration for the session registry's in-memory cache."""

    cache_ttl_seconds: float = Field(
        default=30 * 60,
        gt=0,
        description="Idle time after which a cache entry is swept. Durable rows are untouched.",
    )

    sweep_interval_seconds: float = Field(
        default=10 * 60,
        gt=0,
        description="How often the background sweeper runs once the registry is started.",
    )

    default_title: str = "New Chat"
    """Title given to freshly minted sessions."""


class HistoryConfig(BaseModel):
    """Where each engine keeps its transcripts, and paging defaults."""

    claude_root: str = "~/.claude/projects"
    """Holds ``<workspace-slug>/<session_id>.jsonl``."""

    codex_root: str = "~/.codex/sessions"
    """Holds ``<id>.jsonl`` or dated ``YYYY/MM/DD/rollout-*<thread_id>*.jsonl``."""

    gemini_root: str = "~/.gemini/sessions"
    qwen_root: str = "~/.qwen/sessions"

    default_limit: int = Field(default=30, ge=1, le=1_000)

    def session_root(self, engine: Engine) -> Path | None:
        """Return the expanded session root for *engine*, or None if it keeps none."""
        raw = {
            Engine.CLAUDE: self.claude_root,
            Engine.CODEX: self.codex_root,
            Engine.GEMINI: self.gemini_root,
            Engine.QWEN: self.qwen_root,
        }.get(engine)
        if raw is None:
            return None
        return Path(raw).expanduser()


class BridgeConfig(BaseModel):
    """Token accounting and replay limits for the context bridge."""

    chars_per_token: int = Field(default=4, ge=1, le=16)
    safety_margin_tokens: int = Field(
        default=200,
        ge=0,
        description="Tokens held back from every engine budget.",
    )
    history_fetch_turns: int = Field(default=20, ge=1)
    """Most recent turns considered for token-windowed history."""

    max_turn_chars: int = Field(default=2_000, ge=50)
    """Hard ceiling for any single replayed turn."""

    assistant_fallback_chars: int = Field(default=500, ge=50)
    """Truncation applied to assistant turns that hold no code under code-only compression."""

    handoff_recent_turns: int = Field(default=5, ge=0)
    handoff_turn_chars: int = Field(default=500, ge=50)
    handoff_max_decisions: int = Field(default=5, ge=0)
    handoff_max_files: int = Field(default=10, ge=0)

    min_history_budget: int = Field(default=200, ge=0)
    """History fallback is only attempted when more than this many tokens remain."""


class SummaryConfig(BaseModel):
    """Trigger policy and transcript window for background summaries."""

    model: str = Field(
        default="anthropic/claude-3-5-haiku-latest",
        description="Fast, cheap model (litellm format) used for summaries and titles.",
    )
    trigger_threshold: int = Field(default=15, ge=1)
    """Message count after which periodic summaries start."""

    trigger_every: int = Field(default=10, ge=1)
    """Once past the threshold, summarise on every Nth message."""

    transcript_turns: int = Field(default=40, ge=1)
    transcript_max_chars: int = Field(default=6_000, ge=500)
    max_output_tokens: int = Field(default=1_024, ge=128)

    @model_validator(mode="after")
    def validate_window(self) -> SummaryConfig:
        if self.transcript_turns < 2:
            raise ValueError("transcript_turns must cover at least one exchange (2 turns)")
        return self


class ContinuumConfig(BaseModel):
    """
    Top-level configuration for a Continuum service.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = ContinuumConfig(
            store=StoreConfig(db_path="/tmp/continuum.db"),
            bridge=BridgeConfig(safety_margin_tokens=300),
            engines={Engine.CODEX: EngineProfile(max_context_tokens=8_000)},
        )
    """

    store: StoreConfig = Field(default_factory=StoreConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)

    engines: dict[Engine, EngineProfile] = Field(
        default_factory=dict,
        description="Per-engine profile overrides layered over the built-in table.",
    )

    def profile(self, engine: Engine) -> EngineProfile:
        """Return the effective profile for *engine*."""
        if engine in self.engines:
            return self.engines[engine]
        return ENGINE_PROFILES.get(engine, ENGINE_PROFILES[Engine.CLAUDE])

    @classmethod
    def default(cls) -> ContinuumConfig:
        """Return a config instance with all defaults."""
        return cls()
