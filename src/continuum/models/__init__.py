"""Continuum data models."""

from continuum.models.config import (
    BridgeConfig,
    ContinuumConfig,
    HistoryConfig,
    RegistryConfig,
    StoreConfig,
    SummaryConfig,
)
from continuum.models.context import BuiltContext, ContextStats, ExchangeResult
from continuum.models.engine import ENGINE_PROFILES, Engine, EngineProfile, normalize_engine
from continuum.models.message import (
    ConversationMessage,
    Message,
    MessagePage,
    Pagination,
    Role,
    TokenUsage,
    make_id,
    now_ms,
)
from continuum.models.session import (
    EngineSession,
    RegistryStats,
    ResolvedSession,
    SessionDescriptor,
)
from continuum.models.summary import ConversationSummary, SummaryDraft

__all__ = [
    # Config
    "BridgeConfig",
    "ContinuumConfig",
    "HistoryConfig",
    "RegistryConfig",
    "StoreConfig",
    "SummaryConfig",
    # Engines
    "ENGINE_PROFILES",
    "Engine",
    "EngineProfile",
    "normalize_engine",
    # Messages
    "ConversationMessage",
    "Message",
    "MessagePage",
    "Pagination",
    "Role",
    "TokenUsage",
    "make_id",
    "now_ms",
    # Sessions
    "EngineSession",
    "RegistryStats",
    "ResolvedSession",
    "SessionDescriptor",
    # Summaries
    "ConversationSummary",
    "SummaryDraft",
    # Context
    "BuiltContext",
    "ContextStats",
    "ExchangeResult",
]
