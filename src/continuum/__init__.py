"""
Continuum: conversation continuity across independent AI command-line engines.

Quick start::

    from continuum import ContinuumService

    async with ContinuumService.open() as service:
        result = await service.exchange("conv_1", "claude", "Hello!", adapter)
        print(result.text)
"""

from continuum.adapters import (
    EngineAdapter,
    EngineReply,
    LiteLLMSummaryModel,
    SummaryModel,
    WorkspaceIndex,
)
from continuum.bridge.context_bridge import ContextBridge
from continuum.errors import (
    ContinuumError,
    ContinuumStoreError,
    DuplicateIDError,
    SessionNotFoundError,
    SummaryError,
    SummaryGenerationError,
    SummaryParseError,
    UnknownEngineError,
)
from continuum.events.bus import ContinuumEvent, EventBus
from continuum.history.loader import HistoryLoader
from continuum.models import (
    BridgeConfig,
    BuiltContext,
    ContextStats,
    ContinuumConfig,
    ConversationMessage,
    ConversationSummary,
    Engine,
    EngineProfile,
    EngineSession,
    ExchangeResult,
    HistoryConfig,
    Message,
    MessagePage,
    Pagination,
    RegistryConfig,
    ResolvedSession,
    SessionDescriptor,
    StoreConfig,
    SummaryConfig,
    TokenUsage,
    normalize_engine,
)
from continuum.registry.session_registry import SessionRegistry, extract_title
from continuum.service import ContinuumService
from continuum.store.pool import StorePool
from continuum.store.summaries import SummaryStore
from continuum.summary.worker import SummaryWorker

__version__ = "0.1.0"

__all__ = [
    "BridgeConfig",
    "BuiltContext",
    "ContextBridge",
    "ContextStats",
    "ContinuumConfig",
    "ContinuumError",
    "ContinuumEvent",
    "ContinuumService",
    "ContinuumStoreError",
    "ConversationMessage",
    "ConversationSummary",
    "DuplicateIDError",
    "Engine",
    "EngineAdapter",
    "EngineProfile",
    "EngineReply",
    "EngineSession",
    "EventBus",
    "ExchangeResult",
    "HistoryConfig",
    "HistoryLoader",
    "LiteLLMSummaryModel",
    "Message",
    "MessagePage",
    "Pagination",
    "RegistryConfig",
    "ResolvedSession",
    "SessionDescriptor",
    "SessionNotFoundError",
    "SessionRegistry",
    "StoreConfig",
    "StorePool",
    "SummaryConfig",
    "SummaryError",
    "SummaryGenerationError",
    "SummaryModel",
    "SummaryParseError",
    "SummaryStore",
    "SummaryWorker",
    "TokenUsage",
    "UnknownEngineError",
    "WorkspaceIndex",
    "__version__",
    "extract_title",
    "normalize_engine",
]
