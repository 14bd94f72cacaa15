"""Typed payload definitions for each ContinuumEvent.

Usage example::

    from continuum.events.bus import ContinuumEvent
    from continuum.events.payloads import SummaryCompletedPayload

    def on_summary(event: ContinuumEvent, payload: SummaryCompletedPayload) -> None:
        print(f"{payload['conversation_id']} now at v{payload['version']}")

    bus.subscribe(ContinuumEvent.SUMMARY_COMPLETED, on_summary)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import Literal, TypedDict

# ── Session registry ──────────────────────────────────────────────────────────


class SessionCreatedPayload(TypedDict):
    """Payload for :attr:`ContinuumEvent.SESSION_CREATED`."""

    conversation_id: str
    engine: str
    session_id: str
    durable: bool
    """False when the durable insert failed; the session lives in memory only."""


class SessionReusedPayload(TypedDict):
    """Payload for :attr:`ContinuumEvent.SESSION_REUSED`."""

    conversation_id: str
    engine: str
    session_id: str
    source: Literal["cache", "store"]


class SessionPurgedPayload(TypedDict):
    """Payload for :attr:`ContinuumEvent.SESSION_PURGED`."""

    conversation_id: str
    engine: str
    session_id: str


class CacheSweptPayload(TypedDict):
    """Payload for :attr:`ContinuumEvent.CACHE_SWEPT`."""

    evicted: int


class ConversationDeletedPayload(TypedDict):
    """Payload for :attr:`ContinuumEvent.CONVERSATION_DELETED`."""

    conversation_id: str
    sessions_deleted: int


# ── Context bridge ────────────────────────────────────────────────────────────


class ContextBuiltPayload(TypedDict):
    """Payload for :attr:`ContinuumEvent.CONTEXT_BUILT`."""

    conversation_id: str
    to_engine: str
    is_engine_bridge: bool
    context_tokens: int
    context_source: str
    total_tokens: int


# ── Summaries ─────────────────────────────────────────────────────────────────


class SummaryTriggeredPayload(TypedDict):
    """Payload for :attr:`ContinuumEvent.SUMMARY_TRIGGERED`."""

    conversation_id: str


class SummaryCompletedPayload(TypedDict):
    """Payload for :attr:`ContinuumEvent.SUMMARY_COMPLETED`."""

    conversation_id: str
    version: int


class SummaryFailedPayload(TypedDict):
    """Payload for :attr:`ContinuumEvent.SUMMARY_FAILED`."""

    conversation_id: str
    error: str
