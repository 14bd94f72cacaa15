"""Continuum event bus and typed payloads."""

from continuum.events.bus import ContinuumEvent, EventBus, Handler
from continuum.events.payloads import (
    CacheSweptPayload,
    ContextBuiltPayload,
    ConversationDeletedPayload,
    SessionCreatedPayload,
    SessionPurgedPayload,
    SessionReusedPayload,
    SummaryCompletedPayload,
    SummaryFailedPayload,
    SummaryTriggeredPayload,
)

__all__ = [
    "CacheSweptPayload",
    "ContextBuiltPayload",
    "ContinuumEvent",
    "ConversationDeletedPayload",
    "EventBus",
    "Handler",
    "SessionCreatedPayload",
    "SessionPurgedPayload",
    "SessionReusedPayload",
    "SummaryCompletedPayload",
    "SummaryFailedPayload",
    "SummaryTriggeredPayload",
]
