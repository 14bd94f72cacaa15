"""In-process pub/sub event bus for session, context and summary lifecycle events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ContinuumEvent", dict[str, Any]], None | Awaitable[None]]


class ContinuumEvent(StrEnum):
    """All event types published by Continuum components.

    Typed payload definitions for each event live in
    :mod:`continuum.events.payloads`.

    **Payload schemas by event:**

    ``SESSION_CREATED``
        ``conversation_id``, ``engine``, ``session_id``, ``durable`` (False
        when the durable insert failed and the session lives only in memory)

    ``SESSION_REUSED``
        ``conversation_id``, ``engine``, ``session_id``, ``source``
        (``"cache"`` or ``"store"``)

    ``SESSION_PURGED``
        ``conversation_id``, ``engine``, ``session_id``; a row whose backing
        transcript disappeared

    ``CACHE_SWEPT``
        ``evicted: int``

    ``CONVERSATION_DELETED``
        ``conversation_id``, ``sessions_deleted: int``

    ``CONTEXT_BUILT``
        all fields of :class:`~continuum.models.context.BuiltContext` except
        ``prompt``, plus ``conversation_id`` and ``to_engine``

    ``SUMMARY_TRIGGERED``, ``SUMMARY_COMPLETED``, ``SUMMARY_FAILED``
        ``conversation_id`` plus ``version`` (completed) or ``error`` (failed)
    """

    # Session registry
    SESSION_CREATED = "session.created"
    SESSION_REUSED = "session.reused"
    SESSION_PURGED = "session.purged"
    CACHE_SWEPT = "cache.swept"
    CONVERSATION_DELETED = "conversation.deleted"

    # Context bridge
    CONTEXT_BUILT = "context.built"

    # Summaries
    SUMMARY_TRIGGERED = "summary.triggered"
    SUMMARY_COMPLETED = "summary.completed"
    SUMMARY_FAILED = "summary.failed"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    Design decisions:
    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled via ``asyncio.create_task()`` (fire-and-forget).
    - Handler exceptions are logged but never propagate to the publisher.

    Example::

        bus = EventBus()

        def on_purge(event, payload):
            print(f"Dropped stale session {payload['session_id']}")

        bus.subscribe(ContinuumEvent.SESSION_PURGED, on_purge)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[ContinuumEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._background: set[asyncio.Task[Any]] = set()
        self._logger = logger or structlog.get_logger("continuum.events")

    def subscribe(self, event: ContinuumEvent, handler: Handler) -> None:
        """Register a handler for a specific event type. May be sync or async."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for ALL event types."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: ContinuumEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def publish(self, event: ContinuumEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Sync handlers are called immediately in registration order.
        Async handlers are scheduled as background tasks (non-blocking).
        Exceptions from any handler are logged and swallowed.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        # No running event loop: drop the coroutine cleanly
                        result.close()
                        continue
                    task = loop.create_task(result)
                    self._background.add(task)
                    task.add_done_callback(self._background.discard)
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )
