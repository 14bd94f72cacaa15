"""Tests for the in-process EventBus."""

from __future__ import annotations

import asyncio

from continuum.events.bus import ContinuumEvent, EventBus


class TestEventBus:
    def test_sync_handler_called(self):
        bus = EventBus()
        seen = []
        bus.subscribe(ContinuumEvent.SESSION_CREATED, lambda e, p: seen.append((e, p)))
        bus.publish(ContinuumEvent.SESSION_CREATED, {"session_id": "s1"})
        bus.publish(ContinuumEvent.SESSION_PURGED, {"session_id": "s2"})
        assert seen == [(ContinuumEvent.SESSION_CREATED, {"session_id": "s1"})]

    def test_subscribe_all(self):
        bus = EventBus()
        seen = []
        bus.subscribe_all(lambda e, p: seen.append(e))
        bus.publish(ContinuumEvent.CACHE_SWEPT, {"evicted": 1})
        bus.publish(ContinuumEvent.SUMMARY_FAILED, {"conversation_id": "c", "error": "x"})
        assert seen == [ContinuumEvent.CACHE_SWEPT, ContinuumEvent.SUMMARY_FAILED]

    async def test_async_handler_scheduled(self):
        bus = EventBus()
        done = asyncio.Event()

        async def handler(event, payload):
            done.set()

        bus.subscribe(ContinuumEvent.SUMMARY_COMPLETED, handler)
        bus.publish(ContinuumEvent.SUMMARY_COMPLETED, {"conversation_id": "c", "version": 1})
        await asyncio.wait_for(done.wait(), timeout=1)

    def test_async_handler_without_loop_is_dropped(self):
        bus = EventBus()

        async def handler(event, payload):
            raise AssertionError("should not run")

        bus.subscribe(ContinuumEvent.CONTEXT_BUILT, handler)
        bus.publish(ContinuumEvent.CONTEXT_BUILT, {})

    def test_handler_errors_do_not_propagate(self):
        """A failing handler neither raises into the publisher nor stops later handlers."""
        bus = EventBus()
        seen = []

        def broken(event, payload):
            raise RuntimeError("boom")

        bus.subscribe(ContinuumEvent.SESSION_REUSED, broken)
        bus.subscribe(ContinuumEvent.SESSION_REUSED, lambda e, p: seen.append(p))
        bus.publish(ContinuumEvent.SESSION_REUSED, {"source": "cache"})
        assert seen == [{"source": "cache"}]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []

        def handler(event, payload):
            seen.append(payload)

        bus.subscribe(ContinuumEvent.CONVERSATION_DELETED, handler)
        bus.unsubscribe(ContinuumEvent.CONVERSATION_DELETED, handler)
        bus.unsubscribe(ContinuumEvent.CONVERSATION_DELETED, handler)
        bus.publish(ContinuumEvent.CONVERSATION_DELETED, {"conversation_id": "c"})
        assert seen == []
