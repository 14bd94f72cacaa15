"""Mapping (conversation, engine) pairs onto live engine sessions."""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from collections.abc import AsyncIterator
from datetime import UTC, datetime

import aiosqlite
import structlog

from continuum.errors import ContinuumStoreError, SessionNotFoundError
from continuum.events.bus import ContinuumEvent, EventBus
from continuum.models.config import ContinuumConfig
from continuum.models.engine import Engine, normalize_engine
from continuum.models.message import now_ms
from continuum.models.session import EngineSession, RegistryStats, ResolvedSession
from continuum.store.sessions import SessionStore
from continuum.transcripts.locator import TranscriptLocator, normalize_workspace_path

CacheKey = tuple[str, Engine]

_TITLE_MAX_CHARS = 50
_TITLE_MIN_WORD_CUT = 20


def extract_title(message: str | None, default: str = "New Chat") -> str:
    """
    Derive a short conversation title from the first user message.

    Whitespace is collapsed. Messages over 50 characters are cut at the last
    word boundary (when one falls past character 20) and suffixed with
    ``...``. A blank message yields *default*.
    """
    if not message or not message.strip():
        return default
    cleaned = " ".join(message.split())
    if len(cleaned) <= _TITLE_MAX_CHARS:
        return cleaned
    truncated = cleaned[:_TITLE_MAX_CHARS]
    last_space = truncated.rfind(" ")
    if last_space > _TITLE_MIN_WORD_CUT:
        return truncated[:last_space] + "..."
    return truncated + "..."


class _CacheEntry:
    __slots__ = ("last_access", "pending", "session_id")

    def __init__(self, session_id: str, last_access: float, pending: bool) -> None:
        self.session_id = session_id
        self.last_access = last_access
        # True until the first exchange: the engine has not written a transcript yet.
        self.pending = pending


class SessionRegistry:
    """
    Resolves ``(conversation_id, engine)`` to a concrete engine session id.

    Lookups go through an in-memory cache, then the durable ``SessionStore``,
    and finally mint a fresh session. Every cached or stored id is
    re-validated before reuse: for engines that keep a transcript file, the
    file must still exist somewhere under the engine's session root. Stale
    rows are purged and replaced.

    Sessions that have not completed an exchange yet count as alive without a
    probe, since the engine only creates its transcript on the first real
    exchange. :meth:`touch` marks that exchange.

    Concurrent ``resolve()`` calls for the same key are serialised on a
    per-key lock, so a new pair never ends up with two rows.

    The cache is swept of idle entries by :meth:`sweep_cache`, either called
    directly or periodically once :meth:`start` has been awaited. Sweeping
    never touches durable rows.

    Example::

        registry = SessionRegistry(config, store, TranscriptLocator(config), bus)
        await registry.start()
        resolved = await registry.resolve("conv_1", "claude", "/home/me/app")
        ...
        await registry.close()
    """

    def __init__(
        self,
        config: ContinuumConfig,
        store: SessionStore,
        locator: TranscriptLocator,
        event_bus: EventBus,
    ) -> None:
        self._config = config
        self._store = store
        self._locator = locator
        self._event_bus = event_bus
        self._cache: dict[CacheKey, _CacheEntry] = {}
        self._locks: dict[CacheKey, asyncio.Lock] = {}
        # Holders plus waiters per key; a lock is dropped once nobody needs it.
        self._lock_users: dict[CacheKey, int] = {}
        self._sweeper: asyncio.Task[None] | None = None
        self._logger = structlog.get_logger("continuum.registry")

    # ── Resolution ─────────────────────────────────────────────────────────────

    async def resolve(
        self,
        conversation_id: str,
        engine: Engine | str,
        workspace_path: str | None = None,
    ) -> ResolvedSession:
        """
        Return the live session for this conversation on this engine, creating one if needed.

        Idempotent while the filesystem is unchanged. The backing transcript is
        never created here.

        Raises:
            UnknownEngineError: If *engine* is not a known engine name.
        """
        engine = normalize_engine(engine)
        workspace = normalize_workspace_path(workspace_path)
        key: CacheKey = (conversation_id, engine)
        log = self._logger.bind(conversation_id=conversation_id, engine=engine.value)

        async with self._key_lock(key):
            entry = self._cache.get(key)
            if entry is not None:
                if entry.pending or await self._is_alive(engine, entry.session_id):
                    entry.last_access = time.monotonic()
                    log.debug("session_cache_hit", session_id=entry.session_id)
                    self._publish_reused(conversation_id, engine, entry.session_id, "cache")
                    return ResolvedSession(entry.session_id, False)
                log.info("session_cache_stale", session_id=entry.session_id)
                del self._cache[key]

            try:
                row = await self._store.find_by_conversation(conversation_id, engine)
            except (ContinuumStoreError, aiosqlite.Error) as exc:
                log.warning("session_lookup_failed", error=str(exc))
                row = None
            if row is not None:
                pending = row.message_count == 0
                if pending or await self._is_alive(engine, row.id):
                    self._cache[key] = _CacheEntry(row.id, time.monotonic(), pending)
                    log.debug("session_store_hit", session_id=row.id)
                    self._publish_reused(conversation_id, engine, row.id, "store")
                    return ResolvedSession(row.id, False)
                await self._purge(row, log)

            return await self._create(conversation_id, engine, workspace, log)

    async def _create(
        self,
        conversation_id: str,
        engine: Engine,
        workspace: str,
        log: structlog.BoundLogger,
    ) -> ResolvedSession:
        now = now_ms()
        session = EngineSession(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            engine=engine,
            workspace_path=workspace,
            title=self._config.registry.default_title,
            created_at=now,
            last_used_at=now,
        )
        durable = True
        try:
            await self._store.insert(session)
        except (ContinuumStoreError, aiosqlite.Error) as exc:
            durable = False
            log.warning("session_insert_failed", session_id=session.id, error=str(exc))

        self._cache[(conversation_id, engine)] = _CacheEntry(
            session.id, time.monotonic(), pending=True
        )
        log.info("session_created", session_id=session.id, durable=durable)
        self._event_bus.publish(
            ContinuumEvent.SESSION_CREATED,
            {
                "conversation_id": conversation_id,
                "engine": engine.value,
                "session_id": session.id,
                "durable": durable,
            },
        )
        return ResolvedSession(session.id, True)

    async def _purge(self, row: EngineSession, log: structlog.BoundLogger) -> None:
        try:
            await self._store.delete(row.id)
        except (ContinuumStoreError, aiosqlite.Error) as exc:
            log.warning("session_purge_failed", session_id=row.id, error=str(exc))
            return
        log.info("session_purged", session_id=row.id, reason="transcript_missing")
        self._event_bus.publish(
            ContinuumEvent.SESSION_PURGED,
            {
                "conversation_id": row.conversation_id,
                "engine": row.engine.value,
                "session_id": row.id,
            },
        )

    @contextlib.asynccontextmanager
    async def _key_lock(self, key: CacheKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _is_alive(self, engine: Engine, session_id: str) -> bool:
        return await asyncio.to_thread(self._locator.is_alive, engine, session_id)

    def _publish_reused(
        self, conversation_id: str, engine: Engine, session_id: str, source: str
    ) -> None:
        self._event_bus.publish(
            ContinuumEvent.SESSION_REUSED,
            {
                "conversation_id": conversation_id,
                "engine": engine.value,
                "session_id": session_id,
                "source": source,
            },
        )

    # ── Lookups and updates ────────────────────────────────────────────────────

    async def get_session(self, conversation_id: str, engine: Engine | str) -> str | None:
        """Return the known session id for the pair without validating or creating one."""
        engine = normalize_engine(engine)
        key: CacheKey = (conversation_id, engine)
        async with self._key_lock(key):
            entry = self._cache.get(key)
            if entry is not None:
                entry.last_access = time.monotonic()
                return entry.session_id
            row = await self._store.find_by_conversation(conversation_id, engine)
            if row is None:
                return None
            self._cache[key] = _CacheEntry(row.id, time.monotonic(), row.message_count == 0)
            return row.id

    async def conversation_sessions(self, conversation_id: str) -> list[EngineSession]:
        """Return every engine session recorded for a conversation."""
        return await self._store.list_by_conversation(conversation_id)

    async def touch(
        self,
        conversation_id: str,
        engine: Engine | str,
        session_id: str,
        turns: int = 1,
    ) -> None:
        """
        Record an exchange on a session: bump its message count and last-used time.

        After the first touch the session must be backed by real engine state
        to be reused.
        """
        engine = normalize_engine(engine)
        async with self._key_lock((conversation_id, engine)):
            entry = self._cache.get((conversation_id, engine))
            if entry is not None and entry.session_id == session_id:
                entry.pending = False
                entry.last_access = time.monotonic()
        await self._store.record_activity(session_id, turns)

    async def get_native_thread_id(self, session_id: str) -> str | None:
        """Return the engine-native thread id stored for a session, if any."""
        try:
            session = await self._store.get(session_id)
        except SessionNotFoundError:
            return None
        return session.native_thread_id

    async def set_native_thread_id(self, session_id: str, thread_id: str | None) -> None:
        """Store the engine-native thread id for a session. Empty ids are ignored."""
        if not thread_id:
            return
        await self._store.update(session_id, native_thread_id=thread_id)
        self._logger.debug("native_thread_id_set", session_id=session_id, thread_id=thread_id)

    async def update_title(self, session_id: str, title: str) -> None:
        await self._store.update(session_id, title=title)
        self._logger.info("session_title_updated", session_id=session_id, title=title)

    async def delete_conversation(self, conversation_id: str) -> int:
        """
        Drop every engine session of a conversation from the store and the cache.

        Holds every engine's key lock for the conversation, so a concurrent
        :meth:`resolve` cannot re-cache a deleted session. Engine transcripts
        on disk are left alone.

        Returns:
            The number of durable rows deleted.
        """
        async with contextlib.AsyncExitStack() as stack:
            for engine in Engine:
                await stack.enter_async_context(self._key_lock((conversation_id, engine)))
            removed = await self._store.delete_by_conversation(conversation_id)
            for engine in Engine:
                self._cache.pop((conversation_id, engine), None)
        self._logger.info(
            "conversation_sessions_deleted",
            conversation_id=conversation_id,
            sessions_deleted=len(removed),
        )
        self._event_bus.publish(
            ContinuumEvent.CONVERSATION_DELETED,
            {"conversation_id": conversation_id, "sessions_deleted": len(removed)},
        )
        return len(removed)

    # ── Cache maintenance ──────────────────────────────────────────────────────

    def sweep_cache(self, now: float | None = None) -> int:
        """
        Evict cache entries idle longer than the configured TTL.

        Durable rows are untouched.

        Args:
            now: ``time.monotonic()`` reading to sweep against; defaults to the current time.

        Returns:
            Number of entries evicted.
        """
        now = time.monotonic() if now is None else now
        ttl = self._config.registry.cache_ttl_seconds
        expired = [k for k, e in self._cache.items() if now - e.last_access > ttl]
        for key in expired:
            del self._cache[key]
        if expired:
            self._logger.info("session_cache_swept", evicted=len(expired))
            self._event_bus.publish(ContinuumEvent.CACHE_SWEPT, {"evicted": len(expired)})
        return len(expired)

    async def start(self) -> None:
        """Start the periodic cache sweeper. Idempotent."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_forever())

    async def _sweep_forever(self) -> None:
        interval = self._config.registry.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.sweep_cache()

    async def close(self) -> None:
        """Stop the sweeper and clear the cache. Durable rows are untouched."""
        task = self._sweeper
        self._sweeper = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._cache.clear()

    def stats(self) -> RegistryStats:
        return RegistryStats(
            cache_size=len(self._cache),
            cache_ttl_seconds=self._config.registry.cache_ttl_seconds,
            sweeper_running=self._sweeper is not None and not self._sweeper.done(),
            timestamp=datetime.now(UTC).isoformat(),
        )
