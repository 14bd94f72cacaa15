"""Continuum service: the composition root and the end-to-end exchange flow."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog

from continuum.adapters import EngineAdapter, LiteLLMSummaryModel, SummaryModel, WorkspaceIndex
from continuum.bridge.context_bridge import ContextBridge
from continuum.errors import SessionNotFoundError
from continuum.events.bus import EventBus
from continuum.history.loader import HistoryLoader
from continuum.history.pagination import Order, empty_page
from continuum.models.config import ContinuumConfig, StoreConfig
from continuum.models.context import ContextStats, ExchangeResult
from continuum.models.engine import Engine, normalize_engine
from continuum.models.message import ConversationMessage, MessagePage, make_id, now_ms
from continuum.models.session import SessionDescriptor
from continuum.models.summary import ConversationSummary
from continuum.registry.session_registry import SessionRegistry, extract_title
from continuum.store.messages import MessageLog
from continuum.store.pool import StorePool
from continuum.store.sessions import SessionStore
from continuum.store.summaries import SummaryStore
from continuum.summary.generator import SummaryGenerator
from continuum.summary.worker import SummaryWorker
from continuum.tokens.estimator import TokenEstimator
from continuum.transcripts.locator import TranscriptLocator, normalize_workspace_path


class ContinuumService:
    """
    One continuous conversation surface over several independent engines.

    Wires the session registry, history loader, context bridge and summary
    store onto a shared SQLite pool, and runs the request flow::

        resolve session -> build context -> engine call -> record turns
        -> schedule summary (background)

    Usage::

        async with ContinuumService.open(db_path="/tmp/continuum.db") as service:
            result = await service.exchange(
                "conv_1", "claude", "Refactor the parser", adapter,
                workspace_path="/home/me/app",
            )
            # later, same conversation on another engine
            result = await service.exchange("conv_1", "codex", "Now add tests", adapter)

    The engine adapter is supplied per call; the summary model and the
    workspace index are supplied at construction.
    """

    def __init__(
        self,
        config: ContinuumConfig,
        pool: StorePool,
        owns_pool: bool,
        sessions: SessionStore,
        messages: MessageLog,
        summaries: SummaryStore,
        registry: SessionRegistry,
        history: HistoryLoader,
        bridge: ContextBridge,
        worker: SummaryWorker,
        generator: SummaryGenerator,
        event_bus: EventBus,
        workspace_index: WorkspaceIndex | None = None,
    ) -> None:
        self._config = config
        self._pool = pool
        self._owns_pool = owns_pool
        self._sessions = sessions
        self._messages = messages
        self._summaries = summaries
        self._registry = registry
        self._history = history
        self._bridge = bridge
        self._worker = worker
        self._generator = generator
        self._event_bus = event_bus
        self._workspace_index = workspace_index
        self._background: set[asyncio.Task[Any]] = set()
        self._logger = structlog.get_logger("continuum.service")

    @classmethod
    async def create(
        cls,
        *,
        config: ContinuumConfig | None = None,
        db_path: str | None = None,
        pool: StorePool | None = None,
        summary_model: SummaryModel | None = None,
        workspace_index: WorkspaceIndex | None = None,
        start_sweeper: bool = True,
    ) -> ContinuumService:
        """
        Build and initialize a service.

        Args:
            config: Continuum configuration. Defaults to ``ContinuumConfig()``.
            db_path: Override database path (useful for testing). Raises
                ``ValueError`` if ``config.store.db_path`` is also customised.
            pool: Shared connection pool. When omitted the service creates one
                and closes it in :meth:`close`.
            summary_model: Model used for summaries and titles. Defaults to
                :class:`LiteLLMSummaryModel` on ``config.summary.model``.
            workspace_index: Discovers engine-native sessions for a workspace.
            start_sweeper: Start the registry's periodic cache sweeper.

        Raises:
            ValueError: If both ``db_path`` and ``config.store.db_path`` are supplied.
            aiosqlite.Error: If the database cannot be initialized.
        """
        cfg = config or ContinuumConfig()
        if db_path is not None:
            if config is not None and cfg.store.db_path != StoreConfig().db_path:
                raise ValueError(
                    "Specify db_path either via db_path= or config.store.db_path, not both."
                )
            cfg = cfg.model_copy(
                update={"store": cfg.store.model_copy(update={"db_path": db_path})}
            )

        owns_pool = pool is None
        store_pool = pool or StorePool()
        event_bus = EventBus()
        estimator = TokenEstimator(cfg.bridge.chars_per_token)
        generator = SummaryGenerator(
            cfg.summary, summary_model or LiteLLMSummaryModel(cfg.summary.model)
        )

        sessions = SessionStore(cfg.store, pool=store_pool)
        messages = MessageLog(cfg.store, pool=store_pool)
        summaries = SummaryStore(cfg.store, pool=store_pool, generator=generator)
        for store in (sessions, messages, summaries):
            await store.initialize()

        locator = TranscriptLocator(cfg)
        history = HistoryLoader(cfg, locator)
        registry = SessionRegistry(cfg, sessions, locator, event_bus)
        worker = SummaryWorker(summaries, messages, event_bus, cfg.summary)
        bridge = ContextBridge(
            cfg,
            messages,
            summaries,
            event_bus,
            estimator=estimator,
            history=history,
            sessions=sessions,
            worker=worker,
        )
        if start_sweeper:
            await registry.start()

        structlog.get_logger("continuum.service").info(
            "service_started", db_path=cfg.store.db_path
        )
        return cls(
            config=cfg,
            pool=store_pool,
            owns_pool=owns_pool,
            sessions=sessions,
            messages=messages,
            summaries=summaries,
            registry=registry,
            history=history,
            bridge=bridge,
            worker=worker,
            generator=generator,
            event_bus=event_bus,
            workspace_index=workspace_index,
        )

    @classmethod
    @asynccontextmanager
    async def open(cls, **kwargs: Any) -> AsyncGenerator[ContinuumService, None]:
        """
        Create a service and close it when the ``async with`` block exits.

        Accepts the same keyword arguments as :meth:`create`.
        """
        service = await cls.create(**kwargs)
        try:
            yield service
        finally:
            await service.close()

    async def close(self) -> None:
        """
        Release every resource.

        In-flight summaries and titles are awaited first, so nothing is cut
        off mid-write; then the sweeper stops and the connection is released.
        """
        await self.wait_for_pending()
        await self._worker.close()
        await self._registry.close()
        for store in (self._summaries, self._messages, self._sessions):
            await store.close()
        if self._owns_pool:
            await self._pool.close_all()
        self._logger.info("service_closed")

    async def __aenter__(self) -> ContinuumService:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ── Accessors ─────────────────────────────────────────────────────────────

    @property
    def config(self) -> ContinuumConfig:
        return self._config

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def bridge(self) -> ContextBridge:
        return self._bridge

    @property
    def history(self) -> HistoryLoader:
        return self._history

    @property
    def summaries(self) -> SummaryStore:
        return self._summaries

    @property
    def messages(self) -> MessageLog:
        return self._messages

    @property
    def event_bus(self) -> EventBus:
        """Subscribe here to observe session, context and summary events."""
        return self._event_bus

    # ── Exchange ──────────────────────────────────────────────────────────────

    async def exchange(
        self,
        conversation_id: str,
        engine: Engine | str,
        user_message: str,
        adapter: EngineAdapter,
        workspace_path: str | None = None,
        *,
        ai_title: bool = False,
    ) -> ExchangeResult:
        """
        Run one user message through *engine* with continuity across engines.

        Steps: resolve the engine session; build the context for the target
        engine (a handoff when the previous turn was on another engine);
        call the adapter; record both turns tagged with the engine; store any
        new native thread id; title a brand-new conversation; and, when the
        trigger policy says so, schedule a background summary. The summary is
        never awaited here.

        Args:
            conversation_id: Stable conversation id.
            engine: Target engine (free-form names are normalized).
            user_message: The raw user message.
            adapter: Runs the engine CLI.
            workspace_path: Workspace the engine runs in.
            ai_title: Title a new conversation with the summary model in the
                background instead of from the first message.

        Raises:
            UnknownEngineError: If *engine* is not a known engine.
            Exception: Whatever the adapter raises; nothing is recorded then.
        """
        engine = normalize_engine(engine)
        workspace = normalize_workspace_path(workspace_path)
        log = self._logger.bind(conversation_id=conversation_id, engine=engine.value)

        resolved = await self._registry.resolve(conversation_id, engine, workspace)
        previous = await self._messages.last_engine(conversation_id)
        native_thread_id = await self._registry.get_native_thread_id(resolved.session_id)
        native_resume = self._config.profile(engine).native_resume and not resolved.is_new

        built = await self._bridge.build_context(
            conversation_id,
            engine,
            user_message,
            from_engine=previous,
            native_resume=native_resume,
        )

        reply = await adapter.send(
            engine=engine,
            session_id=resolved.session_id,
            prompt=built.prompt,
            workspace_path=workspace,
            native_thread_id=native_thread_id,
            is_new_session=resolved.is_new,
        )

        sent_at = now_ms()
        await self._messages.append(
            ConversationMessage(
                id=make_id("msg"),
                conversation_id=conversation_id,
                role="user",
                content=user_message,
                engine=engine,
                created_at=sent_at,
            )
        )
        await self._messages.append(
            ConversationMessage(
                id=make_id("msg"),
                conversation_id=conversation_id,
                role="assistant",
                content=reply.text,
                engine=engine,
                created_at=max(now_ms(), sent_at),
                metadata={"usage": reply.usage.model_dump()} if reply.usage else None,
            )
        )

        if reply.native_thread_id and reply.native_thread_id != native_thread_id:
            await self._registry.set_native_thread_id(resolved.session_id, reply.native_thread_id)
            native_thread_id = reply.native_thread_id
        await self._registry.touch(conversation_id, engine, resolved.session_id, turns=2)

        if resolved.is_new and previous is None:
            await self._registry.update_title(resolved.session_id, extract_title(user_message))
            if ai_title:
                self._spawn(self._retitle(resolved.session_id, user_message, reply.text))

        scheduled = False
        if await self._bridge.should_trigger_summary(conversation_id, built.is_engine_bridge):
            scheduled = self._bridge.trigger_summary(conversation_id)

        log.info(
            "exchange_completed",
            session_id=resolved.session_id,
            is_new_session=resolved.is_new,
            context_source=built.context_source,
            total_tokens=built.total_tokens,
            summary_scheduled=scheduled,
        )
        return ExchangeResult(
            conversation_id=conversation_id,
            session_id=resolved.session_id,
            engine=engine,
            is_new_session=resolved.is_new,
            text=reply.text,
            usage=reply.usage,
            native_thread_id=native_thread_id,
            context=built,
            summary_scheduled=scheduled,
        )

    async def _retitle(self, session_id: str, user_message: str, assistant_text: str) -> None:
        title = await self._generator.generate_title(user_message, assistant_text)
        await self._registry.update_title(session_id, title)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_pending(self) -> None:
        """Await background summaries and titles to natural completion."""
        await self._worker.wait_for_pending()
        for task in list(self._background):
            try:
                await task
            except Exception as exc:
                self._logger.exception("background_task_failed", error=str(exc))

    # ── Conversation views ────────────────────────────────────────────────────

    async def load_history(
        self,
        conversation_id: str,
        engine: Engine | str,
        workspace_path: str | None = None,
        *,
        limit: int | None = None,
        before: int | None = None,
        order: Order = "asc",
    ) -> MessagePage:
        """
        Page through a conversation's history as recorded by *engine* itself.

        Uses the durable session row for the workspace and native thread id.
        A conversation that never ran on *engine* yields an empty page.
        """
        engine = normalize_engine(engine)
        session_id = await self._registry.get_session(conversation_id, engine)
        if session_id is None:
            return empty_page()
        workspace = normalize_workspace_path(workspace_path)
        native_id: str | None = None
        try:
            row = await self._sessions.get(session_id)
        except SessionNotFoundError:
            row = None
        if row is not None:
            workspace = row.workspace_path or workspace
            native_id = row.native_thread_id
        return await self._history.load_messages(
            session_id,
            engine,
            workspace,
            limit=limit,
            before=before,
            order=order,
            native_id=native_id,
        )

    async def list_workspace_sessions(self, workspace_path: str) -> list[SessionDescriptor]:
        """List engine-native sessions for a workspace via the injected index."""
        if self._workspace_index is None:
            return []
        return await self._workspace_index.list_sessions(normalize_workspace_path(workspace_path))

    async def delete_conversation(self, conversation_id: str) -> int:
        """
        Forget a conversation: its engine sessions, cache entries and message log.

        Summaries are retained and engine transcripts on disk are untouched.

        Returns:
            The number of engine session rows deleted.
        """
        deleted = await self._registry.delete_conversation(conversation_id)
        await self._messages.delete_conversation(conversation_id)
        return deleted

    async def get_summary(self, conversation_id: str) -> ConversationSummary | None:
        return await self._summaries.get_summary(conversation_id)

    async def context_stats(self, conversation_id: str) -> ContextStats:
        return await self._bridge.context_stats(conversation_id)
