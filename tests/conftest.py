"""Shared fixtures for Continuum tests."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from continuum.adapters import EngineReply
from continuum.bridge.context_bridge import ContextBridge
from continuum.events.bus import ContinuumEvent, EventBus
from continuum.history.loader import HistoryLoader
from continuum.models.config import ContinuumConfig, HistoryConfig, StoreConfig
from continuum.models.engine import Engine
from continuum.models.message import ConversationMessage, TokenUsage
from continuum.models.session import SessionDescriptor
from continuum.registry.session_registry import SessionRegistry
from continuum.store.messages import MessageLog
from continuum.store.pool import StorePool
from continuum.store.sessions import SessionStore
from continuum.store.summaries import SummaryStore
from continuum.summary.generator import SummaryGenerator
from continuum.summary.worker import SummaryWorker
from continuum.tokens.estimator import TokenEstimator
from continuum.transcripts.locator import TranscriptLocator, workspace_slug

BASE_TS = 1_700_000_000_000

SUMMARY_REPLY = json.dumps(
    {
        "summary_short": "Refactored the parser and added streaming reads.",
        "summary_long": "The user asked for a parser refactor. The assistant split the "
        "tokenizer out and switched transcript reads to streaming.",
        "key_decisions": ["Split tokenizer from parser", "Stream transcripts line by line"],
        "tools_used": ["pytest"],
        "files_modified": ["src/parser.py", "src/tokenizer.py"],
    }
)


@pytest.fixture
def config(tmp_path):
    """ContinuumConfig with a temp database and temp engine session roots."""
    return ContinuumConfig(
        store=StoreConfig(db_path=str(tmp_path / "test.db")),
        history=HistoryConfig(
            claude_root=str(tmp_path / "claude" / "projects"),
            codex_root=str(tmp_path / "codex" / "sessions"),
            gemini_root=str(tmp_path / "gemini" / "sessions"),
            qwen_root=str(tmp_path / "qwen" / "sessions"),
        ),
    )


@pytest.fixture
def claude_root(config) -> Path:
    return Path(config.history.claude_root)


@pytest.fixture
def codex_root(config) -> Path:
    return Path(config.history.codex_root)


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def session_store(config, pool):
    """Initialized SessionStore (pool-managed)."""
    s = SessionStore(config.store, pool=pool)
    await s.initialize()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def message_log(config, pool):
    """Initialized MessageLog (pool-managed)."""
    s = MessageLog(config.store, pool=pool)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def summary_model():
    """FakeSummaryModel replying with a well-formed summary."""
    return FakeSummaryModel(SUMMARY_REPLY)


@pytest.fixture
def generator(config, summary_model):
    return SummaryGenerator(config.summary, summary_model)


@pytest_asyncio.fixture
async def summary_store(config, pool, generator):
    """Initialized SummaryStore with a fake-model generator (pool-managed)."""
    s = SummaryStore(config.store, pool=pool, generator=generator)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def estimator():
    return TokenEstimator()


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ContinuumEvent, dict[str, Any]]] = []

    def _collect(event: ContinuumEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def locator(config):
    return TranscriptLocator(config)


@pytest.fixture
def loader(config, locator):
    return HistoryLoader(config, locator)


@pytest_asyncio.fixture
async def registry(config, session_store, locator, event_bus):
    """SessionRegistry without the background sweeper."""
    r = SessionRegistry(config, session_store, locator, event_bus)
    yield r
    await r.close()


@pytest_asyncio.fixture
async def worker(config, summary_store, message_log, event_bus):
    w = SummaryWorker(summary_store, message_log, event_bus, config.summary)
    yield w
    await w.close()


@pytest.fixture
def bridge(config, message_log, summary_store, event_bus, estimator, loader, session_store, worker):
    return ContextBridge(
        config,
        message_log,
        summary_store,
        event_bus,
        estimator=estimator,
        history=loader,
        sessions=session_store,
        worker=worker,
    )


# ── Fakes ─────────────────────────────────────────────────────────────────────


class FakeSummaryModel:
    """SummaryModel double: returns a fixed reply, or raises ``error``."""

    def __init__(self, reply: str = SUMMARY_REPLY, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []
        self.gate: asyncio.Event | None = None

    async def complete(self, prompt: str, *, max_tokens: int) -> str:
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


class FakeEngineAdapter:
    """
    EngineAdapter double.

    For Claude it appends the exchange to a transcript under *claude_root*,
    as the real CLI does on its first exchange.
    """

    def __init__(
        self,
        claude_root: Path | None = None,
        thread_ids: dict[Engine, str] | None = None,
    ) -> None:
        self.claude_root = claude_root
        self.thread_ids = thread_ids or {}
        self.calls: list[dict[str, Any]] = []

    async def send(
        self,
        *,
        engine: Engine,
        session_id: str,
        prompt: str,
        workspace_path: str,
        native_thread_id: str | None,
        is_new_session: bool,
    ) -> EngineReply:
        self.calls.append(
            {
                "engine": engine,
                "session_id": session_id,
                "prompt": prompt,
                "workspace_path": workspace_path,
                "native_thread_id": native_thread_id,
                "is_new_session": is_new_session,
            }
        )
        text = f"{engine.value} reply #{len(self.calls)}"
        if engine is Engine.CLAUDE and self.claude_root is not None:
            path = self.claude_root / workspace_slug(workspace_path) / f"{session_id}.jsonl"
            ts = BASE_TS + len(self.calls) * 10_000
            write_jsonl(
                path,
                [
                    claude_entry("user", prompt, ts),
                    claude_entry("assistant", text, ts + 1_000),
                ],
                append=True,
            )
        return EngineReply(
            text=text,
            usage=TokenUsage(input=10, output=5),
            native_thread_id=self.thread_ids.get(engine),
        )


class FakeWorkspaceIndex:
    def __init__(self, descriptors: list[SessionDescriptor]) -> None:
        self.descriptors = descriptors
        self.queries: list[str] = []

    async def list_sessions(self, workspace_path: str) -> list[SessionDescriptor]:
        self.queries.append(workspace_path)
        return [d for d in self.descriptors if d.workspace_path == workspace_path]


# ── Helpers ───────────────────────────────────────────────────────────────────


def write_jsonl(path: Path, entries: list[dict[str, Any] | str], append: bool = False) -> Path:
    """Write entries as JSONL; plain strings are written verbatim (for malformed lines)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a" if append else "w", encoding="utf-8") as handle:
        for entry in entries:
            handle.write((entry if isinstance(entry, str) else json.dumps(entry)) + "\n")
    return path


def claude_entry(role: str, text: str, ts: int, msg_id: str | None = None) -> dict[str, Any]:
    """A Claude transcript line with a single text block."""
    return {
        "type": role,
        "timestamp": ts,
        "message": {
            "id": msg_id,
            "role": role,
            "content": [{"type": "text", "text": text}],
        },
    }


async def add_turns(
    log: MessageLog,
    conversation_id: str,
    engine: Engine,
    turns: list[tuple[str, str]],
    start: int = BASE_TS,
) -> list[ConversationMessage]:
    """Append (role, content) turns to the log one second apart."""
    existing = await log.count(conversation_id)
    appended = []
    for i, (role, content) in enumerate(turns):
        msg = ConversationMessage(
            id=f"msg_{conversation_id}_{existing + i:04d}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            engine=engine,
            created_at=start + (existing + i) * 1_000,
        )
        appended.append(await log.append(msg))
    return appended
