"""End-to-end tests for ContinuumService across engine switches."""

from __future__ import annotations

import pytest
import pytest_asyncio

from continuum.models.engine import Engine
from continuum.models.session import SessionDescriptor
from continuum.service import ContinuumService
from tests.conftest import FakeEngineAdapter, FakeSummaryModel, FakeWorkspaceIndex

WORKSPACE = "/work/app"


@pytest_asyncio.fixture
async def service(config):
    svc = await ContinuumService.create(
        config=config, summary_model=FakeSummaryModel(), start_sweeper=False
    )
    yield svc
    await svc.close()


@pytest.fixture
def adapter(claude_root):
    return FakeEngineAdapter(claude_root=claude_root, thread_ids={Engine.CODEX: "codex-thread-1"})


class FailingAdapter:
    async def send(self, **kwargs):
        raise RuntimeError("engine crashed")


class TestExchange:
    async def test_first_exchange_creates_session_and_title(self, service, adapter):
        result = await service.exchange(
            "conv-1", "claude", "Refactor the parser into modules", adapter, WORKSPACE
        )
        assert result.is_new_session is True
        assert result.text == "claude reply #1"
        assert result.context.context_source == "none"
        assert adapter.calls[0]["prompt"] == "Refactor the parser into modules"
        assert adapter.calls[0]["is_new_session"] is True

        [row] = await service.registry.conversation_sessions("conv-1")
        assert row.id == result.session_id
        assert row.title == "Refactor the parser into modules"
        assert row.message_count == 2
        assert await service.messages.count("conv-1") == 2

    async def test_same_engine_relies_on_native_resume(self, service, adapter):
        first = await service.exchange("conv-1", "claude", "Refactor the parser", adapter, WORKSPACE)
        second = await service.exchange("conv-1", "claude", "Now split the lexer", adapter, WORKSPACE)
        assert second.session_id == first.session_id
        assert second.is_new_session is False
        assert second.context.context_source == "native_resume"
        assert adapter.calls[1]["prompt"] == "Now split the lexer"

    async def test_engine_switch_hands_off_and_summarises(self, service, adapter):
        """Switching engines replays context and refreshes the summary in the background."""
        await service.exchange("conv-1", "claude", "Refactor the parser", adapter, WORKSPACE)
        await service.exchange("conv-1", "claude", "Now split the lexer", adapter, WORKSPACE)
        result = await service.exchange("conv-1", "codex", "Now add tests", adapter, WORKSPACE)

        assert result.is_new_session is True
        assert result.context.is_engine_bridge is True
        assert result.context.context_source == "handoff+history"
        assert result.summary_scheduled is True
        prompt = adapter.calls[-1]["prompt"]
        assert '<previous_session_context engine="claude" total_messages="4">' in prompt
        assert "Assistant [claude]: claude reply #2" in prompt
        assert prompt.endswith("Now add tests")

        await service.wait_for_pending()
        summary = await service.get_summary("conv-1")
        assert summary is not None
        assert summary.version == 1
        assert summary.summary_short

    async def test_native_thread_id_is_stored_and_reused(self, service, adapter):
        first = await service.exchange("conv-1", "codex", "Write a CLI", adapter, WORKSPACE)
        assert first.native_thread_id == "codex-thread-1"
        assert adapter.calls[0]["native_thread_id"] is None

        second = await service.exchange("conv-1", "codex", "Add --verbose", adapter, WORKSPACE)
        assert second.session_id == first.session_id
        assert adapter.calls[1]["native_thread_id"] == "codex-thread-1"
        assert second.context.context_source == "native_resume"

    async def test_usage_recorded_on_assistant_turn(self, service, adapter):
        await service.exchange("conv-1", "gemini", "hello", adapter, WORKSPACE)
        user, assistant = await service.messages.recent("conv-1", 2)
        assert user.role == "user" and user.metadata is None
        assert assistant.metadata == {
            "usage": {"input": 10, "output": 5, "cache_read": 0, "cache_write": 0, "total": 0}
        }

    async def test_adapter_failure_records_nothing(self, service):
        with pytest.raises(RuntimeError):
            await service.exchange("conv-1", "claude", "hello", FailingAdapter(), WORKSPACE)
        assert await service.messages.count("conv-1") == 0

    async def test_ai_title_runs_in_background(self, config, adapter):
        svc = await ContinuumService.create(
            config=config,
            summary_model=FakeSummaryModel("Parser Module Split"),
            start_sweeper=False,
        )
        try:
            result = await svc.exchange(
                "conv-1", "claude", "Refactor the parser", adapter, WORKSPACE, ai_title=True
            )
            await svc.wait_for_pending()
            [row] = await svc.registry.conversation_sessions("conv-1")
            assert row.id == result.session_id
            assert row.title == "Parser Module Split"
        finally:
            await svc.close()

    async def test_context_stats(self, service, adapter):
        await service.exchange("conv-1", "claude", "hi", adapter, WORKSPACE)
        stats = await service.context_stats("conv-1")
        assert stats.message_count == 2
        assert stats.last_engine is Engine.CLAUDE
        assert stats.has_summary is False


class TestConversationViews:
    async def test_load_history_reads_engine_transcript(self, service, adapter):
        await service.exchange("conv-1", "claude", "first question", adapter, WORKSPACE)
        await service.exchange("conv-1", "claude", "second question", adapter, WORKSPACE)
        page = await service.load_history("conv-1", "claude", WORKSPACE)
        assert [m.content for m in page.messages] == [
            "first question",
            "claude reply #1",
            "second question",
            "claude reply #2",
        ]
        assert [m.role for m in page.messages] == ["user", "assistant", "user", "assistant"]
        assert page.pagination.has_more is False

        newest = await service.load_history("conv-1", "claude", WORKSPACE, limit=1, order="desc")
        assert [m.content for m in newest.messages] == ["claude reply #2"]
        assert newest.pagination.has_more is True

    async def test_load_history_for_unused_engine_is_empty(self, service, adapter):
        await service.exchange("conv-1", "claude", "hi", adapter, WORKSPACE)
        page = await service.load_history("conv-1", "gemini", WORKSPACE)
        assert page.messages == []
        assert page.pagination.total == 0

    async def test_delete_conversation_keeps_summary(self, service, adapter):
        await service.exchange("conv-1", "claude", "Refactor the parser", adapter, WORKSPACE)
        await service.exchange("conv-1", "codex", "Now add tests", adapter, WORKSPACE)
        await service.wait_for_pending()

        assert await service.delete_conversation("conv-1") == 2
        assert await service.registry.conversation_sessions("conv-1") == []
        assert await service.messages.count("conv-1") == 0
        assert await service.get_summary("conv-1") is not None

    async def test_list_workspace_sessions(self, config, service):
        assert await service.list_workspace_sessions(WORKSPACE) == []

        index = FakeWorkspaceIndex(
            [
                SessionDescriptor("s1", Engine.CLAUDE, WORKSPACE, title="Parser"),
                SessionDescriptor("s2", Engine.CODEX, "/elsewhere"),
            ]
        )
        async with ContinuumService.open(
            config=config,
            summary_model=FakeSummaryModel(),
            workspace_index=index,
            start_sweeper=False,
        ) as svc:
            found = await svc.list_workspace_sessions(WORKSPACE + "/")
        assert [d.session_id for d in found] == ["s1"]
        assert index.queries == [WORKSPACE]


class TestCreate:
    async def test_db_path_conflict(self, config, tmp_path):
        with pytest.raises(ValueError):
            await ContinuumService.create(config=config, db_path=str(tmp_path / "other.db"))

    async def test_db_path_override(self, tmp_path):
        db = tmp_path / "override.db"
        async with ContinuumService.open(
            db_path=str(db), summary_model=FakeSummaryModel(), start_sweeper=False
        ) as svc:
            assert svc.config.store.db_path == str(db)
        assert db.exists()
