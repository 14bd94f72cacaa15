"""Tests for ContextBridge: budgets, handoffs, summaries and windowed history."""

from __future__ import annotations

import pytest

from continuum.bridge.context_bridge import HISTORY_HEADER, extract_code_content
from continuum.events.bus import ContinuumEvent
from continuum.models.engine import ENGINE_PROFILES, Engine
from continuum.models.session import EngineSession
from continuum.models.summary import SummaryDraft
from tests.conftest import BASE_TS, add_turns, claude_entry, write_jsonl

PARSER_TURNS = [
    ("user", "Refactor the parser into smaller functions."),
    ("assistant", "Split parse() into tokenize() and build_tree()."),
    ("user", "Also make transcript reads streaming."),
]


def long_turns(n: int, size: int = 600) -> list[tuple[str, str]]:
    return [("user" if i % 2 == 0 else "assistant", f"{i:03d}" + "x" * size) for i in range(n)]


class TestBudget:
    def test_available_budget(self, bridge):
        # 3000 - ceil(13 / 4) - 200
        assert bridge.available_budget(Engine.CODEX, "Now add tests") == 2_796

    def test_available_budget_never_negative(self, bridge):
        assert bridge.available_budget(Engine.CLAUDE, "x" * 40_000) == 0

    async def test_oversized_message_is_sent_bare(self, bridge, message_log):
        """A message larger than the whole budget gets no context at all."""
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        message = "y" * 20_000
        built = await bridge.build_context("conv-1", Engine.CLAUDE, message)
        assert built.prompt == message
        assert built.context_source == "budget_exhausted"
        assert built.context_tokens == 0
        assert built.total_tokens == 5_000

    @pytest.mark.parametrize("to_engine", list(Engine))
    @pytest.mark.parametrize("from_engine", [None, Engine.CLAUDE, Engine.GEMINI])
    async def test_total_never_exceeds_engine_budget(
        self, bridge, message_log, summary_store, to_engine, from_engine
    ):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, long_turns(30))
        await summary_store.save_summary(
            "conv-1", SummaryDraft(summary_short="s" * 3_000, key_decisions=["d"] * 5)
        )
        built = await bridge.build_context(
            "conv-1", to_engine, "Please continue with the next step.", from_engine=from_engine
        )
        assert built.total_tokens <= ENGINE_PROFILES[to_engine].max_context_tokens
        assert built.prompt.endswith("Please continue with the next step.")


class TestHandoff:
    async def test_engine_switch_builds_handoff(self, bridge, message_log):
        """Three Claude turns then a Codex request produce a handoff naming both engines."""
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        built = await bridge.build_context(
            "conv-1", Engine.CODEX, "Now add tests", from_engine=Engine.CLAUDE
        )
        assert built.is_engine_bridge is True
        assert built.context_source == "handoff+history"
        assert built.total_tokens < 3_000
        assert '<previous_session_context engine="claude" total_messages="3">' in built.prompt
        assert "Claude Code (Anthropic)" in built.prompt
        assert "Codex (OpenAI)" in built.prompt
        assert "## Recent Messages" in built.prompt
        assert "User [claude]: Refactor the parser into smaller functions." in built.prompt
        assert built.prompt.endswith(
            "Continue assisting with the following request:\n\nNow add tests"
        )

    async def test_handoff_includes_summary(self, bridge, message_log, summary_store):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        await summary_store.save_summary(
            "conv-1",
            SummaryDraft(
                summary_short="Parser refactor in progress.",
                key_decisions=["Split tokenizer"],
                files_modified=["src/parser.py"],
            ),
        )
        built = await bridge.build_context(
            "conv-1", Engine.GEMINI, "Continue", from_engine=Engine.CLAUDE
        )
        assert built.context_source == "handoff+summary"
        assert "## Summary\nParser refactor in progress." in built.prompt
        assert "## Key Decisions\n- Split tokenizer" in built.prompt
        assert "## Files Modified\n- src/parser.py" in built.prompt

    async def test_handoff_turns_are_truncated(self, bridge, message_log):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, [("user", "z" * 900)])
        built = await bridge.build_context("conv-1", Engine.CODEX, "go", from_engine=Engine.CLAUDE)
        assert "z" * 500 + "..." in built.prompt
        assert "z" * 501 not in built.prompt

    async def test_oversized_handoff_falls_back_to_history(
        self, bridge, message_log, summary_store
    ):
        """A handoff block over budget is replaced by windowed history that fits."""
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        await summary_store.save_summary("conv-1", SummaryDraft(summary_short="w" * 20_000))
        built = await bridge.build_context(
            "conv-1", Engine.CODEX, "Now add tests", from_engine=Engine.CLAUDE
        )
        assert built.context_source == "handoff_fallback_history"
        assert built.prompt.startswith(HISTORY_HEADER)
        assert "w" * 100 not in built.prompt
        assert built.context_tokens <= bridge.available_budget(Engine.CODEX, "Now add tests")

    async def test_falls_back_to_previous_engine_transcript(
        self, bridge, session_store, claude_root
    ):
        """With an empty log the previous engine's own transcript supplies the turns."""
        await session_store.insert(
            EngineSession(
                id="claude-sess",
                conversation_id="conv-1",
                engine=Engine.CLAUDE,
                workspace_path="/work/app",
                title="New Chat",
                created_at=BASE_TS,
                last_used_at=BASE_TS,
                message_count=2,
            )
        )
        write_jsonl(
            claude_root / "-work-app" / "claude-sess.jsonl",
            [
                claude_entry("user", "What does the lexer do?", BASE_TS),
                claude_entry("assistant", "It splits input into tokens.", BASE_TS + 1_000),
            ],
        )
        built = await bridge.build_context("conv-1", Engine.CODEX, "go", from_engine=Engine.CLAUDE)
        assert built.context_source == "handoff+history"
        assert 'total_messages="2"' in built.prompt
        assert "User [claude]: What does the lexer do?" in built.prompt
        assert "Assistant [claude]: It splits input into tokens." in built.prompt

    async def test_native_resume_does_not_skip_handoff(self, bridge, message_log):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        built = await bridge.build_context(
            "conv-1", Engine.CODEX, "go", from_engine=Engine.CLAUDE, native_resume=True
        )
        assert built.context_source == "handoff+history"


class TestSameEngine:
    async def test_native_resume_sends_bare_message(self, bridge, message_log):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        built = await bridge.build_context(
            "conv-1", Engine.CLAUDE, "next", from_engine=Engine.CLAUDE, native_resume=True
        )
        assert built.prompt == "next"
        assert built.context_source == "native_resume"
        assert built.is_engine_bridge is False

    async def test_summary_preferred_when_it_fits(self, bridge, message_log, summary_store):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        await summary_store.save_summary("conv-1", SummaryDraft(summary_short="Parser work."))
        built = await bridge.build_context(
            "conv-1", Engine.CLAUDE, "next", from_engine=Engine.CLAUDE
        )
        assert built.context_source == "summary"
        assert built.prompt == "[Session Summary]\nParser work.\n\nnext"

    async def test_large_window_engines_replay_history(self, bridge, message_log, summary_store):
        await add_turns(message_log, "conv-1", Engine.GEMINI, PARSER_TURNS)
        await summary_store.save_summary("conv-1", SummaryDraft(summary_short="Parser work."))
        built = await bridge.build_context("conv-1", Engine.GEMINI, "next")
        assert built.context_source == "history"
        assert built.prompt.startswith(HISTORY_HEADER)
        assert "User [gemini]: Also make transcript reads streaming." in built.prompt
        assert "[Session Summary]" not in built.prompt

    async def test_summary_too_large_uses_history(self, bridge, message_log, summary_store):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        await summary_store.save_summary("conv-1", SummaryDraft(summary_short="q" * 16_000))
        built = await bridge.build_context("conv-1", Engine.CLAUDE, "next")
        assert built.context_source == "history"

    async def test_empty_conversation(self, bridge):
        built = await bridge.build_context("conv-new", Engine.CLAUDE, "hello")
        assert built.prompt == "hello"
        assert built.context_source == "none"
        assert built.total_tokens == 2

    async def test_context_built_event(self, bridge, message_log, event_bus):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        await bridge.build_context("conv-1", Engine.CODEX, "go", from_engine="claude")
        [(event, payload)] = [e for e in event_bus.collected if e[0] == ContinuumEvent.CONTEXT_BUILT]
        assert payload["to_engine"] == "codex"
        assert payload["is_engine_bridge"] is True
        assert "prompt" not in payload


class TestWindowedHistory:
    def test_extract_code_content(self):
        text = "Intro\n```python\nprint(1)\n```\nmiddle\n```\nls\n```\nend"
        assert extract_code_content(text) == "```python\nprint(1)\n```\n\n```\nls\n```"
        assert extract_code_content("no code here") == ""
        assert extract_code_content(None) == ""

    async def test_newest_turns_win(self, bridge, message_log):
        """When not everything fits, the most recent turns are kept in order."""
        turns = await add_turns(message_log, "conv-1", Engine.CLAUDE, long_turns(6, size=400))
        block = bridge.window_turns(turns, 300, ENGINE_PROFILES[Engine.CLAUDE])
        assert block.source == "history"
        assert block.tokens <= 300
        assert "004x" in block.text and "005x" in block.text
        assert "003x" not in block.text
        assert block.text.index("004x") < block.text.index("005x")

    async def test_nothing_fits(self, bridge, message_log):
        turns = await add_turns(message_log, "conv-1", Engine.CLAUDE, long_turns(2, size=4_000))
        block = bridge.window_turns(turns, 50, ENGINE_PROFILES[Engine.CLAUDE])
        assert block.text == ""
        assert block.tokens == 0

    async def test_turns_are_capped(self, bridge, message_log):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, [("user", "a" * 5_000)])
        built = await bridge.build_context("conv-1", Engine.GEMINI, "next")
        assert "a" * 2_000 + "..." in built.prompt
        assert "a" * 2_001 not in built.prompt

    async def test_code_only_compression(self, bridge, message_log):
        """Codex sees only code from assistant turns; user turns stay verbatim."""
        await add_turns(
            message_log,
            "conv-1",
            Engine.CODEX,
            [
                ("user", "Write hello world, please explain it too."),
                ("assistant", "Sure! Here it is:\n```python\nprint('hi')\n```\nIt prints hi."),
                ("assistant", "b" * 900),
            ],
        )
        built = await bridge.build_context("conv-1", Engine.CODEX, "next")
        assert built.context_source == "history"
        assert "User [codex]: Write hello world, please explain it too." in built.prompt
        assert "Assistant [codex]: ```python\nprint('hi')\n```" in built.prompt
        assert "It prints hi." not in built.prompt
        assert "b" * 500 + "..." in built.prompt
        assert "b" * 501 not in built.prompt

    async def test_other_engines_keep_prose(self, bridge, message_log):
        await add_turns(
            message_log,
            "conv-1",
            Engine.GEMINI,
            [("assistant", "Sure! Here it is:\n```python\nprint('hi')\n```\nIt prints hi.")],
        )
        built = await bridge.build_context("conv-1", Engine.GEMINI, "next")
        assert "It prints hi." in built.prompt


class TestSummaryTrigger:
    async def test_engine_switch_always_triggers(self, bridge):
        assert await bridge.should_trigger_summary("conv-1", is_engine_bridge=True)

    @pytest.mark.parametrize(
        ("count", "with_summary", "expected"),
        [
            (15, False, False),
            (16, False, True),
            (16, True, False),
            (20, True, True),
            (25, True, False),
            (30, True, True),
            (4, False, False),
        ],
    )
    async def test_count_policy(
        self, bridge, message_log, summary_store, count, with_summary, expected
    ):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, [("user", "m")] * count)
        if with_summary:
            await summary_store.save_summary("conv-1", SummaryDraft(summary_short="s"))
        assert await bridge.should_trigger_summary("conv-1") is expected

    async def test_trigger_runs_in_background(self, bridge, message_log, summary_store, worker):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS)
        assert bridge.trigger_summary("conv-1") is True
        await worker.wait_for_pending("conv-1")
        summary = await summary_store.get_summary("conv-1")
        assert summary is not None and summary.version == 1

    async def test_context_stats(self, bridge, message_log, summary_store):
        await add_turns(message_log, "conv-1", Engine.CLAUDE, PARSER_TURNS[:2])
        stats = await bridge.context_stats("conv-1")
        assert stats.message_count == 2
        assert stats.last_engine is Engine.CLAUDE
        assert stats.has_summary is False
        assert stats.summary_threshold == 15
