"""
Per-request context selection under a token budget.

For every outgoing message the bridge decides how much prior conversation
to replay to the target engine:

- **Engine switch**: a structured handoff block naming both engines, with
  the stored summary and the last few raw turns. Falls back to windowed
  history when the block does not fit.
- **Same engine, summary preferred**: the stored summary, when it fits;
  otherwise windowed history.
- **Same engine, no summary preference** (large native windows) or no
  summary stored: windowed history.
- **Native resume** on the same engine: nothing; the engine reloads its own
  transcript.

Available budget is ``max_context_tokens - estimate(user_message) -
safety_margin``, clamped at zero. At zero the bare message is sent.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

import structlog

from continuum.events.bus import ContinuumEvent, EventBus
from continuum.history.loader import HistoryLoader
from continuum.models.config import ContinuumConfig
from continuum.models.context import BuiltContext, ContextSource, ContextStats
from continuum.models.engine import Engine, EngineProfile, normalize_engine
from continuum.models.message import ConversationMessage, Message
from continuum.store.messages import MessageLog
from continuum.store.sessions import SessionStore
from continuum.store.summaries import SummaryStore
from continuum.summary.worker import SummaryWorker
from continuum.tokens.estimator import TokenEstimator

Turn = ConversationMessage | Message

HISTORY_HEADER = "[Context from recent messages]\n"
TURN_SEPARATOR = "\n\n"
PROMPT_SEPARATOR = "\n\n"

_CODE_BLOCK_RE = re.compile(r"```.*?```", re.DOTALL)


def extract_code_content(text: str | None) -> str:
    """Return the fenced code blocks of *text* joined by blank lines, or ``""`` if none."""
    if not text:
        return ""
    return "\n\n".join(_CODE_BLOCK_RE.findall(text))


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _role_label(role: str) -> str:
    return {"user": "User", "system": "System"}.get(role, "Assistant")


def _format_turn(turn: Turn, content: str) -> str:
    return f"{_role_label(turn.role)} [{turn.engine.value}]: {content}"


class ContextBlock:
    """A rendered context block, its estimated size and where it came from."""

    __slots__ = ("source", "text", "tokens")

    def __init__(self, text: str, tokens: int, source: ContextSource) -> None:
        self.text = text
        self.tokens = tokens
        self.source = source


class ContextBridge:
    """
    Builds the prompt for each exchange from the conversation log and summary.

    Recent turns come from the cross-engine :class:`MessageLog`. When the log
    has nothing for a conversation that is switching engines, the previous
    engine's own transcript is read through the :class:`HistoryLoader`
    instead (requires *history* and *sessions*).

    Example::

        bridge = ContextBridge(config, message_log, summaries, bus)
        built = await bridge.build_context(
            "conv_1", Engine.CODEX, "Now add tests", from_engine=Engine.CLAUDE
        )
        reply = await adapter.send(prompt=built.prompt, ...)
    """

    def __init__(
        self,
        config: ContinuumConfig,
        messages: MessageLog,
        summaries: SummaryStore,
        event_bus: EventBus,
        estimator: TokenEstimator | None = None,
        history: HistoryLoader | None = None,
        sessions: SessionStore | None = None,
        worker: SummaryWorker | None = None,
    ) -> None:
        self._config = config
        self._bridge = config.bridge
        self._messages = messages
        self._summaries = summaries
        self._event_bus = event_bus
        self._estimator = estimator or TokenEstimator(config.bridge.chars_per_token)
        self._history = history
        self._sessions = sessions
        self._worker = worker
        self._logger = structlog.get_logger("continuum.bridge")

    # ── Budget ────────────────────────────────────────────────────────────────

    def profile(self, engine: Engine) -> EngineProfile:
        return self._config.profile(engine)

    def available_budget(self, engine: Engine, user_message: str) -> int:
        """Tokens left for context after the message and safety margin; never negative."""
        return max(
            0,
            self.profile(engine).max_context_tokens
            - self._estimator.estimate(user_message)
            - self._bridge.safety_margin_tokens,
        )

    # ── Entry point ───────────────────────────────────────────────────────────

    async def build_context(
        self,
        conversation_id: str,
        to_engine: Engine | str,
        user_message: str,
        *,
        from_engine: Engine | str | None = None,
        native_resume: bool = False,
    ) -> BuiltContext:
        """
        Assemble the prompt for *to_engine*.

        Args:
            conversation_id: The conversation being continued.
            to_engine: The engine that will receive the prompt.
            user_message: The raw user message; always the tail of the prompt.
            from_engine: The engine that served the previous turn, if known.
            native_resume: The target engine will reload its own history; on a
                same-engine request no context is replayed.

        Never raises for budget reasons: with no room for context the bare
        message is returned.
        """
        to_engine = normalize_engine(to_engine)
        previous = normalize_engine(from_engine) if from_engine else None
        is_bridge = previous is not None and previous is not to_engine
        user_tokens = self._estimator.estimate(user_message)
        available = self.available_budget(to_engine, user_message)
        profile = self.profile(to_engine)

        if native_resume and not is_bridge:
            block = ContextBlock("", 0, "native_resume")
        elif available == 0:
            self._logger.info(
                "context_budget_exhausted",
                conversation_id=conversation_id,
                engine=to_engine.value,
                user_tokens=user_tokens,
            )
            block = ContextBlock("", 0, "budget_exhausted")
        elif previous is not None and is_bridge:
            block = await self.build_handoff(conversation_id, previous, to_engine, available)
            if not block.text and available > self._bridge.min_history_budget:
                fallback = await self.build_windowed_history(
                    conversation_id, available, profile, from_engine=previous
                )
                if fallback.text:
                    block = ContextBlock(fallback.text, fallback.tokens, "history_fallback")
        else:
            block = ContextBlock("", 0, "none")
            if profile.prefers_summary_over_history:
                summary_text = await self._summaries.bridge_text(
                    conversation_id,
                    max_decisions=self._bridge.handoff_max_decisions,
                    max_files=self._bridge.handoff_max_files,
                )
                if summary_text:
                    tokens = self._estimator.estimate_cached(summary_text)
                    if tokens <= available:
                        block = ContextBlock(summary_text, tokens, "summary")
            if not block.text and available > self._bridge.min_history_budget:
                history = await self.build_windowed_history(conversation_id, available, profile)
                if history.text:
                    block = ContextBlock(history.text, history.tokens, "history")

        prompt = f"{block.text}{PROMPT_SEPARATOR}{user_message}" if block.text else user_message
        built = BuiltContext(
            prompt=prompt,
            is_engine_bridge=is_bridge,
            context_tokens=block.tokens,
            context_source=block.source,
            total_tokens=block.tokens + user_tokens,
        )
        self._logger.info(
            "context_built",
            conversation_id=conversation_id,
            to_engine=to_engine.value,
            from_engine=previous.value if previous else None,
            context_source=built.context_source,
            context_tokens=built.context_tokens,
            available=available,
            total_tokens=built.total_tokens,
        )
        self._event_bus.publish(
            ContinuumEvent.CONTEXT_BUILT,
            {
                "conversation_id": conversation_id,
                "to_engine": to_engine.value,
                "is_engine_bridge": built.is_engine_bridge,
                "context_tokens": built.context_tokens,
                "context_source": built.context_source,
                "total_tokens": built.total_tokens,
            },
        )
        return built

    # ── Handoff ───────────────────────────────────────────────────────────────

    async def build_handoff(
        self,
        conversation_id: str,
        from_engine: Engine,
        to_engine: Engine,
        max_tokens: int,
    ) -> ContextBlock:
        """
        Build the ``<previous_session_context>`` block for an engine switch.

        Falls back to windowed history (source ``handoff_fallback_history``)
        when the block's estimate exceeds *max_tokens*.
        """
        summary = await self._summaries.get_summary(conversation_id)
        recent = await self._recent_turns(
            conversation_id, self._bridge.handoff_recent_turns, from_engine
        )
        total = await self._messages.count(conversation_id)
        if total == 0:
            total = len(recent)

        sections = [
            f'<previous_session_context engine="{from_engine.value}" total_messages="{total}">',
            f"This conversation was previously handled by {from_engine.display_name}.",
            f"You are now continuing as {to_engine.display_name}.",
            "",
        ]
        has_summary = summary is not None and bool(summary.summary_short)
        if summary is not None and has_summary:
            sections += ["## Summary", summary.summary_short, ""]
            decisions = summary.key_decisions[: self._bridge.handoff_max_decisions]
            if decisions:
                sections += ["## Key Decisions", *(f"- {d}" for d in decisions), ""]
            files = summary.files_modified[: self._bridge.handoff_max_files]
            if files:
                sections += ["## Files Modified", *(f"- {f}" for f in files), ""]

        if recent:
            sections.append("## Recent Messages")
            for turn in recent:
                content = _truncate(turn.content or "", self._bridge.handoff_turn_chars)
                sections += [_format_turn(turn, content), ""]

        sections += ["</previous_session_context>", "", "Continue assisting with the following request:"]
        text = "\n".join(sections)
        tokens = self._estimator.estimate(text)

        if tokens > max_tokens:
            self._logger.info(
                "handoff_over_budget",
                conversation_id=conversation_id,
                tokens=tokens,
                max_tokens=max_tokens,
            )
            fallback = await self.build_windowed_history(
                conversation_id, max_tokens, self.profile(to_engine), from_engine=from_engine
            )
            return ContextBlock(fallback.text, fallback.tokens, "handoff_fallback_history")

        return ContextBlock(text, tokens, "handoff+summary" if has_summary else "handoff+history")

    # ── Windowed history ──────────────────────────────────────────────────────

    async def build_windowed_history(
        self,
        conversation_id: str,
        max_tokens: int,
        profile: EngineProfile,
        from_engine: Engine | None = None,
    ) -> ContextBlock:
        """
        Replay as many recent turns as fit in *max_tokens*, newest first.

        User turns are never compressed. Under code-only compression an
        assistant turn is reduced to its fenced code blocks, or truncated when
        it has none. Every turn is capped at ``max_turn_chars``. The header
        and separators are counted against the budget.
        """
        turns = await self._recent_turns(
            conversation_id, self._bridge.history_fetch_turns, from_engine
        )
        return self.window_turns(turns, max_tokens, profile)

    def window_turns(
        self, turns: Sequence[Turn], max_tokens: int, profile: EngineProfile
    ) -> ContextBlock:
        if not turns or max_tokens <= 0:
            return ContextBlock("", 0, "history")

        lines: list[str] = []
        used = self._estimator.estimate(HISTORY_HEADER)
        for turn in reversed(turns):
            content = turn.content or ""
            if profile.code_only_compression and turn.role == "assistant":
                content = extract_code_content(content) or _truncate(
                    content, self._bridge.assistant_fallback_chars
                )
            content = _truncate(content, self._bridge.max_turn_chars)
            line = _format_turn(turn, content)
            cost = self._estimator.estimate(line + TURN_SEPARATOR)
            if used + cost > max_tokens:
                break
            lines.insert(0, line)
            used += cost

        if not lines:
            return ContextBlock("", 0, "history")
        text = HISTORY_HEADER + TURN_SEPARATOR.join(lines)
        return ContextBlock(text, self._estimator.estimate(text), "history")

    async def _recent_turns(
        self, conversation_id: str, limit: int, from_engine: Engine | None
    ) -> list[Turn]:
        if limit <= 0:
            return []
        logged: list[Turn] = list(await self._messages.recent(conversation_id, limit))
        if logged or from_engine is None:
            return logged
        return await self._transcript_turns(conversation_id, limit, from_engine)

    async def _transcript_turns(
        self, conversation_id: str, limit: int, engine: Engine
    ) -> list[Turn]:
        if self._history is None or self._sessions is None:
            return []
        row = await self._sessions.find_by_conversation(conversation_id, engine)
        if row is None:
            return []
        page = await self._history.load_messages(
            row.id,
            engine,
            row.workspace_path,
            limit=limit,
            native_id=row.native_thread_id,
        )
        self._logger.debug(
            "turns_from_transcript",
            conversation_id=conversation_id,
            engine=engine.value,
            turns=len(page.messages),
        )
        return list(page.messages)

    # ── Summaries ─────────────────────────────────────────────────────────────

    async def should_trigger_summary(
        self, conversation_id: str, is_engine_bridge: bool = False
    ) -> bool:
        """
        Decide whether the exchange just completed should refresh the summary.

        Always on an engine switch; on every ``trigger_every``-th message once
        ``trigger_threshold`` is reached; and once past the threshold if no
        summary exists yet.
        """
        if is_engine_bridge:
            return True
        policy = self._config.summary
        count = await self._messages.count(conversation_id)
        if count >= policy.trigger_threshold and count % policy.trigger_every == 0:
            return True
        if count > policy.trigger_threshold:
            return await self._summaries.get_summary(conversation_id) is None
        return False

    def trigger_summary(self, conversation_id: str) -> bool:
        """Submit a background summary. Returns False without a worker or when coalesced."""
        if self._worker is None:
            self._logger.debug("summary_worker_missing", conversation_id=conversation_id)
            return False
        return self._worker.submit(conversation_id)

    async def context_stats(self, conversation_id: str) -> ContextStats:
        return ContextStats(
            message_count=await self._messages.count(conversation_id),
            last_engine=await self._messages.last_engine(conversation_id),
            has_summary=await self._summaries.get_summary(conversation_id) is not None,
            summary_threshold=self._config.summary.trigger_threshold,
        )
