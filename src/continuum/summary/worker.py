"""Background summary generation off the request path."""

from __future__ import annotations

import asyncio
import contextlib

import structlog

from continuum.errors import SummaryError
from continuum.events.bus import ContinuumEvent, EventBus
from continuum.models.config import SummaryConfig
from continuum.models.summary import ConversationSummary
from continuum.store.messages import MessageLog
from continuum.store.summaries import SummaryStore


class SummaryWorker:
    """
    Runs ``SummaryStore.generate_and_save`` as background tasks.

    At most one task is in flight per conversation. A :meth:`submit` that
    arrives while one is running is not dropped: the running task does one
    more pass when it finishes, so the newest messages are always covered.

    Failures are logged and published as ``SUMMARY_FAILED``; they never reach
    whoever called :meth:`submit`.

    Example::

        worker = SummaryWorker(summaries, message_log, bus, config.summary)
        worker.submit("conv_1")          # returns immediately
        await worker.wait_for_pending()  # e.g. in tests or at shutdown
    """

    def __init__(
        self,
        store: SummaryStore,
        messages: MessageLog,
        event_bus: EventBus,
        config: SummaryConfig,
    ) -> None:
        self._store = store
        self._messages = messages
        self._event_bus = event_bus
        self._config = config
        self._tasks: dict[str, asyncio.Task[ConversationSummary | None]] = {}
        self._rerun: set[str] = set()
        self._logger = structlog.get_logger("continuum.summary.worker")

    def submit(self, conversation_id: str) -> bool:
        """
        Schedule a summary for *conversation_id* without waiting for it.

        Returns:
            True if a new task was started; False if one was already running
            (it will pick up this request when it finishes).
        """
        running = self._tasks.get(conversation_id)
        if running is not None and not running.done():
            self._rerun.add(conversation_id)
            self._logger.debug("summary_coalesced", conversation_id=conversation_id)
            return False

        self._logger.info("summary_triggered", conversation_id=conversation_id)
        self._event_bus.publish(
            ContinuumEvent.SUMMARY_TRIGGERED, {"conversation_id": conversation_id}
        )
        task = asyncio.create_task(self._run(conversation_id))
        self._tasks[conversation_id] = task
        task.add_done_callback(lambda t, cid=conversation_id: self._forget(cid, t))
        return True

    def is_pending(self, conversation_id: str) -> bool:
        task = self._tasks.get(conversation_id)
        return task is not None and not task.done()

    def _forget(self, conversation_id: str, task: asyncio.Task[ConversationSummary | None]) -> None:
        if self._tasks.get(conversation_id) is task:
            del self._tasks[conversation_id]

    async def _run(self, conversation_id: str) -> ConversationSummary | None:
        result: ConversationSummary | None = None
        while True:
            self._rerun.discard(conversation_id)
            result = await self._generate_once(conversation_id)
            if conversation_id not in self._rerun:
                return result

    async def _generate_once(self, conversation_id: str) -> ConversationSummary | None:
        try:
            messages = await self._messages.recent(
                conversation_id, self._config.transcript_turns
            )
            if not messages:
                self._logger.debug("summary_skipped_empty", conversation_id=conversation_id)
                return None
            summary = await self._store.generate_and_save(conversation_id, messages)
        except SummaryError as exc:
            self._logger.warning(
                "summary_generation_failed", conversation_id=conversation_id, error=str(exc)
            )
            self._publish_failed(conversation_id, exc)
            return None
        except Exception as exc:
            self._logger.exception(
                "summary_task_crashed", conversation_id=conversation_id, error=str(exc)
            )
            self._publish_failed(conversation_id, exc)
            return None

        self._event_bus.publish(
            ContinuumEvent.SUMMARY_COMPLETED,
            {"conversation_id": conversation_id, "version": summary.version},
        )
        return summary

    def _publish_failed(self, conversation_id: str, exc: Exception) -> None:
        self._event_bus.publish(
            ContinuumEvent.SUMMARY_FAILED,
            {"conversation_id": conversation_id, "error": str(exc)},
        )

    async def wait_for_pending(self, conversation_id: str | None = None) -> None:
        """Await in-flight summary tasks (one conversation, or all) to natural completion."""
        if conversation_id is not None:
            tasks = [t for cid, t in self._tasks.items() if cid == conversation_id]
        else:
            tasks = list(self._tasks.values())
        for task in tasks:
            if not task.done():
                await task

    async def close(self) -> None:
        """Cancel every in-flight summary task."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._rerun.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
