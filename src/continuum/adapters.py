"""
Boundaries to the collaborators this package does not implement.

The engine CLIs, the fast summary model and workspace discovery all live
outside Continuum. Each is described here as a structural ``Protocol`` and
consumed only through that shape. ``LiteLLMSummaryModel`` is the default
summary model.
"""

from __future__ import annotations

import json
import os
import re
from typing import Protocol, runtime_checkable

import structlog
from pydantic import BaseModel

from continuum.models.engine import Engine
from continuum.models.message import TokenUsage
from continuum.models.session import SessionDescriptor

MOCK_ENV_VAR = "CONTINUUM_MOCK_LLM"


class EngineReply(BaseModel):
    """What an engine adapter returns for one exchange."""

    text: str
    usage: TokenUsage | None = None
    native_thread_id: str | None = None
    """Set when the engine reports a (new) resumable thread id."""


@runtime_checkable
class EngineAdapter(Protocol):
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
        """Run one exchange on the external engine CLI and return its reply."""
        ...


@runtime_checkable
class SummaryModel(Protocol):
    async def complete(self, prompt: str, *, max_tokens: int) -> str:
        """Return the model's free-text reply to *prompt*."""
        ...


@runtime_checkable
class WorkspaceIndex(Protocol):
    async def list_sessions(self, workspace_path: str) -> list[SessionDescriptor]:
        """List the engine-native sessions discovered for a workspace."""
        ...


_FILE_PATH_RE = re.compile(r"(?<![\w/])((?:[\w.-]+/)*[\w-]+\.[A-Za-z]{1,5})\b")


class LiteLLMSummaryModel:
    """
    Summary model backed by ``litellm.acompletion``.

    With ``CONTINUUM_MOCK_LLM=1`` no network call is made: summary prompts get
    a deterministic JSON reply built from the transcript, and title prompts
    get the first words of the user message.
    """

    def __init__(self, model: str, temperature: float = 0.2) -> None:
        self._model = model
        self._temperature = temperature
        self._logger = structlog.get_logger("continuum.adapters").bind(model=model)

    async def complete(self, prompt: str, *, max_tokens: int) -> str:
        if os.environ.get(MOCK_ENV_VAR) == "1":
            return self._mock_reply(prompt)

        import litellm

        response = await litellm.acompletion(
            model=self._model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=self._temperature,
        )
        return response.choices[0].message.content or ""

    @staticmethod
    def _mock_reply(prompt: str) -> str:
        if "Transcript:" not in prompt:
            user_line = next(
                (ln for ln in prompt.splitlines() if ln.startswith("User:")), "User: New Chat"
            )
            return " ".join(user_line.removeprefix("User:").split()[:6]) or "New Chat"

        transcript = prompt.split("Transcript:", 1)[1]
        lines = [ln.strip() for ln in transcript.splitlines() if ln.strip()]
        latest = lines[-1][:160] if lines else "(no messages)"
        files = sorted(set(_FILE_PATH_RE.findall(transcript)))[:10]
        return json.dumps(
            {
                "summary_short": f"Conversation of {len(lines)} turns. Latest: {latest}",
                "summary_long": "\n".join(ln[:160] for ln in lines[-8:]),
                "key_decisions": [],
                "tools_used": [],
                "files_modified": files,
            }
        )
