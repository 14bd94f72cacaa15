"""Engine session rows and registry results."""

from __future__ import annotations

from typing import NamedTuple

from pydantic import BaseModel

from continuum.models.engine import Engine


class EngineSession:
    """Thin data class for ``engine_sessions`` rows (not Pydantic, so reads skip validation)."""

    __slots__ = (
        "conversation_id",
        "created_at",
        "engine",
        "id",
        "last_used_at",
        "message_count",
        "native_thread_id",
        "title",
        "updated_at",
        "workspace_path",
    )

    def __init__(
        self,
        id: str,
        conversation_id: str,
        engine: Engine,
        workspace_path: str,
        title: str,
        created_at: int,
        last_used_at: int,
        native_thread_id: str | None = None,
        message_count: int = 0,
        updated_at: int | None = None,
    ) -> None:
        self.id = id
        self.conversation_id = conversation_id
        self.engine = engine
        self.workspace_path = workspace_path
        self.title = title
        self.created_at = created_at
        self.last_used_at = last_used_at
        self.native_thread_id = native_thread_id
        self.message_count = message_count
        self.updated_at = updated_at if updated_at is not None else last_used_at

    def __repr__(self) -> str:
        return (
            f"EngineSession(id={self.id!r}, conversation_id={self.conversation_id!r}, "
            f"engine={self.engine.value!r})"
        )


class ResolvedSession(NamedTuple):
    """Result of :meth:`SessionRegistry.resolve`."""

    session_id: str
    is_new: bool


class SessionDescriptor(NamedTuple):
    """An engine-native session discovered in a workspace by a ``WorkspaceIndex``."""

    session_id: str
    engine: Engine
    workspace_path: str
    title: str | None = None
    last_modified: int | None = None


class RegistryStats(BaseModel):
    """Snapshot of the session registry's in-memory cache."""

    cache_size: int
    cache_ttl_seconds: float
    sweeper_running: bool
    timestamp: str
    """ISO-8601 UTC time the snapshot was taken."""
