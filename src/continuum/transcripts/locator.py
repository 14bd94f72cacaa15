"""
Finding engine transcripts on disk.

Every probe here returns ``Path | None`` (or ``bool``) and never raises: a
missing directory, a permission error and a plain absence all mean "no
transcript", which is all callers need to know. The probes only stat and
list; nothing in this module writes to the filesystem.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import structlog

from continuum.models.config import ContinuumConfig
from continuum.models.engine import Engine

_logger = structlog.get_logger("continuum.transcripts")

TRANSCRIPT_SUFFIX = ".jsonl"


def normalize_workspace_path(workspace_path: str | None) -> str:
    """Strip trailing slashes so ``/a/b`` and ``/a/b/`` name the same workspace."""
    if not workspace_path:
        return ""
    return workspace_path.rstrip("/")


def workspace_slug(workspace_path: str | None) -> str:
    """
    Map a workspace path onto the directory name Claude uses for it.

    Trailing slashes are stripped, then ``/`` and ``.`` become ``-``::

        >>> workspace_slug("/home/me/my.app/")
        '-home-me-my-app'

    An empty path maps to ``-default``.
    """
    stripped = normalize_workspace_path(workspace_path)
    if not stripped:
        return "-default"
    return stripped.replace("/", "-").replace(".", "-")


class TranscriptLocator:
    """
    Resolves ``(engine, session_id)`` to a transcript file and answers liveness.

    Liveness depends on how the engine stores history (see
    :class:`~continuum.models.engine.EngineProfile.storage`):

    - ``transcript_file`` engines are alive only if the session's transcript
      is found *anywhere* under the engine's session root. The whole root is
      scanned because a session may have been recorded under a different
      workspace than the one currently asking for it.
    - ``engine_thread`` engines own a resumable id with no discoverable file;
      they are always alive once a durable row exists.
    """

    def __init__(self, config: ContinuumConfig) -> None:
        self._config = config

    def session_root(self, engine: Engine) -> Path | None:
        return self._config.history.session_root(engine)

    def expected_path(
        self, engine: Engine, session_id: str, workspace_path: str | None = None
    ) -> Path | None:
        """Return where the transcript would live for this workspace, without probing."""
        root = self.session_root(engine)
        if root is None:
            return None
        if engine is Engine.CLAUDE:
            return root / workspace_slug(workspace_path) / f"{session_id}{TRANSCRIPT_SUFFIX}"
        return root / f"{session_id}{TRANSCRIPT_SUFFIX}"

    def locate(
        self, engine: Engine, session_id: str, workspace_path: str | None = None
    ) -> Path | None:
        """
        Return the transcript file for a session, or None.

        The workspace-derived path is tried first; otherwise the engine's
        whole session root is searched.
        """
        expected = self.expected_path(engine, session_id, workspace_path)
        if expected is not None and _is_file(expected):
            return expected
        return self.find_anywhere(engine, session_id)

    def find_anywhere(self, engine: Engine, session_id: str) -> Path | None:
        """
        Search the engine's entire session root for the session's transcript.

        Cost grows with the number of stored sessions.
        """
        root = self.session_root(engine)
        if root is None or not session_id:
            return None
        if engine is Engine.CODEX:
            direct = root / f"{session_id}{TRANSCRIPT_SUFFIX}"
            if _is_file(direct):
                return direct
            return self._scan_dated_tree(root, session_id)
        if engine is Engine.CLAUDE:
            filename = f"{session_id}{TRANSCRIPT_SUFFIX}"
            for workspace_dir in _iter_dirs(root):
                candidate = workspace_dir / filename
                if _is_file(candidate):
                    return candidate
            return None
        candidate = root / f"{session_id}{TRANSCRIPT_SUFFIX}"
        return candidate if _is_file(candidate) else None

    def is_alive(self, engine: Engine, session_id: str) -> bool:
        """Return True if the session is still backed by real state."""
        profile = self._config.profile(engine)
        if profile.storage == "engine_thread":
            return True
        found = self.find_anywhere(engine, session_id)
        _logger.debug(
            "liveness_probe",
            engine=engine.value,
            session_id=session_id,
            alive=found is not None,
        )
        return found is not None

    @staticmethod
    def _scan_dated_tree(root: Path, thread_id: str) -> Path | None:
        """Search ``YYYY/MM/DD/*.jsonl`` for a filename containing *thread_id*, newest first."""
        for year in _iter_dirs(root, newest_first=True):
            for month in _iter_dirs(year, newest_first=True):
                for day in _iter_dirs(month, newest_first=True):
                    for entry in _iter_files(day):
                        if entry.name.endswith(TRANSCRIPT_SUFFIX) and thread_id in entry.name:
                            return entry
        return None


def _is_file(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError:
        return False


def _iter_dirs(path: Path, *, newest_first: bool = False) -> Iterator[Path]:
    try:
        entries = sorted(path.iterdir(), reverse=newest_first)
    except OSError:
        return
    for entry in entries:
        try:
            if entry.is_dir():
                yield entry
        except OSError:
            continue


def _iter_files(path: Path) -> Iterator[Path]:
    try:
        entries = sorted(path.iterdir())
    except OSError:
        return
    for entry in entries:
        if _is_file(entry):
            yield entry
