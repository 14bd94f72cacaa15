"""Exception hierarchy shared by every Continuum component."""

from __future__ import annotations


class ContinuumError(Exception):
    """Base class for all Continuum errors."""


class UnknownEngineError(ContinuumError, ValueError):
    """Raised when an engine name cannot be mapped onto a known engine."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown engine: {name!r}")
        self.name = name


# ── Store errors ───────────────────────────────────────────────────────────────


class ContinuumStoreError(ContinuumError):
    """Base class for durable-store errors."""


class SessionNotFoundError(ContinuumStoreError):
    """Raised when a session id has no durable row."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id!r}")
        self.session_id = session_id


class DuplicateIDError(ContinuumStoreError):
    """Raised when inserting a row whose key already exists."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Duplicate ID: {record_id!r}")
        self.record_id = record_id


# ── Summary errors ─────────────────────────────────────────────────────────────


class SummaryError(ContinuumError):
    """Base class for summary generation errors."""


class SummaryParseError(SummaryError):
    """Raised when the summary model's reply holds no parseable JSON object."""

    def __init__(self, reason: str, raw_text: str = "") -> None:
        super().__init__(f"Failed to parse summary JSON: {reason}")
        self.reason = reason
        self.raw_text = raw_text


class SummaryGenerationError(SummaryError):
    """Raised when the summary model call itself fails."""
