"""Multi-format transcript history loading."""

from continuum.history.loader import HistoryLoader
from continuum.history.pagination import empty_page, paginate
from continuum.history.parsers import (
    ClaudeTranscriptParser,
    CodexTranscriptParser,
    GeminiTranscriptParser,
    TranscriptParser,
    parser_for,
)

__all__ = [
    "ClaudeTranscriptParser",
    "CodexTranscriptParser",
    "GeminiTranscriptParser",
    "HistoryLoader",
    "TranscriptParser",
    "empty_page",
    "paginate",
    "parser_for",
]
