"""SQLite persistence for sessions, the conversation log and summaries."""

from continuum.store.base import SQLiteStore
from continuum.store.messages import MessageLog
from continuum.store.pool import StorePool
from continuum.store.sessions import SessionStore
from continuum.store.summaries import SummaryStore, render_summary_block

__all__ = [
    "MessageLog",
    "SQLiteStore",
    "SessionStore",
    "StorePool",
    "SummaryStore",
    "render_summary_block",
]
