"""Persisted store for categorized messages and sync state.

This package contains a SQLite-backed message store (idempotent upserts keyed
by user and provider message id, newest-first range queries with exact counts)
and the per-provider continuation state used by the sync orchestrator.
"""

from .database import SQLiteDatabase
from .messages import CategoryCount, MessageFilter, MessageRepository, QueryResult
from .sync_state import SyncStateRepository

__all__ = [
    "CategoryCount",
    "MessageFilter",
    "MessageRepository",
    "QueryResult",
    "SQLiteDatabase",
    "SyncStateRepository",
]
