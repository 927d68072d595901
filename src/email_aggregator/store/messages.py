"""Message store: idempotent upserts and newest-first range queries."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from email_aggregator.models import Category, ProviderKind, StoredMessage
from email_aggregator.store.database import SQLiteDatabase

logger = structlog.get_logger()


@dataclass(frozen=True)
class MessageFilter:
    """Filter applied to range and count queries. ``None`` means unfiltered."""

    category: Category | None = None
    provider: ProviderKind | None = None
    is_read: bool | None = None
    is_archived: bool | None = None


@dataclass(frozen=True)
class QueryResult:
    """Rows for one range plus the exact count of all matching rows."""

    rows: list[StoredMessage]
    total_count: int


@dataclass(frozen=True)
class CategoryCount:
    category: Category
    total_messages: int
    unread_messages: int


_COLUMNS = """
    user_id,
    provider_message_id,
    provider,
    subject,
    snippet,
    sender,
    sender_email,
    received_at_ms,
    received_at_iso,
    thread_id,
    has_attachments,
    is_read,
    is_archived,
    provider_metadata_json,
    category,
    priority,
    tags_json,
    reasoning,
    confidence
"""


def _utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


class MessageRepository:
    """Repository for persisted, categorized messages."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def upsert_many(self, messages: list[StoredMessage]) -> None:
        """Insert or replace messages keyed by ``(user_id, provider_id)``.

        The last write wins for every field. The whole batch commits in one
        transaction.
        """

        if not messages:
            return

        now_iso = datetime.now(timezone.utc).isoformat()

        with self._db.connect() as conn:
            conn.executemany(
                f"""
                INSERT INTO messages ({_COLUMNS}, updated_at_iso)
                VALUES (
                    :user_id,
                    :provider_message_id,
                    :provider,
                    :subject,
                    :snippet,
                    :sender,
                    :sender_email,
                    :received_at_ms,
                    :received_at_iso,
                    :thread_id,
                    :has_attachments,
                    :is_read,
                    :is_archived,
                    :provider_metadata_json,
                    :category,
                    :priority,
                    :tags_json,
                    :reasoning,
                    :confidence,
                    :updated_at_iso
                )
                ON CONFLICT(user_id, provider_message_id) DO UPDATE SET
                    provider=excluded.provider,
                    subject=excluded.subject,
                    snippet=excluded.snippet,
                    sender=excluded.sender,
                    sender_email=excluded.sender_email,
                    received_at_ms=excluded.received_at_ms,
                    received_at_iso=excluded.received_at_iso,
                    thread_id=excluded.thread_id,
                    has_attachments=excluded.has_attachments,
                    is_read=excluded.is_read,
                    is_archived=excluded.is_archived,
                    provider_metadata_json=excluded.provider_metadata_json,
                    category=excluded.category,
                    priority=excluded.priority,
                    tags_json=excluded.tags_json,
                    reasoning=excluded.reasoning,
                    confidence=excluded.confidence,
                    updated_at_iso=excluded.updated_at_iso
                """,
                [self._to_params(m, now_iso) for m in messages],
            )
            conn.commit()

        logger.debug("messages_upserted", count=len(messages))

    def query(
        self,
        user_id: str,
        message_filter: MessageFilter | None = None,
        *,
        offset: int = 0,
        limit: int = 25,
    ) -> QueryResult:
        """Return ``[offset, offset + limit)`` newest first, plus the exact count."""

        if offset < 0 or limit < 0:
            raise ValueError("offset and limit must be non-negative")

        where, params = self._where(user_id, message_filter or MessageFilter())

        with self._db.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM messages
                WHERE {where}
                ORDER BY received_at_ms DESC, provider_message_id DESC
                LIMIT ? OFFSET ?;
                """,
                (*params, limit, offset),
            ).fetchall()

            (total,) = conn.execute(
                f"SELECT COUNT(*) FROM messages WHERE {where};",
                params,
            ).fetchone()

        return QueryResult(rows=[self._row_to_message(r) for r in rows], total_count=int(total or 0))

    def count(self, user_id: str, message_filter: MessageFilter | None = None) -> int:
        where, params = self._where(user_id, message_filter or MessageFilter())
        with self._db.connect() as conn:
            (total,) = conn.execute(
                f"SELECT COUNT(*) FROM messages WHERE {where};", params
            ).fetchone()
        return int(total or 0)

    def list_recent(
        self,
        user_id: str,
        *,
        limit: int | None = None,
        is_read: bool | None = None,
        is_archived: bool | None = None,
    ) -> list[StoredMessage]:
        """List stored messages newest first, optionally by read/archive flags."""

        where, params = self._where(
            user_id, MessageFilter(is_read=is_read, is_archived=is_archived)
        )
        sql = (
            f"SELECT {_COLUMNS} FROM messages WHERE {where} "
            "ORDER BY received_at_ms DESC, provider_message_id DESC"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)

        with self._db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_message(r) for r in rows]

    def category_counts(self, user_id: str) -> list[CategoryCount]:
        """Count stored messages per category for one user."""

        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT category, COUNT(*) AS total_messages, SUM(1 - is_read) AS unread_messages
                FROM messages
                WHERE user_id = ?
                GROUP BY category
                ORDER BY total_messages DESC;
                """,
                (user_id,),
            ).fetchall()

        return [
            CategoryCount(
                category=Category.coerce(row[0]),
                total_messages=int(row[1] or 0),
                unread_messages=int(row[2] or 0),
            )
            for row in rows
        ]

    def _where(self, user_id: str, f: MessageFilter) -> tuple[str, tuple[object, ...]]:
        clauses = ["user_id = ?"]
        params: list[object] = [user_id]
        if f.category is not None:
            clauses.append("category = ?")
            params.append(f.category.value)
        if f.provider is not None:
            clauses.append("provider = ?")
            params.append(f.provider.value)
        if f.is_read is not None:
            clauses.append("is_read = ?")
            params.append(1 if f.is_read else 0)
        if f.is_archived is not None:
            clauses.append("is_archived = ?")
            params.append(1 if f.is_archived else 0)
        return " AND ".join(clauses), tuple(params)

    def _to_params(self, m: StoredMessage, now_iso: str) -> dict[str, object]:
        received = _utc(m.received_at)
        return {
            "user_id": m.user_id,
            "provider_message_id": m.provider_id,
            "provider": m.provider.value,
            "subject": m.subject,
            "snippet": m.snippet,
            "sender": m.sender,
            "sender_email": m.sender_email,
            "received_at_ms": int(received.timestamp() * 1000),
            "received_at_iso": received.isoformat(),
            "thread_id": m.thread_id,
            "has_attachments": 1 if m.has_attachments else 0,
            "is_read": 1 if m.is_read else 0,
            "is_archived": 1 if m.is_archived else 0,
            "provider_metadata_json": json.dumps(m.provider_metadata, default=str),
            "category": m.category.value,
            "priority": m.priority,
            "tags_json": json.dumps(m.tags),
            "reasoning": m.reasoning,
            "confidence": m.confidence,
            "updated_at_iso": now_iso,
        }

    def _row_to_message(self, row: sqlite3.Row) -> StoredMessage:
        return StoredMessage(
            provider_id=row["provider_message_id"],
            user_id=row["user_id"],
            provider=ProviderKind(row["provider"]),
            subject=row["subject"],
            snippet=row["snippet"],
            sender=row["sender"],
            sender_email=row["sender_email"],
            received_at=datetime.fromisoformat(row["received_at_iso"]),
            thread_id=row["thread_id"],
            has_attachments=bool(row["has_attachments"]),
            is_read=bool(row["is_read"]),
            is_archived=bool(row["is_archived"]),
            provider_metadata=json.loads(row["provider_metadata_json"]),
            category=Category.coerce(row["category"]),
            priority=int(row["priority"]),
            tags=json.loads(row["tags_json"]),
            reasoning=row["reasoning"],
            confidence=row["confidence"],
        )
