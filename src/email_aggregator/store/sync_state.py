"""Per (user, provider) continuation state."""

from __future__ import annotations

from datetime import datetime, timezone

from email_aggregator.models import ProviderKind, SyncState
from email_aggregator.store.database import SQLiteDatabase


class SyncStateRepository:
    """One row per ``(user_id, provider)``; writes are last-write-wins upserts."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def get(self, user_id: str, provider: ProviderKind) -> SyncState | None:
        with self._db.connect() as conn:
            row = conn.execute(
                """
                SELECT user_id, provider, continuation_token, last_sync_iso
                FROM sync_state
                WHERE user_id = ? AND provider = ?;
                """,
                (user_id, provider.value),
            ).fetchone()

        if row is None:
            return None

        return SyncState(
            user_id=row["user_id"],
            provider=ProviderKind(row["provider"]),
            continuation_token=row["continuation_token"],
            last_sync_time=datetime.fromisoformat(row["last_sync_iso"]),
        )

    def upsert(
        self,
        user_id: str,
        provider: ProviderKind,
        token: str | None,
        timestamp: datetime,
    ) -> None:
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        with self._db.connect() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (user_id, provider, continuation_token, last_sync_iso)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (user_id, provider) DO UPDATE SET
                    continuation_token = excluded.continuation_token,
                    last_sync_iso = excluded.last_sync_iso;
                """,
                (user_id, provider.value, token, timestamp.isoformat()),
            )
            conn.commit()

    def list_for_user(self, user_id: str) -> list[SyncState]:
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT user_id, provider, continuation_token, last_sync_iso
                FROM sync_state
                WHERE user_id = ?
                ORDER BY provider;
                """,
                (user_id,),
            ).fetchall()

        return [
            SyncState(
                user_id=row["user_id"],
                provider=ProviderKind(row["provider"]),
                continuation_token=row["continuation_token"],
                last_sync_time=datetime.fromisoformat(row["last_sync_iso"]),
            )
            for row in rows
        ]
