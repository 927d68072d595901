"""SQLite database holding stored messages and per-provider sync state.

Every operation opens its own short-lived connection, so repositories can be
used from worker threads (``asyncio.to_thread``) without sharing connections.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from email_aggregator.exceptions import StoreError

logger = structlog.get_logger()


_SCHEMA_VERSION = 1


class SQLiteDatabase:
    """Connection factory and schema owner."""

    def __init__(self, db_path: Path) -> None:
        """Create a database handle.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = Path(db_path)

    @property
    def path(self) -> Path:
        return self._db_path

    def initialize(self) -> None:
        """Create or upgrade the schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("store_schema_created", version=_SCHEMA_VERSION, path=str(self._db_path))
                return

            if current_version != _SCHEMA_VERSION:
                raise StoreError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; ``sqlite3.Error`` surfaces as ``StoreError``."""

        conn: sqlite3.Connection | None = None
        try:
            conn = sqlite3.connect(self._db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as exc:
            if conn is not None:
                conn.rollback()
            logger.error("store_operation_failed", error=str(exc))
            raise StoreError(str(exc)) from exc
        finally:
            if conn is not None:
                conn.close()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS messages (
                rowid INTEGER PRIMARY KEY,
                user_id TEXT NOT NULL,
                provider_message_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                subject TEXT NOT NULL,
                snippet TEXT NOT NULL,
                sender TEXT NOT NULL,
                sender_email TEXT NOT NULL,
                received_at_ms INTEGER NOT NULL,
                received_at_iso TEXT NOT NULL,
                thread_id TEXT,
                has_attachments INTEGER NOT NULL,
                is_read INTEGER NOT NULL,
                is_archived INTEGER NOT NULL,
                provider_metadata_json TEXT NOT NULL,
                category TEXT NOT NULL,
                priority INTEGER NOT NULL,
                tags_json TEXT NOT NULL,
                reasoning TEXT NOT NULL,
                confidence REAL,
                updated_at_iso TEXT NOT NULL,
                UNIQUE (user_id, provider_message_id)
            );

            CREATE INDEX IF NOT EXISTS idx_messages_user_received
                ON messages(user_id, received_at_ms DESC);

            CREATE INDEX IF NOT EXISTS idx_messages_user_category_received
                ON messages(user_id, category, received_at_ms DESC);

            CREATE TABLE IF NOT EXISTS sync_state (
                user_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                continuation_token TEXT,
                last_sync_iso TEXT NOT NULL,
                PRIMARY KEY (user_id, provider)
            );
            """
        )
