"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from email_aggregator.categorization.prompt import ClassificationFeatures
from email_aggregator.config import Settings
from email_aggregator.models import Message, ProviderKind
from email_aggregator.providers import CursorModel, FetchResult
from email_aggregator.store import MessageRepository, SQLiteDatabase, SyncStateRepository

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_settings(tmp_path) -> Settings:
    """Provide mock settings for testing."""
    return Settings(
        ollama_host="http://test:11434",
        ollama_model="test-model",
        provider_retry_backoff=0.0,
        categorization_chunk_size=10,
        database_path=tmp_path / "aggregator.sqlite3",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def database(mock_settings: Settings) -> SQLiteDatabase:
    db = SQLiteDatabase(mock_settings.database_path)
    db.initialize()
    return db


@pytest.fixture
def message_repo(database: SQLiteDatabase) -> MessageRepository:
    return MessageRepository(database)


@pytest.fixture
def sync_state_repo(database: SQLiteDatabase) -> SyncStateRepository:
    return SyncStateRepository(database)


def make_message(
    index: int,
    *,
    user_id: str = "u1",
    provider: ProviderKind = ProviderKind.GOOGLE,
    prefix: str = "m",
    base: datetime = BASE_TIME,
    **overrides: Any,
) -> Message:
    """Build a message received ``index`` minutes before ``base``."""
    fields: dict[str, Any] = {
        "provider_id": f"{prefix}{index:03d}",
        "user_id": user_id,
        "provider": provider,
        "subject": f"Subject {index}",
        "snippet": f"Snippet {index}",
        "sender": "Alice",
        "sender_email": "alice@example.com",
        "received_at": base - timedelta(minutes=index),
    }
    fields.update(overrides)
    return Message(**fields)


@pytest.fixture
def message_factory() -> Callable[..., Message]:
    return make_message


class FakeOracle:
    """In-memory classification oracle.

    ``responses`` maps a subject to the raw response (or an exception to
    raise). Unlisted subjects get ``default``.
    """

    def __init__(
        self,
        responses: dict[str, Any] | None = None,
        default: Any = None,
    ) -> None:
        self.responses = responses or {}
        self.default = default if default is not None else {"category": "Work", "priority": 4}
        self.calls: list[ClassificationFeatures] = []

    async def classify_one(self, features: ClassificationFeatures) -> Any:
        self.calls.append(features)
        response = self.responses.get(features.subject, self.default)
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def fake_oracle() -> FakeOracle:
    return FakeOracle()


class FakeAdapter:
    """Provider adapter returning scripted outcomes, one per ``fetch`` call.

    An outcome is a ``FetchResult`` or an exception to raise. The last outcome
    repeats once the script is exhausted.
    """

    def __init__(
        self,
        outcomes: list[FetchResult | BaseException],
        *,
        kind: ProviderKind = ProviderKind.GOOGLE,
        cursor_model: CursorModel = CursorModel.FORWARD,
    ) -> None:
        self.kind = kind
        self.cursor_model = cursor_model
        self._outcomes = list(outcomes)
        self.calls: list[tuple[str | None, int]] = []

    async def fetch(self, cursor: str | None, max_results: int) -> FetchResult:
        self.calls.append((cursor, max_results))
        outcome = self._outcomes[min(len(self.calls), len(self._outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class AdapterFactoryRecorder:
    """Stands in for ``build_adapter`` and records how it was called."""

    def __init__(self, adapter: FakeAdapter) -> None:
        self.adapter = adapter
        self.calls: list[dict[str, Any]] = []

    def __call__(self, kind: ProviderKind, **kwargs: Any) -> FakeAdapter:
        self.calls.append({"kind": kind, **kwargs})
        return self.adapter


class FakeRequest:
    def __init__(self, result: Any) -> None:
        self._result = result

    def execute(self, **kwargs: Any) -> Any:
        if isinstance(self._result, BaseException):
            raise self._result
        return self._result


class FakeGmailService:
    """In-memory stand-in for the ``users().messages()`` call chain."""

    def __init__(
        self,
        messages: list[dict[str, Any]],
        *,
        next_page_token: str | None = None,
        list_error: BaseException | None = None,
        get_errors: dict[str, BaseException] | None = None,
    ) -> None:
        self._messages = {m["id"]: m for m in messages}
        self._order = [m["id"] for m in messages]
        self._next_page_token = next_page_token
        self._list_error = list_error
        self._get_errors = get_errors or {}
        self.list_calls: list[dict[str, Any]] = []
        self.get_calls: list[str] = []

    def users(self) -> "FakeGmailService":
        return self

    def messages(self) -> "FakeGmailService":
        return self

    def list(self, **kwargs: Any) -> FakeRequest:
        self.list_calls.append(kwargs)
        if self._list_error is not None:
            return FakeRequest(self._list_error)
        ids = self._order[: kwargs.get("maxResults", len(self._order))]
        response: dict[str, Any] = {"messages": [{"id": i, "threadId": f"t-{i}"} for i in ids]}
        if self._next_page_token:
            response["nextPageToken"] = self._next_page_token
        return FakeRequest(response)

    def get(self, **kwargs: Any) -> FakeRequest:
        message_id = kwargs["id"]
        self.get_calls.append(message_id)
        if message_id in self._get_errors:
            return FakeRequest(self._get_errors[message_id])
        return FakeRequest(self._messages[message_id])


def gmail_message(
    message_id: str,
    *,
    internal_date_ms: int,
    subject: str = "Hello",
    from_raw: str = "Alice Example <alice@example.com>",
    label_ids: list[str] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a Gmail API ``format=full`` message payload."""
    message: dict[str, Any] = {
        "id": message_id,
        "threadId": f"t-{message_id}",
        "historyId": "9001",
        "internalDate": str(internal_date_ms),
        "labelIds": label_ids if label_ids is not None else ["INBOX", "UNREAD"],
        "snippet": f"Snippet for {message_id}",
        "payload": {
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": from_raw},
                {"name": "To", "value": "me@example.com"},
                {"name": "X-Mailer", "value": "Dropped"},
            ],
            "parts": [],
        },
    }
    message.update(extra)
    return message


@pytest.fixture
def sample_email_data() -> dict:
    """Provide sample email data structure."""
    return gmail_message(
        "msg123456",
        internal_date_ms=1_700_000_000_000,
        subject="Weekly Newsletter - Python Tips",
        from_raw="Python Weekly <newsletter@python.org>",
    )


@pytest.fixture
def graph_message_data() -> dict:
    """Provide a Microsoft Graph message resource."""
    return {
        "id": "AAMkAGI2",
        "conversationId": "conv-1",
        "parentFolderId": "inbox-folder",
        "subject": "Quarterly report",
        "bodyPreview": "Please find attached the report.",
        "receivedDateTime": "2025-03-01T10:15:00Z",
        "from": {"emailAddress": {"name": "Bob Boss", "address": "bob@corp.example"}},
        "importance": "high",
        "isRead": False,
        "hasAttachments": True,
        "categories": ["Blue category"],
    }
