"""Gmail provider adapter (forward-cursor model).

This module lists Gmail message ids and fetches every message's details.

Notes:
    The Google API client is synchronous. Calls are wrapped using
    `asyncio.to_thread` so the rest of the codebase can remain async-friendly.
    Each call gets its own authorized HTTP object because httplib2 connections
    are not safe to share between threads.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import structlog

from email_aggregator.config import Settings
from email_aggregator.exceptions import AuthError, FetchError, ProviderError, TransientError
from email_aggregator.gmail.parsing import message_to_message
from email_aggregator.models import Message, ProviderKind
from email_aggregator.providers import (
    CursorModel,
    FetchResult,
    sort_newest_first,
    validate_max_results,
)

logger = structlog.get_logger()

T = TypeVar("T")

_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


def _http_error_reasons(exc: Any) -> set[str]:
    details = getattr(exc, "error_details", None)
    if not isinstance(details, list):
        return set()
    return {str(d.get("reason")) for d in details if isinstance(d, dict) and d.get("reason")}


def classify_google_error(exc: BaseException, operation: str) -> ProviderError:
    """Translate a Google client failure into the provider error taxonomy."""

    from google.auth.exceptions import RefreshError
    from googleapiclient.errors import HttpError

    if isinstance(exc, HttpError):
        status = int(exc.resp.status)
        detail = f"Gmail {operation} failed with HTTP {status}"
        if status == 403 and _http_error_reasons(exc) & _RATE_LIMIT_REASONS:
            return TransientError(f"{detail} (rate limited)")
        if status in (401, 403):
            return AuthError(f"{detail}. Please sign in again.")
        if status == 429 or status >= 500:
            return TransientError(detail)
        return FetchError(detail)

    if isinstance(exc, RefreshError):
        return AuthError(f"Gmail credential rejected during {operation}: {exc}")

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return TransientError(f"Gmail {operation} timed out")

    if isinstance(exc, OSError):
        return TransientError(f"Gmail {operation} connection failed: {exc}")

    return FetchError(f"Gmail {operation} failed: {exc}")


class GmailAdapter:
    """Adapter for the Gmail API.

    Gmail orders and batches messages server-side. The adapter lists ids
    (resuming from ``cursor`` when one is given), fetches the details for all
    ids concurrently, then re-sorts by receipt time and truncates, because
    list ordering across repeated calls is not guaranteed stable.
    """

    kind = ProviderKind.GOOGLE
    cursor_model = CursorModel.FORWARD

    def __init__(
        self,
        *,
        user_id: str,
        access_token: str,
        settings: Settings | None = None,
        service: Any | None = None,
    ) -> None:
        """Initialize the Gmail adapter.

        Args:
            user_id: User the fetched messages belong to.
            access_token: OAuth bearer token issued for the user.
            settings: Application settings. If None, uses default settings.
            service: Pre-built Gmail API service (tests inject a fake here).
        """
        from email_aggregator.config import get_settings

        self.settings = settings or get_settings()
        self.user_id = user_id
        self._access_token = access_token
        self._service: Any | None = service
        self._credentials: Any | None = None

    async def fetch(self, cursor: str | None, max_results: int) -> FetchResult:
        validate_max_results(max_results)

        logger.info(
            "gmail_fetch_started",
            user_id=self.user_id,
            has_cursor=cursor is not None,
            max_results=max_results,
        )

        message_ids, next_cursor = await self._call(
            self._list_message_ids_sync, cursor, max_results, operation="list"
        )
        if not message_ids:
            logger.info("gmail_fetch_empty", user_id=self.user_id)
            return FetchResult(messages=[], next_cursor=None)

        semaphore = asyncio.Semaphore(self.settings.gmail_detail_concurrency)

        async def fetch_one(message_id: str) -> Message:
            async with semaphore:
                raw = await self._call(self._get_message_sync, message_id, operation="get")
            return message_to_message(raw, user_id=self.user_id)

        # Latency tracks the slowest detail call, not the sum.
        messages = await asyncio.gather(*(fetch_one(mid) for mid in message_ids))
        ordered = sort_newest_first(list(messages))[:max_results]

        logger.info(
            "gmail_fetch_completed",
            user_id=self.user_id,
            message_count=len(ordered),
            has_next=next_cursor is not None,
        )
        return FetchResult(messages=ordered, next_cursor=next_cursor)

    async def _call(self, func: Callable[..., T], *args: Any, operation: str) -> T:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args),
                timeout=self.settings.provider_timeout,
            )
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            error = classify_google_error(exc, operation)
            logger.warning(
                "gmail_call_failed",
                operation=operation,
                error_type=type(error).__name__,
                error=str(exc),
            )
            raise error from exc

    def _get_service(self) -> Any:
        if self._service is None:
            # Imported lazily to keep import-time cost low and tests fast.
            from google.oauth2.credentials import Credentials
            from googleapiclient.discovery import build

            # Token refresh belongs to the token manager; a bare token is used as-is.
            self._credentials = Credentials(token=self._access_token)
            # cache_discovery=False prevents writing discovery docs to disk.
            self._service = build(
                "gmail", "v1", credentials=self._credentials, cache_discovery=False
            )
        return self._service

    def _execute_kwargs(self) -> dict[str, Any]:
        if self._credentials is None:
            return {}

        import google_auth_httplib2
        import httplib2

        http = google_auth_httplib2.AuthorizedHttp(
            self._credentials,
            http=httplib2.Http(timeout=self.settings.provider_timeout),
        )
        return {"http": http}

    def _list_message_ids_sync(
        self, cursor: str | None, max_results: int
    ) -> tuple[list[str], str | None]:
        service = self._get_service()
        request = (
            service.users()
            .messages()
            .list(
                userId=self.settings.gmail_user_id,
                maxResults=max_results,
                labelIds=list(self.settings.gmail_label_ids),
                pageToken=cursor,
            )
        )
        response = request.execute(**self._execute_kwargs())
        if not isinstance(response, dict):
            raise FetchError("Invalid response format from Gmail API")

        ids = [
            m["id"]
            for m in response.get("messages") or []
            if isinstance(m, dict) and isinstance(m.get("id"), str) and m["id"]
        ]
        next_token = response.get("nextPageToken")
        return ids, next_token if isinstance(next_token, str) and next_token else None

    def _get_message_sync(self, message_id: str) -> dict[str, Any]:
        service = self._get_service()
        request = (
            service.users()
            .messages()
            .get(userId=self.settings.gmail_user_id, id=message_id, format="full")
        )
        response = request.execute(**self._execute_kwargs())
        if not isinstance(response, dict):
            raise FetchError(f"Invalid Gmail message payload for {message_id}")
        return response
