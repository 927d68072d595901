"""Outlook provider adapter (offset/cursor model) over Microsoft Graph REST.

Graph needs an explicit continuation for every page after the first. The
adapter accepts either the ``@odata.nextLink`` URL returned by a previous call
or a ``skip:<n>`` marker computed from the requested page. Ordering is
requested from Graph (``receivedDateTime desc``).
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

import httpx
import structlog

from email_aggregator.config import Settings
from email_aggregator.exceptions import AuthError, FetchError, TransientError
from email_aggregator.models import Message, ProviderKind
from email_aggregator.outlook.parsing import graph_message_to_message
from email_aggregator.providers import (
    CursorModel,
    FetchResult,
    parse_offset_cursor,
    sort_newest_first,
    validate_max_results,
)

logger = structlog.get_logger()

SELECT_FIELDS = (
    "id,conversationId,parentFolderId,subject,bodyPreview,receivedDateTime,"
    "from,importance,isRead,hasAttachments,categories"
)


class OutlookAdapter:
    """Adapter for the Microsoft Graph ``/me/messages`` endpoint."""

    kind = ProviderKind.AZURE_AD
    cursor_model = CursorModel.OFFSET

    def __init__(
        self,
        *,
        user_id: str,
        access_token: str,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Outlook adapter.

        Args:
            user_id: User the fetched messages belong to.
            access_token: OAuth bearer token issued for the user.
            settings: Application settings. If None, uses default settings.
            http_client: Shared client. If None, one is created per fetch.
        """
        from email_aggregator.config import get_settings

        self.settings = settings or get_settings()
        self.user_id = user_id
        self._access_token = access_token
        self._http_client = http_client
        self._base_url = self.settings.outlook_graph_base_url.rstrip("/")

    async def fetch(self, cursor: str | None, max_results: int) -> FetchResult:
        validate_max_results(max_results)
        url, params = self._build_request(cursor, max_results)

        logger.info(
            "outlook_fetch_started",
            user_id=self.user_id,
            has_cursor=cursor is not None,
            max_results=max_results,
        )

        data = await self._get_json(url, params)

        raw_messages = data.get("value")
        if not isinstance(raw_messages, list):
            raise FetchError("Invalid response format from Outlook API: missing 'value'")

        messages: list[Message] = [
            graph_message_to_message(m, user_id=self.user_id)
            for m in raw_messages
            if isinstance(m, dict)
        ]
        # Graph honours $orderby; the sort is a no-op unless it did not.
        ordered = sort_newest_first(messages)[:max_results]

        next_link = data.get("@odata.nextLink")
        next_cursor = next_link if isinstance(next_link, str) and next_link else None

        logger.info(
            "outlook_fetch_completed",
            user_id=self.user_id,
            message_count=len(ordered),
            has_next=next_cursor is not None,
        )
        return FetchResult(messages=ordered, next_cursor=next_cursor)

    def _build_request(
        self, cursor: str | None, max_results: int
    ) -> tuple[str, dict[str, Any] | None]:
        base_params: dict[str, Any] = {
            "$top": max_results,
            "$orderby": "receivedDateTime desc",
            "$select": SELECT_FIELDS,
        }
        url = f"{self._base_url}/me/messages"

        if cursor is None:
            return url, base_params

        skip = parse_offset_cursor(cursor)
        if skip is not None:
            return url, {**base_params, "$skip": skip}

        if cursor.startswith(("https://", "http://")):
            # The bearer token must only ever go to the configured Graph host.
            if urlsplit(cursor).netloc != urlsplit(self._base_url).netloc:
                raise FetchError("Outlook continuation link points at an unexpected host")
            return cursor, None

        raise FetchError(f"Unrecognised Outlook continuation token: {cursor[:40]!r}")

    async def _get_json(self, url: str, params: dict[str, Any] | None) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.get(
                    url, params=params, headers=headers, timeout=self.settings.provider_timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.settings.provider_timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("outlook_call_timed_out", user_id=self.user_id)
            raise TransientError("Outlook request timed out") from exc
        except httpx.TransportError as exc:
            logger.warning("outlook_call_transport_failed", user_id=self.user_id, error=str(exc))
            raise TransientError(f"Outlook connection failed: {exc}") from exc

        status = response.status_code
        if status in (401, 403):
            logger.warning("outlook_auth_rejected", user_id=self.user_id, status=status)
            raise AuthError(
                f"Outlook authentication failed (HTTP {status}). Please sign in again."
            )
        if status == 429 or status >= 500:
            logger.warning("outlook_transient_failure", user_id=self.user_id, status=status)
            raise TransientError(f"Outlook API unavailable (HTTP {status})")
        if status >= 400:
            raise FetchError(f"Failed to fetch from Outlook API: HTTP {status} {response.reason_phrase}")

        try:
            data = response.json()
        except ValueError as exc:
            raise FetchError("Invalid JSON response from Outlook API") from exc

        if not isinstance(data, dict):
            raise FetchError("Invalid response format from Outlook API")
        return data
