"""Sync orchestration: serve a page from the store or pull it from a provider.

Each ``fetch_page`` request moves through these phases::

    CHECK_CACHE -> HIT -> RESPOND
    CHECK_CACHE -> MISS -> FETCH -> ENRICH -> PERSIST -> RE_QUERY -> RESPOND

A page is served from the store only when the range query returns exactly
``page_size`` rows. A partially filled page always goes to the provider.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

import structlog

from email_aggregator.categorization import Categorizer
from email_aggregator.config import Settings
from email_aggregator.credentials import TokenProvider
from email_aggregator.exceptions import (
    AuthError,
    ConfigurationError,
    InvalidRequestError,
    TransientError,
)
from email_aggregator.folders import category_for_folder
from email_aggregator.models import (
    FetchPageResponse,
    Message,
    Pagination,
    ProviderKind,
    StoredMessage,
)
from email_aggregator.providers import (
    CursorModel,
    FetchResult,
    ProviderAdapter,
    build_adapter,
    offset_cursor,
)
from email_aggregator.store import MessageFilter, MessageRepository, QueryResult, SyncStateRepository
from email_aggregator.utils import retry_async

if TYPE_CHECKING:
    import httpx

logger = structlog.get_logger()

AdapterFactory = Callable[..., ProviderAdapter]


class SyncPhase(str, Enum):
    CHECK_CACHE = "check_cache"
    HIT = "hit"
    MISS = "miss"
    FETCH = "fetch"
    ENRICH = "enrich"
    PERSIST = "persist"
    RE_QUERY = "re_query"
    RESPOND = "respond"


class SyncOrchestrator:
    """Drive one page request through the cache/fetch/enrich/persist pipeline.

    All collaborators are injected; the orchestrator owns no connections and
    holds no per-request state between calls.
    """

    def __init__(
        self,
        *,
        messages: MessageRepository,
        sync_state: SyncStateRepository,
        categorizer: Categorizer,
        settings: Optional[Settings] = None,
        token_provider: Optional[TokenProvider] = None,
        adapter_factory: AdapterFactory = build_adapter,
        http_client: "Optional[httpx.AsyncClient]" = None,
    ) -> None:
        """Create an orchestrator.

        Args:
            messages: Message store.
            sync_state: Continuation state store. Only this class writes to it.
            categorizer: Categorizer used for newly fetched messages.
            settings: Application settings. If None, uses default settings.
            token_provider: Source of bearer tokens when a request does not
                carry one.
            adapter_factory: Builds the provider adapter for a request.
            http_client: Shared HTTP client passed to REST adapters.
        """
        from email_aggregator.config import get_settings

        self.settings = settings or get_settings()
        if self.settings.default_page_size > self.settings.max_page_size:
            raise ConfigurationError(
                f"default_page_size ({self.settings.default_page_size}) exceeds "
                f"max_page_size ({self.settings.max_page_size})"
            )
        self._messages = messages
        self._sync_state = sync_state
        self._categorizer = categorizer
        self._token_provider = token_provider
        self._adapter_factory = adapter_factory
        self._http_client = http_client

    async def fetch_page(
        self,
        user_id: str,
        folder: str = "all",
        page: int = 1,
        page_size: Optional[int] = None,
        *,
        provider: ProviderKind = ProviderKind.GOOGLE,
        access_token: Optional[str] = None,
    ) -> FetchPageResponse:
        """Return one page of categorized messages, newest first.

        Args:
            user_id: Owner of the mailbox.
            folder: Folder id (``all``, ``work``, ``personal``, ``promotional``,
                ``newsletters`` or ``updates``).
            page: 1-based page number.
            page_size: Messages per page. Defaults to ``default_page_size``.
            provider: Provider to pull from when the store cannot serve the page.
            access_token: Bearer token for the provider. If None, the injected
                token provider is asked.

        Raises:
            InvalidRequestError: Unknown folder or out-of-range page/page size.
            AuthError: The provider rejected the credential.
            TransientError: The provider stayed unavailable after retries.
            FetchError: Any other provider failure.
            StoreError: A store read or write failed.
        """

        category = category_for_folder(folder)
        page_size = self._validate_page(page, page_size)
        message_filter = MessageFilter(category=category)
        offset = (page - 1) * page_size

        log = logger.bind(
            user_id=user_id, provider=provider.value, folder=folder, page=page, page_size=page_size
        )

        log.debug("fetch_page_started", phase=SyncPhase.CHECK_CACHE.value)
        cached = await self._query(user_id, message_filter, offset, page_size)
        if len(cached.rows) == page_size:
            log.info("fetch_page_served", phase=SyncPhase.HIT.value, total_messages=cached.total_count)
            return self._respond(cached, page, page_size)

        log.info(
            "fetch_page_cache_miss",
            phase=SyncPhase.MISS.value,
            cached_rows=len(cached.rows),
            total_messages=cached.total_count,
        )

        result = await self._fetch(user_id, provider, page, page_size, access_token)
        if not result.messages:
            log.info("fetch_page_provider_empty", phase=SyncPhase.RESPOND.value)
            return FetchPageResponse(
                messages=[],
                pagination=Pagination(
                    page=page,
                    page_size=page_size,
                    total_messages=cached.total_count,
                    has_more=False,
                ),
            )

        enriched = await self._enrich(result.messages)
        await self._persist(user_id, provider, enriched, result.next_cursor)

        fresh = await self._query(user_id, message_filter, offset, page_size)
        log.info(
            "fetch_page_served",
            phase=SyncPhase.RE_QUERY.value,
            fetched=len(result.messages),
            returned=len(fresh.rows),
            total_messages=fresh.total_count,
        )
        return self._respond(fresh, page, page_size)

    def _validate_page(self, page: int, page_size: Optional[int]) -> int:
        if page_size is None:
            page_size = self.settings.default_page_size
        if page < 1:
            raise InvalidRequestError(f"page must be >= 1, got {page}")
        if not 1 <= page_size <= self.settings.max_page_size:
            raise InvalidRequestError(
                f"pageSize must be in [1, {self.settings.max_page_size}], got {page_size}"
            )
        return page_size

    async def _query(
        self, user_id: str, message_filter: MessageFilter, offset: int, limit: int
    ) -> QueryResult:
        return await asyncio.to_thread(
            self._messages.query, user_id, message_filter, offset=offset, limit=limit
        )

    async def _fetch(
        self,
        user_id: str,
        provider: ProviderKind,
        page: int,
        page_size: int,
        access_token: Optional[str],
    ) -> FetchResult:
        token = access_token or await self._resolve_token(user_id, provider)
        adapter = self._adapter_factory(
            provider,
            user_id=user_id,
            access_token=token,
            settings=self.settings,
            http_client=self._http_client,
        )
        cursor = await self._resolve_cursor(adapter, user_id, provider, page, page_size)

        logger.debug(
            "provider_fetch_started",
            phase=SyncPhase.FETCH.value,
            user_id=user_id,
            provider=provider.value,
            cursor_model=adapter.cursor_model.value,
            has_cursor=cursor is not None,
        )

        return await retry_async(
            lambda: adapter.fetch(cursor, page_size),
            retry_on=(TransientError,),
            max_retries=self.settings.provider_max_retries,
            delay=self.settings.provider_retry_backoff,
            operation=f"{provider.value}_fetch",
        )

    async def _resolve_token(self, user_id: str, provider: ProviderKind) -> str:
        if self._token_provider is None:
            raise AuthError(f"No {provider.value} credential supplied for user {user_id}")
        return await self._token_provider.get_access_token(user_id, provider)

    async def _resolve_cursor(
        self,
        adapter: ProviderAdapter,
        user_id: str,
        provider: ProviderKind,
        page: int,
        page_size: int,
    ) -> Optional[str]:
        if adapter.cursor_model is CursorModel.OFFSET:
            return offset_cursor((page - 1) * page_size)

        # Forward cursor: the first page is always the provider's newest batch.
        if page == 1:
            return None
        state = await asyncio.to_thread(self._sync_state.get, user_id, provider)
        return state.continuation_token if state is not None else None

    async def _enrich(self, messages: Sequence[Message]) -> list[StoredMessage]:
        chunk_size = self.settings.categorization_chunk_size
        enriched: list[StoredMessage] = []
        for start in range(0, len(messages), chunk_size):
            chunk = messages[start : start + chunk_size]
            results = await self._categorizer.classify(chunk)
            enriched.extend(
                StoredMessage.from_parts(message, result)
                for message, result in zip(chunk, results, strict=True)
            )
        logger.debug(
            "categorization_applied", phase=SyncPhase.ENRICH.value, message_count=len(enriched)
        )
        return enriched

    async def _persist(
        self,
        user_id: str,
        provider: ProviderKind,
        enriched: list[StoredMessage],
        next_cursor: Optional[str],
    ) -> None:
        # Both writes finish before the re-query runs.
        await asyncio.to_thread(self._messages.upsert_many, enriched)
        if next_cursor is not None:
            await asyncio.to_thread(
                self._sync_state.upsert,
                user_id,
                provider,
                next_cursor,
                datetime.now(timezone.utc),
            )
        logger.info(
            "fetch_page_persisted",
            phase=SyncPhase.PERSIST.value,
            user_id=user_id,
            provider=provider.value,
            message_count=len(enriched),
            sync_state_updated=next_cursor is not None,
        )

    def _respond(self, result: QueryResult, page: int, page_size: int) -> FetchPageResponse:
        return FetchPageResponse(
            messages=result.rows,
            pagination=Pagination(
                page=page,
                page_size=page_size,
                total_messages=result.total_count,
                has_more=result.total_count > page * page_size,
            ),
        )

