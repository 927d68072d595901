"""Unit tests for the sync orchestrator."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import BASE_TIME, AdapterFactoryRecorder, FakeAdapter, FakeOracle, make_message
from email_aggregator.categorization import Categorizer
from email_aggregator.credentials import StaticTokenProvider
from email_aggregator.exceptions import (
    AuthError,
    ConfigurationError,
    FetchError,
    InvalidRequestError,
    OllamaInferenceError,
    TransientError,
)
from email_aggregator.models import (
    CategorizationResult,
    Category,
    ProviderKind,
    StoredMessage,
)
from email_aggregator.providers import CursorModel, FetchResult
from email_aggregator.sync import SyncOrchestrator

NEWER = BASE_TIME + timedelta(days=1)


def _seed(message_repo, count: int, *, category: Category = Category.WORK, prefix: str = "old") -> None:
    message_repo.upsert_many(
        [
            StoredMessage.from_parts(
                make_message(i, prefix=prefix),
                CategorizationResult(category=category, priority=3),
            )
            for i in range(count)
        ]
    )


def _fresh(count: int, *, prefix: str = "new") -> list:
    return [make_message(i, prefix=prefix, base=NEWER) for i in range(count)]


def _orchestrator(
    mock_settings,
    message_repo,
    sync_state_repo,
    adapter: FakeAdapter,
    oracle: FakeOracle | None = None,
    **kwargs,
) -> tuple[SyncOrchestrator, AdapterFactoryRecorder]:
    factory = AdapterFactoryRecorder(adapter)
    orchestrator = SyncOrchestrator(
        messages=message_repo,
        sync_state=sync_state_repo,
        categorizer=Categorizer(oracle or FakeOracle()),
        settings=mock_settings,
        adapter_factory=factory,
        **kwargs,
    )
    return orchestrator, factory


class TestCacheCheck:
    """Tests for the CHECK_CACHE -> HIT path."""

    @pytest.mark.asyncio
    async def test_full_page_is_served_without_provider_call(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        _seed(message_repo, 30)
        adapter = FakeAdapter([FetchResult(messages=_fresh(5), next_cursor=None)])
        orchestrator, factory = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        response = await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert len(response.messages) == 25
        assert response.messages[0].provider_id == "old000"
        assert response.pagination.total_messages == 30
        assert response.pagination.has_more is True
        assert factory.calls == []
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_exactly_full_store_has_no_more(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        _seed(message_repo, 25)
        adapter = FakeAdapter([FetchResult(messages=[], next_cursor=None)])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        response = await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert len(response.messages) == 25
        assert response.pagination.has_more is False
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_partial_page_always_goes_to_provider(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        _seed(message_repo, 24)
        adapter = FakeAdapter([FetchResult(messages=_fresh(1), next_cursor=None)])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        response = await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert len(adapter.calls) == 1
        assert len(response.messages) == 25
        assert response.messages[0].provider_id == "new000"

    @pytest.mark.asyncio
    async def test_folder_filters_the_cache_by_category(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        _seed(message_repo, 10, category=Category.WORK, prefix="work")
        _seed(message_repo, 10, category=Category.NEWSLETTER, prefix="news")
        adapter = FakeAdapter([FetchResult(messages=[], next_cursor=None)])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        response = await orchestrator.fetch_page("u1", "newsletters", 1, 10, access_token="tok")

        assert adapter.calls == []
        assert {m.category for m in response.messages} == {Category.NEWSLETTER}
        assert response.pagination.total_messages == 10


class TestFetchPipeline:
    """Tests for the MISS -> FETCH -> ENRICH -> PERSIST -> RE_QUERY path."""

    @pytest.mark.asyncio
    async def test_miss_fetches_categorizes_persists_and_requeries(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        _seed(message_repo, 10)
        fresh = _fresh(25)
        # Some items fall back, the rest classify normally.
        oracle = FakeOracle(
            responses={
                fresh[3].subject: "no json here",
                fresh[17].subject: OllamaInferenceError("model unloaded"),
            },
            default={"category": "Work", "priority": 5},
        )
        adapter = FakeAdapter([FetchResult(messages=fresh, next_cursor="gmail-next")])
        orchestrator, _ = _orchestrator(
            mock_settings, message_repo, sync_state_repo, adapter, oracle
        )

        response = await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert len(oracle.calls) == 25
        assert [m.provider_id for m in response.messages] == [m.provider_id for m in fresh]
        assert response.pagination.total_messages == 35
        assert response.pagination.has_more is True
        by_id = {m.provider_id: m for m in response.messages}
        assert by_id[fresh[3].provider_id].category is Category.UNCATEGORIZED
        assert by_id[fresh[17].provider_id].priority == 3
        assert by_id[fresh[0].provider_id].category is Category.WORK
        assert message_repo.count("u1") == 35

    @pytest.mark.asyncio
    async def test_categorization_runs_in_chunks(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        class CountingCategorizer(Categorizer):
            def __init__(self) -> None:
                super().__init__(FakeOracle())
                self.batch_sizes: list[int] = []

            async def classify(self, batch):
                self.batch_sizes.append(len(batch))
                return await super().classify(batch)

        categorizer = CountingCategorizer()
        adapter = FakeAdapter([FetchResult(messages=_fresh(25), next_cursor=None)])
        orchestrator = SyncOrchestrator(
            messages=message_repo,
            sync_state=sync_state_repo,
            categorizer=categorizer,
            settings=mock_settings,
            adapter_factory=AdapterFactoryRecorder(adapter),
        )

        await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert categorizer.batch_sizes == [10, 10, 5]

    @pytest.mark.asyncio
    async def test_sync_state_records_continuation_token(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        adapter = FakeAdapter([FetchResult(messages=_fresh(3), next_cursor="gmail-next")])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        before = datetime.now(timezone.utc)
        await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        state = sync_state_repo.get("u1", ProviderKind.GOOGLE)
        assert state is not None
        assert state.continuation_token == "gmail-next"
        assert state.last_sync_time >= before

    @pytest.mark.asyncio
    async def test_no_token_leaves_sync_state_untouched(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        adapter = FakeAdapter([FetchResult(messages=_fresh(3), next_cursor=None)])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert sync_state_repo.get("u1", ProviderKind.GOOGLE) is None

    @pytest.mark.asyncio
    async def test_empty_provider_batch_returns_empty_page(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        adapter = FakeAdapter([FetchResult(messages=[], next_cursor=None)])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        response = await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert response.messages == []
        assert response.pagination.has_more is False
        assert response.pagination.total_messages == 0


class TestCursorResolution:
    """Tests for how each cursor model is driven."""

    @pytest.mark.asyncio
    async def test_forward_cursor_first_page_uses_no_token(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        sync_state_repo.upsert("u1", ProviderKind.GOOGLE, "stale", datetime.now(timezone.utc))
        adapter = FakeAdapter([FetchResult(messages=_fresh(2), next_cursor=None)])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert adapter.calls == [(None, 25)]

    @pytest.mark.asyncio
    async def test_forward_cursor_later_page_uses_stored_token(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        sync_state_repo.upsert("u1", ProviderKind.GOOGLE, "page-2-token", datetime.now(timezone.utc))
        adapter = FakeAdapter([FetchResult(messages=_fresh(2), next_cursor=None)])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        await orchestrator.fetch_page("u1", "all", 2, 25, access_token="tok")

        assert adapter.calls == [("page-2-token", 25)]

    @pytest.mark.asyncio
    async def test_offset_cursor_is_derived_from_page(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        adapter = FakeAdapter(
            [FetchResult(messages=_fresh(2), next_cursor=None)],
            kind=ProviderKind.AZURE_AD,
            cursor_model=CursorModel.OFFSET,
        )
        orchestrator, factory = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        await orchestrator.fetch_page("u1", "all", 3, 10, provider=ProviderKind.AZURE_AD, access_token="tok")
        await orchestrator.fetch_page("u1", "all", 1, 10, provider=ProviderKind.AZURE_AD, access_token="tok")

        assert adapter.calls == [("skip:20", 10), (None, 10)]
        assert factory.calls[0]["kind"] is ProviderKind.AZURE_AD


class TestFailures:
    """Tests for provider failures and request validation."""

    @pytest.mark.asyncio
    async def test_auth_error_fails_request_without_writes(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        _seed(message_repo, 10)
        adapter = FakeAdapter([AuthError("token expired")])
        oracle = FakeOracle()
        orchestrator, _ = _orchestrator(
            mock_settings, message_repo, sync_state_repo, adapter, oracle
        )

        with pytest.raises(AuthError):
            await orchestrator.fetch_page("u1", "all", 1, 25, access_token="expired")

        assert len(adapter.calls) == 1
        assert oracle.calls == []
        assert message_repo.count("u1") == 10
        assert sync_state_repo.get("u1", ProviderKind.GOOGLE) is None

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        adapter = FakeAdapter(
            [
                TransientError("429"),
                TransientError("503"),
                FetchResult(messages=_fresh(2), next_cursor=None),
            ]
        )
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        response = await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert len(adapter.calls) == 3
        assert len(response.messages) == 2

    @pytest.mark.asyncio
    async def test_transient_error_surfaces_after_retries(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        adapter = FakeAdapter([TransientError("503")])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        with pytest.raises(TransientError):
            await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert len(adapter.calls) == 1 + mock_settings.provider_max_retries

    @pytest.mark.asyncio
    async def test_fetch_error_is_not_retried(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        adapter = FakeAdapter([FetchError("malformed")])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        with pytest.raises(FetchError):
            await orchestrator.fetch_page("u1", "all", 1, 25, access_token="tok")

        assert len(adapter.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "folder, page, page_size",
        [("spam", 1, 25), ("all", 0, 25), ("all", 1, 0), ("all", 1, 101)],
    )
    async def test_invalid_requests_are_rejected(
        self, mock_settings, message_repo, sync_state_repo, folder, page, page_size
    ) -> None:
        adapter = FakeAdapter([FetchResult(messages=[], next_cursor=None)])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        with pytest.raises(InvalidRequestError):
            await orchestrator.fetch_page("u1", folder, page, page_size, access_token="tok")

        assert adapter.calls == []


class TestCredentials:
    """Tests for bearer credential resolution."""

    @pytest.mark.asyncio
    async def test_token_provider_is_used_when_no_token_given(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        adapter = FakeAdapter([FetchResult(messages=[], next_cursor=None)])
        tokens = StaticTokenProvider({("u1", ProviderKind.GOOGLE): "from-store"})
        orchestrator, factory = _orchestrator(
            mock_settings, message_repo, sync_state_repo, adapter, token_provider=tokens
        )

        await orchestrator.fetch_page("u1")

        assert factory.calls[0]["access_token"] == "from-store"
        assert adapter.calls == [(None, mock_settings.default_page_size)]

    @pytest.mark.asyncio
    async def test_missing_credential_is_auth_error(
        self, mock_settings, message_repo, sync_state_repo
    ) -> None:
        adapter = FakeAdapter([FetchResult(messages=[], next_cursor=None)])
        orchestrator, _ = _orchestrator(mock_settings, message_repo, sync_state_repo, adapter)

        with pytest.raises(AuthError):
            await orchestrator.fetch_page("u1", "all", 1, 25)

        assert adapter.calls == []


def test_default_page_size_above_maximum_is_a_configuration_error(
    mock_settings, message_repo, sync_state_repo
) -> None:
    settings = mock_settings.model_copy(update={"default_page_size": 50, "max_page_size": 20})

    with pytest.raises(ConfigurationError):
        SyncOrchestrator(
            messages=message_repo,
            sync_state=sync_state_repo,
            categorizer=Categorizer(FakeOracle()),
            settings=settings,
        )
