"""Provider adapter contract and selection.

Each provider is an interchangeable implementation of one capability,
``fetch(cursor, max_results)``, returning messages newest first plus an opaque
continuation marker. There is no shared base class: adapters are selected by
``ProviderKind`` through ``build_adapter``.

Two cursor models exist:

- ``CursorModel.FORWARD`` (Gmail): the provider orders and batches server-side.
  A ``None`` cursor always yields the newest batch; a stored token resumes.
- ``CursorModel.OFFSET`` (Outlook): every page after the first needs an
  explicit token or skip offset, computed from the requested page.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from email_aggregator.config import Settings
from email_aggregator.models import Message, ProviderKind

if TYPE_CHECKING:
    import httpx

MIN_FETCH_RESULTS = 1
MAX_FETCH_RESULTS = 100

_SKIP_PREFIX = "skip:"


class CursorModel(str, Enum):
    FORWARD = "forward"
    OFFSET = "offset"


@dataclass(frozen=True)
class FetchResult:
    """One adapter batch: messages newest first and the next cursor."""

    messages: list[Message]
    next_cursor: str | None


@runtime_checkable
class ProviderAdapter(Protocol):
    """Capability every provider adapter implements."""

    kind: ProviderKind
    cursor_model: CursorModel

    async def fetch(self, cursor: str | None, max_results: int) -> FetchResult:
        """Fetch one batch of messages.

        Raises:
            AuthError: The provider rejected the credential.
            TransientError: Rate limit, 5xx or timeout.
            FetchError: Any other failure.
        """
        ...


def validate_max_results(max_results: int) -> int:
    if not MIN_FETCH_RESULTS <= max_results <= MAX_FETCH_RESULTS:
        raise ValueError(
            f"max_results must be in [{MIN_FETCH_RESULTS}, {MAX_FETCH_RESULTS}], got {max_results}"
        )
    return max_results


def offset_cursor(offset: int) -> str | None:
    """Encode a skip offset as an opaque cursor (``None`` for the first page)."""

    if offset <= 0:
        return None
    return f"{_SKIP_PREFIX}{offset}"


def parse_offset_cursor(cursor: str) -> int | None:
    """Decode a ``skip:<n>`` cursor; returns None if the cursor is not one."""

    if not cursor.startswith(_SKIP_PREFIX):
        return None
    try:
        value = int(cursor[len(_SKIP_PREFIX) :])
    except ValueError:
        return None
    return value if value >= 0 else None


def sort_newest_first(messages: list[Message]) -> list[Message]:
    return sorted(messages, key=lambda m: m.received_at, reverse=True)


def build_adapter(
    kind: ProviderKind,
    *,
    user_id: str,
    access_token: str,
    settings: Settings,
    http_client: "httpx.AsyncClient | None" = None,
) -> ProviderAdapter:
    """Select and construct the adapter for ``kind``.

    Args:
        kind: Provider to talk to.
        user_id: User the fetched messages belong to.
        access_token: Bearer credential for the provider.
        settings: Application settings.
        http_client: Shared HTTP client for REST providers.
    """

    # Imported lazily so that neither provider stack is loaded unless used.
    if kind is ProviderKind.GOOGLE:
        from email_aggregator.gmail.client import GmailAdapter

        return GmailAdapter(user_id=user_id, access_token=access_token, settings=settings)

    if kind is ProviderKind.AZURE_AD:
        from email_aggregator.outlook.client import OutlookAdapter

        return OutlookAdapter(
            user_id=user_id,
            access_token=access_token,
            settings=settings,
            http_client=http_client,
        )

    raise ValueError(f"Unsupported provider: {kind!r}")
