"""Bearer credential supply.

Issuing and refreshing tokens belongs to the caller's token-management layer.
Adapters only receive an access token and report ``AuthError`` when the
provider rejects it.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from email_aggregator.exceptions import AuthError
from email_aggregator.models import ProviderKind


@runtime_checkable
class TokenProvider(Protocol):
    async def get_access_token(self, user_id: str, provider: ProviderKind) -> str:
        """Return a bearer token for the user's provider account.

        Raises:
            AuthError: No usable credential exists for this user/provider.
        """
        ...


class StaticTokenProvider:
    """Token provider backed by a fixed ``(user_id, provider) -> token`` map."""

    def __init__(self, tokens: dict[tuple[str, ProviderKind], str] | None = None) -> None:
        self._tokens = dict(tokens or {})

    def set_token(self, user_id: str, provider: ProviderKind, token: str) -> None:
        self._tokens[(user_id, provider)] = token

    async def get_access_token(self, user_id: str, provider: ProviderKind) -> str:
        token = self._tokens.get((user_id, provider))
        if not token:
            raise AuthError(f"No {provider.value} credential for user {user_id}")
        return token
