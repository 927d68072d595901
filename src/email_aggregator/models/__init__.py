"""Data models for Email Aggregator.

This module contains Pydantic models for data validation and serialization.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from email_aggregator.models.message import Message, ProviderKind

FALLBACK_PRIORITY = 3
FALLBACK_REASONING = "fallback"


class Category(str, Enum):
    """Closed set of categories a message can carry."""

    WORK = "Work"
    PERSONAL = "Personal"
    NEWSLETTER = "Newsletter"
    PROMOTION = "Promotion"
    UPDATE = "Update"
    UNCATEGORIZED = "Uncategorized"

    @classmethod
    def coerce(cls, value: Any) -> "Category":
        """Map an arbitrary oracle value into the enum.

        Matching is case-insensitive and accepts the plural/adjective forms the
        model tends to produce. Anything else becomes ``UNCATEGORIZED``.
        """

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return cls.UNCATEGORIZED
        return _CATEGORY_ALIASES.get(value.strip().casefold(), cls.UNCATEGORIZED)


_CATEGORY_ALIASES: dict[str, Category] = {c.value.casefold(): c for c in Category}
_CATEGORY_ALIASES.update(
    {
        "newsletters": Category.NEWSLETTER,
        "promotions": Category.PROMOTION,
        "promotional": Category.PROMOTION,
        "updates": Category.UPDATE,
    }
)


class CategorizationResult(BaseModel):
    """Category and priority attached to a message after ingestion."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    category: Category = Field(description="Assigned category")
    priority: int = Field(ge=1, le=5, description="Priority from 1 (minimal) to 5 (urgent)")
    tags: list[str] = Field(default_factory=list, description="Topic tags (unique)")
    reasoning: str = Field(default="", description="Explanation for the categorization")
    confidence: Optional[float] = Field(
        default=None, ge=0.0, le=1.0, description="Confidence score"
    )
    is_fallback: bool = Field(
        default=False,
        description="True when classification failed and the default was substituted",
    )

    @classmethod
    def fallback(cls) -> "CategorizationResult":
        """The deterministic result used whenever classification fails."""

        return cls(
            category=Category.UNCATEGORIZED,
            priority=FALLBACK_PRIORITY,
            tags=[],
            reasoning=FALLBACK_REASONING,
            confidence=None,
            is_fallback=True,
        )


class StoredMessage(Message):
    """A message together with its categorization, as persisted."""

    category: Category = Field(default=Category.UNCATEGORIZED, description="Assigned category")
    priority: int = Field(default=FALLBACK_PRIORITY, ge=1, le=5, description="Priority 1-5")
    tags: list[str] = Field(default_factory=list, description="Topic tags")
    reasoning: str = Field(default="", description="Categorization reasoning")
    confidence: Optional[float] = Field(default=None, description="Categorization confidence")

    @classmethod
    def from_parts(cls, message: Message, result: CategorizationResult) -> "StoredMessage":
        return cls(
            **message.model_dump(),
            category=result.category,
            priority=result.priority,
            tags=list(result.tags),
            reasoning=result.reasoning,
            confidence=result.confidence,
        )


class SyncState(BaseModel):
    """Per (user, provider) continuation state."""

    user_id: str = Field(description="Owning user")
    provider: ProviderKind = Field(description="Provider this state belongs to")
    continuation_token: Optional[str] = Field(
        default=None, description="Opaque provider-specific continuation marker"
    )
    last_sync_time: datetime = Field(description="When the last successful fetch completed")


class Pagination(BaseModel):
    """Pagination metadata returned with every page."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    page: int = Field(ge=1, description="1-based page number")
    page_size: int = Field(ge=1, description="Requested page size")
    total_messages: int = Field(ge=0, description="Exact count of matching stored messages")
    has_more: bool = Field(description="Whether a further page exists")


class FetchPageResponse(BaseModel):
    """Result of one fetchPage request."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    messages: list[StoredMessage] = Field(
        default_factory=list, description="Messages, newest first"
    )
    pagination: Pagination = Field(description="Pagination metadata")


__all__ = [
    "FALLBACK_PRIORITY",
    "FALLBACK_REASONING",
    "CategorizationResult",
    "Category",
    "FetchPageResponse",
    "Message",
    "Pagination",
    "ProviderKind",
    "StoredMessage",
    "SyncState",
]
