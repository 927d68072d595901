"""Provider-neutral message model.

Both provider adapters normalize into this shape. A message is immutable once
ingested; re-ingesting the same ``(user_id, provider_id)`` replaces the stored
row rather than adding a new one.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProviderKind(str, Enum):
    """Supported mail providers, keyed by their OAuth provider id."""

    GOOGLE = "google"
    AZURE_AD = "azure-ad"


class Message(BaseModel):
    """A single email as returned by a provider adapter."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    provider_id: str = Field(description="Opaque provider-assigned message id")
    user_id: str = Field(description="Owning user")
    provider: ProviderKind = Field(description="Provider the message came from")

    subject: str = Field(default="", description="Subject header")
    snippet: str = Field(default="", description="Short body preview")

    # Display name and parsed address of the sender.
    sender: str = Field(default="", description="Sender display name (or raw From)")
    sender_email: str = Field(default="", description="Parsed sender email address")

    received_at: datetime = Field(description="Provider receipt timestamp (UTC)")
    thread_id: str | None = Field(default=None, description="Provider thread/conversation id")
    has_attachments: bool = Field(default=False, description="Whether the message has attachments")

    is_read: bool = Field(default=False, description="Whether the message has been read")
    is_archived: bool = Field(default=False, description="Whether the message is archived")

    provider_metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque provider bag: labels, importance, selected headers",
    )
