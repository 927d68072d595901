"""Helpers for parsing Microsoft Graph messages into the provider-neutral model."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from email_aggregator.exceptions import FetchError
from email_aggregator.models import Message, ProviderKind


def _parse_graph_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    # Graph returns ISO-8601 with a trailing Z.
    raw = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def graph_message_to_message(message: dict[str, Any], *, user_id: str) -> Message:
    """Convert a Graph ``message`` resource to a ``Message``.

    Raises:
        FetchError: The resource has no id, no parseable ``receivedDateTime``
            or fields of the wrong type.
    """

    message_id = message.get("id")
    if not isinstance(message_id, str) or not message_id:
        raise FetchError("Outlook message without an id")

    received_at = _parse_graph_datetime(message.get("receivedDateTime"))
    if received_at is None:
        raise FetchError(f"Outlook message {message_id!r} has no usable receivedDateTime")

    sender_field = message.get("from")
    email_address = sender_field.get("emailAddress") if isinstance(sender_field, dict) else None
    if not isinstance(email_address, dict):
        email_address = {}
    sender_email = str(email_address.get("address") or "")
    sender = str(email_address.get("name") or sender_email)

    is_read = bool(message.get("isRead", False))
    categories = message.get("categories")
    if not isinstance(categories, list):
        categories = []

    try:
        return Message(
            provider_id=message_id,
            user_id=user_id,
            provider=ProviderKind.AZURE_AD,
            subject=message.get("subject") or "",
            snippet=message.get("bodyPreview") or "",
            sender=sender,
            sender_email=sender_email,
            received_at=received_at,
            thread_id=message.get("conversationId") or None,
            has_attachments=bool(message.get("hasAttachments", False)),
            is_read=is_read,
            provider_metadata={
                "importance": message.get("importance"),
                "isRead": is_read,
                "categories": [str(c) for c in categories if isinstance(c, str)],
                "parentFolderId": message.get("parentFolderId"),
            },
        )
    except ValidationError as exc:
        raise FetchError(f"Outlook message {message_id!r} has malformed fields") from exc
