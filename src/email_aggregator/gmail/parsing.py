"""Helpers for parsing Gmail API messages into the provider-neutral model."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parseaddr, parsedate_to_datetime
from typing import Any

from email_aggregator.exceptions import FetchError
from email_aggregator.models import Message, ProviderKind

# Headers kept in provider_metadata. Everything else is dropped.
KEPT_HEADERS: tuple[str, ...] = ("from", "to", "cc", "date", "subject", "list-unsubscribe")


def _payload(message: dict[str, Any]) -> dict[str, Any]:
    payload = message.get("payload")
    return payload if isinstance(payload, dict) else {}


def _header_map(message: dict[str, Any]) -> dict[str, str]:
    headers = _payload(message).get("headers")
    if not isinstance(headers, list):
        return {}
    result: dict[str, str] = {}
    for h in headers:
        if not isinstance(h, dict):
            continue
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            # Gmail can include duplicates; keep the first for now.
            result.setdefault(name.lower(), value)
    return result


def split_sender(from_raw: str | None) -> tuple[str, str]:
    """Split ``Name <addr>`` into (display name, address).

    The display name falls back to the raw header when it carries no name.
    """

    if not from_raw:
        return "", ""
    name, addr = parseaddr(from_raw)
    return (name or from_raw).strip(), addr.strip()


def _received_at(message: dict[str, Any], hm: dict[str, str]) -> datetime:
    internal_date_raw = message.get("internalDate")
    if internal_date_raw is not None:
        try:
            return datetime.fromtimestamp(int(internal_date_raw) / 1000.0, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            pass

    date_header = hm.get("date")
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
        except (TypeError, ValueError, OverflowError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    raise FetchError(f"Gmail message {message.get('id')!r} has no usable receipt time")


def _has_attachments(part: Any) -> bool:
    if not isinstance(part, dict):
        return False
    if part.get("filename"):
        return True
    parts = part.get("parts")
    return isinstance(parts, list) and any(_has_attachments(p) for p in parts)


def message_to_message(message: dict[str, Any], *, user_id: str) -> Message:
    """Convert a Gmail API message (format=full) to a ``Message``.

    Args:
        message: Gmail API message dict.
        user_id: Owning user.

    Raises:
        FetchError: The message has no id or no receipt time.
    """

    message_id = message.get("id")
    if not isinstance(message_id, str) or not message_id:
        raise FetchError("Gmail message without an id")

    hm = _header_map(message)
    sender, sender_email = split_sender(hm.get("from"))

    label_ids = message.get("labelIds") or []
    if not isinstance(label_ids, list):
        label_ids = []
    label_ids = [str(x) for x in label_ids if isinstance(x, str)]

    return Message(
        provider_id=message_id,
        user_id=user_id,
        provider=ProviderKind.GOOGLE,
        subject=hm.get("subject") or "",
        snippet=str(message.get("snippet") or ""),
        sender=sender,
        sender_email=sender_email,
        received_at=_received_at(message, hm),
        thread_id=str(message.get("threadId") or "") or None,
        has_attachments=_has_attachments(_payload(message)),
        is_read="UNREAD" not in label_ids,
        is_archived="INBOX" not in label_ids,
        provider_metadata={
            "labelIds": label_ids,
            "historyId": message.get("historyId"),
            "headers": {k: v for k, v in hm.items() if k in KEPT_HEADERS},
        },
    )
