"""Tolerant parsing of categorization oracle responses.

The oracle's output shape is untrusted. It may be a native mapping, a plain
JSON string, or JSON fenced in a markdown code block. ``interpret_response``
tries those in order; the fallback result terminates the chain.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from email_aggregator.models import CategorizationResult, Category

logger = structlog.get_logger()

MIN_PRIORITY = 1
MAX_PRIORITY = 5

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


def _from_structured(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, Mapping):
        return dict(raw)
    return None


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _from_json_string(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, str):
        return None
    return _loads_object(raw.strip())


def _from_fenced_json(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, str):
        return None
    match = _FENCE_RE.search(raw)
    if match is None:
        return None
    return _loads_object(match.group(1))


PARSE_CHAIN: tuple[tuple[str, Callable[[Any], dict[str, Any] | None]], ...] = (
    ("structured", _from_structured),
    ("json_string", _from_json_string),
    ("fenced_json", _from_fenced_json),
)


def _coerce_priority(value: Any) -> int:
    # bool is an int subclass; "true" is not a priority.
    if isinstance(value, bool) or value is None:
        raise ValueError(f"invalid priority: {value!r}")
    if isinstance(value, int):
        return max(MIN_PRIORITY, min(MAX_PRIORITY, value))
    number = float(value)
    if math.isnan(number):
        raise ValueError("priority is NaN")
    if math.isinf(number):
        return MAX_PRIORITY if number > 0 else MIN_PRIORITY
    return max(MIN_PRIORITY, min(MAX_PRIORITY, int(round(number))))


def _coerce_confidence(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return 1.0 if value >= 1 else 0.0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if math.isnan(number):
        return None
    return max(0.0, min(1.0, number))


def _coerce_tags(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set)):
        return []

    seen: set[str] = set()
    tags: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        tag = item.strip()
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags


def payload_to_result(payload: Mapping[str, Any]) -> CategorizationResult:
    """Validate a decoded payload.

    ``category`` and ``priority`` are required. Unknown categories become
    ``Uncategorized``; priority is clamped to [1, 5].

    Raises:
        ValueError: A required field is missing or unusable.
    """

    if "category" not in payload:
        raise ValueError("missing field: category")
    if "priority" not in payload:
        raise ValueError("missing field: priority")

    reasoning = payload.get("reasoning")
    return CategorizationResult(
        category=Category.coerce(payload["category"]),
        priority=_coerce_priority(payload["priority"]),
        tags=_coerce_tags(payload.get("tags")),
        reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
        confidence=_coerce_confidence(payload.get("confidence")),
    )


def interpret_response(raw: Any, *, message_id: str | None = None) -> CategorizationResult:
    """Turn a raw oracle response into a result. Never raises."""

    for stage, extract in PARSE_CHAIN:
        payload = extract(raw)
        if payload is None:
            continue
        try:
            return payload_to_result(payload)
        except (TypeError, ValueError, ArithmeticError) as exc:
            logger.warning(
                "categorization_fallback",
                message_id=message_id,
                stage=stage,
                reason=str(exc),
            )
            return CategorizationResult.fallback()

    logger.warning(
        "categorization_fallback",
        message_id=message_id,
        stage="unparseable",
        response_type=type(raw).__name__,
    )
    return CategorizationResult.fallback()
