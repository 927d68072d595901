"""Batch categorization with per-item fallback.

``Categorizer.classify`` returns exactly one result per input message, in input
order, and never raises: any oracle or parse failure for one message yields
the fallback result for that message only.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any, Protocol

import structlog

from email_aggregator.categorization.parsing import interpret_response
from email_aggregator.categorization.prompt import ClassificationFeatures
from email_aggregator.models import CategorizationResult, Message

logger = structlog.get_logger()


class ClassificationOracle(Protocol):
    """Opaque classifier. The response may be a mapping or text."""

    async def classify_one(self, features: ClassificationFeatures) -> Any: ...


class Categorizer:
    """Classify messages through an injected oracle."""

    def __init__(self, oracle: ClassificationOracle, *, concurrency: int = 5) -> None:
        """Create a categorizer.

        Args:
            oracle: Classification oracle (normally an ``OllamaClient``).
            concurrency: Maximum in-flight oracle calls within one batch.
        """

        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._oracle = oracle
        self._concurrency = concurrency

    async def classify(self, batch: Sequence[Message]) -> list[CategorizationResult]:
        """Classify a batch; results align with ``batch`` by index."""

        if not batch:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def run(message: Message) -> CategorizationResult:
            async with semaphore:
                return await self._classify_one(message)

        # gather preserves argument order regardless of completion order.
        results = await asyncio.gather(*(run(m) for m in batch), return_exceptions=True)

        out: list[CategorizationResult] = []
        for message, result in zip(batch, results):
            if isinstance(result, CategorizationResult):
                out.append(result)
                continue
            # An unexpected error escaped the item; it still gets the fallback.
            logger.warning(
                "categorization_fallback",
                message_id=message.provider_id,
                stage="batch",
                reason=repr(result),
            )
            out.append(CategorizationResult.fallback())

        fallbacks = sum(1 for r in out if r.is_fallback)
        logger.info("categorization_batch_completed", batch_size=len(out), fallbacks=fallbacks)
        return out

    async def _classify_one(self, message: Message) -> CategorizationResult:
        try:
            features = ClassificationFeatures.from_message(message)
            raw = await self._oracle.classify_one(features)
        except Exception as exc:  # noqa: BLE001 - one message must not fail the batch
            logger.warning(
                "categorization_fallback",
                message_id=message.provider_id,
                stage="oracle",
                error_type=type(exc).__name__,
                reason=str(exc),
            )
            return CategorizationResult.fallback()

        return interpret_response(raw, message_id=message.provider_id)
