"""Utility functions for Email Aggregator."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from email_aggregator.config import Settings

logger = structlog.get_logger()

T = TypeVar("T")


def configure_logging(settings: Settings) -> None:
    """Configure structlog from settings.

    Args:
        settings: Application settings (uses ``log_level`` and ``log_json``).
    """

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    retry_on: tuple[type[BaseException], ...],
    max_retries: int = 2,
    delay: float = 0.5,
    backoff: float = 2.0,
    operation: str = "operation",
) -> T:
    """Await ``func`` and retry it with exponential backoff.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately.

    Args:
        func: Zero-argument coroutine factory.
        retry_on: Exception types that trigger a retry.
        max_retries: Maximum number of retry attempts.
        delay: Initial delay between retries in seconds.
        backoff: Multiplier for delay after each retry.
        operation: Name used in log events.

    Returns:
        The result of the first successful attempt.
    """

    current_delay = delay
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt >= max_retries:
                logger.error(
                    "retry_exhausted",
                    operation=operation,
                    attempts=attempt + 1,
                    error=str(e),
                )
                raise
            logger.warning(
                "retrying",
                operation=operation,
                attempt=attempt + 1,
                max_retries=max_retries,
                delay=current_delay,
                error=str(e),
            )
            await asyncio.sleep(current_delay)
            current_delay *= backoff

    raise AssertionError("unreachable")
