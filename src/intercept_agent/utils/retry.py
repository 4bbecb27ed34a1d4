"""Bounded retry with a fixed delay between attempts."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from intercept_agent.errors import retries_exhausted_error

logger = structlog.get_logger()

T = TypeVar("T")


def _always(_: Exception) -> bool:
    return True


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay: float,
    retry_on: Callable[[Exception], bool] = _always,
    label: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds, at most ``attempts`` times.

    Errors rejected by ``retry_on`` propagate immediately. When every attempt
    fails with a retryable error, raises ERR_RETRIES_EXHAUSTED chained to the
    last failure.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not retry_on(exc):
                raise
            last_error = exc
            if attempt == attempts:
                break
            logger.debug(
                "retry_scheduled",
                operation=label,
                attempt=attempt,
                attempts=attempts,
                error=str(exc),
            )
            await asyncio.sleep(delay)

    raise retries_exhausted_error(label, attempts) from last_error
