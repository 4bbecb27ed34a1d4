"""Tests for retry_async."""

from __future__ import annotations

import pytest

from intercept_agent.errors import AgentError
from intercept_agent.utils.retry import retry_async


class Flaky:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures: int, value: str = "ok", exc: Exception | None = None) -> None:
        self.failures = failures
        self.value = value
        self.exc = exc or ConnectionRefusedError("refused")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return self.value


@pytest.mark.asyncio
async def test_returns_first_success() -> None:
    op = Flaky(failures=0)
    assert await retry_async(op, attempts=3, delay=0) == "ok"
    assert op.calls == 1


@pytest.mark.asyncio
async def test_retries_until_success() -> None:
    op = Flaky(failures=2)
    assert await retry_async(op, attempts=3, delay=0) == "ok"
    assert op.calls == 3


@pytest.mark.asyncio
async def test_exhaustion_raises_after_exact_attempts() -> None:
    op = Flaky(failures=100)

    with pytest.raises(AgentError) as exc_info:
        await retry_async(op, attempts=11, delay=0, label="connect")

    assert op.calls == 11
    assert exc_info.value.code == "ERR_RETRIES_EXHAUSTED"
    assert exc_info.value.context == {"operation": "connect", "attempts": 11}
    assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately() -> None:
    op = Flaky(failures=100, exc=PermissionError("denied"))

    with pytest.raises(PermissionError):
        await retry_async(
            op,
            attempts=5,
            delay=0,
            retry_on=lambda exc: isinstance(exc, ConnectionRefusedError),
        )

    assert op.calls == 1


@pytest.mark.asyncio
async def test_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        await retry_async(Flaky(failures=0), attempts=0, delay=0)
