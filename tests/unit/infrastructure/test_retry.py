"""Tests for RetryPolicy and retry classification helpers."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from definarr.infrastructure.http.retry import (
    RetryDecision,
    RetryPolicy,
    is_retryable_network_error,
    is_retryable_status,
    parse_retry_after,
)

_MODULE = "definarr.infrastructure.http.retry"


def _always(retry: bool, delay: float | None = None):
    return lambda e: RetryDecision(retry, "test", delay)


class TestRetryPolicy:
    async def test_success_first_try(self) -> None:
        op = AsyncMock(return_value="ok")
        assert await RetryPolicy().execute(op, _always(True)) == "ok"
        op.assert_awaited_once()

    async def test_retries_until_success(self) -> None:
        op = AsyncMock(side_effect=[ValueError("1"), ValueError("2"), "ok"])
        with patch(_MODULE + ".asyncio") as m:
            m.sleep = AsyncMock()
            result = await RetryPolicy(max_retries=2).execute(op, _always(True))
        assert result == "ok"
        assert op.await_count == 3
        assert m.sleep.await_count == 2

    async def test_exhaustion_raises_last_error(self) -> None:
        op = AsyncMock(side_effect=[ValueError("1"), ValueError("2"), ValueError("3")])
        with patch(_MODULE + ".asyncio") as m:
            m.sleep = AsyncMock()
            with pytest.raises(ValueError, match="3"):
                await RetryPolicy(max_retries=2).execute(op, _always(True))
        assert op.await_count == 3

    async def test_non_retryable_raises_immediately(self) -> None:
        op = AsyncMock(side_effect=ValueError("fatal"))
        with patch(_MODULE + ".asyncio") as m:
            m.sleep = AsyncMock()
            with pytest.raises(ValueError, match="fatal"):
                await RetryPolicy(max_retries=5).execute(op, _always(False))
        op.assert_awaited_once()
        m.sleep.assert_not_awaited()

    async def test_suggested_delay_used(self) -> None:
        op = AsyncMock(side_effect=[ValueError("x"), "ok"])
        with patch(_MODULE + ".asyncio") as m:
            m.sleep = AsyncMock()
            await RetryPolicy(max_retries=1, max_backoff=30.0).execute(op, _always(True, 7.0))
        m.sleep.assert_awaited_once_with(7.0)

    def test_suggested_delay_capped(self) -> None:
        assert RetryPolicy(max_backoff=10.0).compute_delay(0, 600.0) == 10.0

    def test_exponential_backoff_with_jitter(self) -> None:
        policy = RetryPolicy(initial_delay=1.0, max_backoff=100.0)
        for attempt, base in ((0, 1.0), (1, 2.0), (2, 4.0)):
            delay = policy.compute_delay(attempt)
            assert base <= delay <= base + 1.0

    def test_backoff_capped(self) -> None:
        assert RetryPolicy(initial_delay=1.0, max_backoff=5.0).compute_delay(10) == 5.0


class TestClassificationHelpers:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504, 522])
    def test_retryable_statuses(self, status: int) -> None:
        assert is_retryable_status(status) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 410])
    def test_non_retryable_statuses(self, status: int) -> None:
        assert is_retryable_status(status) is False

    def test_network_errors(self) -> None:
        assert is_retryable_network_error(httpx.ConnectError("x")) is True
        assert is_retryable_network_error(httpx.ReadTimeout("x")) is True
        assert is_retryable_network_error(ValueError("x")) is False

    def test_retry_after(self) -> None:
        assert parse_retry_after(httpx.Headers({"Retry-After": "12"})) == 12.0
        assert parse_retry_after(httpx.Headers({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})) is None
        assert parse_retry_after(httpx.Headers()) is None
