"""Bounded retry with exponential backoff, jitter and ``Retry-After``."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504, 520, 521, 522, 523, 524})

_RETRYABLE_NETWORK_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    reason: str
    delay: float | None = None


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUS_CODES


def is_retryable_network_error(error: BaseException) -> bool:
    return isinstance(error, _RETRYABLE_NETWORK_ERRORS)


def parse_retry_after(headers: httpx.Headers) -> float | None:
    """Parse ``Retry-After`` header value (seconds only)."""
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        return float(raw)
    except (ValueError, TypeError):
        return None


class RetryPolicy:
    """Runs an operation up to ``1 + max_retries`` times.

    The classifier decides per error whether another attempt is made and
    may suggest a delay (``Retry-After``, challenge back-off). The loop
    always runs to success or exhaustion; the last error propagates.
    """

    def __init__(
        self,
        *,
        max_retries: int = 2,
        initial_delay: float = 1.0,
        max_backoff: float = 30.0,
    ) -> None:
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_backoff = max_backoff

    def compute_delay(self, attempt: int, suggested: float | None = None) -> float:
        if suggested is not None:
            return min(suggested, self.max_backoff)
        delay = self.initial_delay * (2**attempt)
        jitter = random.uniform(0, self.initial_delay)  # noqa: S311
        return min(delay + jitter, self.max_backoff)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        classify: Callable[[BaseException], RetryDecision],
        *,
        context: str = "",
    ) -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                decision = classify(e)
                if not decision.retry or attempt >= self.max_retries:
                    raise
                delay = self.compute_delay(attempt, decision.delay)
                log.info(
                    "http_retry",
                    context=context,
                    reason=decision.reason,
                    attempt=attempt + 1,
                    delay=round(delay, 2),
                )
                await asyncio.sleep(delay)
                attempt += 1
