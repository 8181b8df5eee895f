"""Sliding-window rate limiters keyed by indexer id and by host.

"Check wait time, then record" runs under one lock per key, so two
concurrent callers can never both observe spare capacity.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable

import structlog

from definarr.domain.exceptions import RateLimitWaitExceeded
from definarr.infrastructure.common.urls import host_of

log = structlog.get_logger(__name__)


class SlidingWindowLimiter:
    """At most *max_requests* acquisitions in any rolling *period* seconds.

    Args:
        max_requests: Requests allowed per window. ``<= 0`` means unlimited.
        period: Window length in seconds.
        clock: Monotonic time source (injectable for tests).
        sleep: Awaitable delay paired with *clock* (``asyncio.sleep`` when unset).
    """

    def __init__(
        self,
        max_requests: int,
        period: float,
        *,
        key: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.max_requests = max_requests
        self.period = period
        self.key = key
        self._clock = clock
        self._sleep = sleep
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._stamps and self._stamps[0] <= now - self.period:
            self._stamps.popleft()

    def wait_time(self) -> float:
        """Seconds until the next acquisition would be allowed (0 when free)."""
        if self.max_requests <= 0:
            return 0.0
        now = self._clock()
        self._prune(now)
        if len(self._stamps) < self.max_requests:
            return 0.0
        return max(0.0, self._stamps[0] + self.period - now)

    async def acquire(self, *, max_wait: float | None = None) -> float:
        """Wait for capacity and record the request. Returns the total wait."""
        if self.max_requests <= 0:
            return 0.0
        waited = 0.0
        async with self._lock:
            while True:
                wait = self.wait_time()
                if wait <= 0:
                    self._stamps.append(self._clock())
                    return waited
                if max_wait is not None and waited + wait > max_wait:
                    raise RateLimitWaitExceeded(self.key, waited + wait)
                log.debug("rate_limit_wait", key=self.key, delay=round(wait, 2))
                await (self._sleep or asyncio.sleep)(wait)
                waited += wait


class RateLimiterRegistry:
    """Process-wide limiters, created lazily per indexer id and per host.

    One registry is built at startup and passed to every HTTP client.
    """

    def __init__(
        self,
        *,
        indexer_requests: int = 30,
        period: float = 60.0,
        host_requests: int = 60,
        max_wait: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.indexer_requests = indexer_requests
        self.period = period
        self.host_requests = host_requests
        self.max_wait = max_wait
        self._clock = clock
        self._sleep = sleep
        self._indexers: dict[str, SlidingWindowLimiter] = {}
        self._hosts: dict[str, SlidingWindowLimiter] = {}

    def for_indexer(
        self, indexer_id: str, *, requests: int | None = None, period: float | None = None
    ) -> SlidingWindowLimiter:
        limiter = self._indexers.get(indexer_id)
        if limiter is None:
            limiter = SlidingWindowLimiter(
                requests if requests is not None else self.indexer_requests,
                period if period is not None else self.period,
                key=f"indexer:{indexer_id}",
                clock=self._clock,
                sleep=self._sleep,
            )
            self._indexers[indexer_id] = limiter
        return limiter

    def for_host(self, host: str) -> SlidingWindowLimiter:
        limiter = self._hosts.get(host)
        if limiter is None:
            limiter = SlidingWindowLimiter(
                self.host_requests, self.period, key=f"host:{host}", clock=self._clock, sleep=self._sleep
            )
            self._hosts[host] = limiter
        return limiter

    async def acquire(self, indexer_id: str, url: str) -> None:
        """Indexer limit first, then the limit of the URL's host."""
        await self.for_indexer(indexer_id).acquire(max_wait=self.max_wait)
        host = host_of(url)
        if host:
            await self.for_host(host).acquire(max_wait=self.max_wait)

    def forget(self, indexer_id: str) -> None:
        self._indexers.pop(indexer_id, None)
