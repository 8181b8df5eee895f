"""Browser-backed :class:`ChallengeSolverPort` with a per-host solution cache."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from definarr.domain.exceptions import DefinarrError
from definarr.domain.ports.challenge_solver import SolveResult
from definarr.infrastructure.browser.challenge import CLEARANCE_COOKIE, ChallengeSolver
from definarr.infrastructure.browser.pool import BrowserPool, PoolHealth
from definarr.infrastructure.common.urls import host_of

log = structlog.get_logger(__name__)

CLEARANCE_MARGIN_SECONDS = 60.0


@dataclass
class SolverMetrics:
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    cache_hits: int = 0
    average_solve_time_ms: float = 0.0


@dataclass(frozen=True)
class _CachedSolution:
    result: SolveResult
    expires_at: float


class BrowserSolver:
    """Solves challenges on pooled browsers, once per host at a time.

    Solutions are cached per host until the ``cf_clearance`` cookie expires
    (minus a minute) or the cache TTL passes, whichever comes first.
    Concurrent solves for the same host share one browser run.
    """

    def __init__(
        self,
        pool: BrowserPool,
        *,
        enabled: bool = True,
        solve_timeout: float = 60.0,
        cache_ttl_seconds: float = 3600.0,
        max_concurrent: int = 3,
        user_agent: str | None = None,
        challenge_solver: ChallengeSolver | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.pool = pool
        self._enabled = enabled
        self.solve_timeout = solve_timeout
        self.cache_ttl_seconds = cache_ttl_seconds
        self.user_agent = user_agent
        self._challenge = challenge_solver or ChallengeSolver()
        self._clock = clock
        self._cache: dict[str, _CachedSolution] = {}
        self._inflight: dict[str, asyncio.Task[SolveResult]] = {}
        self._recent: deque[float] = deque(maxlen=100)
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self.metrics = SolverMetrics()

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def solve(self, url: str, *, timeout: float | None = None, force: bool = False) -> SolveResult:
        if not self._enabled:
            return SolveResult(success=False, error="Browser solver disabled")

        host = host_of(url)
        self.metrics.attempts += 1
        if not force:
            cached = self._cached(host)
            if cached is not None:
                self.metrics.cache_hits += 1
                log.debug("challenge_cache_hit", host=host)
                return cached

        task = self._inflight.get(host)
        if task is None:
            task = asyncio.create_task(self._solve(url, host, timeout or self.solve_timeout))
            self._inflight[host] = task
            task.add_done_callback(lambda _t, h=host: self._inflight.pop(h, None))
        return await asyncio.shield(task)

    def invalidate(self, host: str) -> None:
        if self._cache.pop(host, None) is not None:
            log.debug("challenge_cache_invalidated", host=host)

    def clear_cache(self) -> None:
        self._cache.clear()

    def health(self) -> tuple[PoolHealth, SolverMetrics, int]:
        return self.pool.health(), self.metrics, len(self._cache)

    async def shutdown(self) -> None:
        self._cache.clear()
        await self.pool.shutdown()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cached(self, host: str) -> SolveResult | None:
        entry = self._cache.get(host)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._cache[host]
            return None
        result = entry.result
        return SolveResult(
            success=True,
            cookies=dict(result.cookies),
            expirations=dict(result.expirations),
            challenge_type=result.challenge_type,
            user_agent=result.user_agent,
            from_cache=True,
        )

    def _store(self, host: str, result: SolveResult) -> None:
        expires_at = self._clock() + self.cache_ttl_seconds
        clearance = result.expirations.get(CLEARANCE_COOKIE)
        if clearance is not None and clearance < expires_at:
            expires_at = clearance - CLEARANCE_MARGIN_SECONDS
        self._cache[host] = _CachedSolution(result, expires_at)

    async def _solve(self, url: str, host: str, timeout: float) -> SolveResult:
        log.info("challenge_solve_started", host=host)
        async with self._semaphore:
            try:
                worker = await self.pool.acquire(timeout)
            except DefinarrError as e:
                self.metrics.failures += 1
                log.error("browser_acquire_failed", host=host, error=str(e))
                return SolveResult(success=False, error=str(e))

            try:
                result = await self._challenge.solve(worker.page, url, timeout=timeout)
            finally:
                await self.pool.release(worker)

        if self.user_agent and result.user_agent is None:
            result = SolveResult(
                success=result.success,
                cookies=result.cookies,
                expirations=result.expirations,
                content=result.content,
                final_url=result.final_url,
                solve_time_ms=result.solve_time_ms,
                challenge_type=result.challenge_type,
                user_agent=self.user_agent,
                error=result.error,
            )

        self.pool.record_solve(result.success, result.solve_time_ms)
        self._recent.append(result.solve_time_ms)
        self.metrics.average_solve_time_ms = sum(self._recent) / len(self._recent)
        if result.success:
            self.metrics.successes += 1
            self._store(host, result)
            log.info(
                "challenge_solved",
                host=host,
                challenge=result.challenge_type,
                solve_time_ms=round(result.solve_time_ms),
                cookies=len(result.cookies),
            )
        else:
            self.metrics.failures += 1
            self.pool.record_error(result.error or "unknown error")
            log.warning("challenge_unsolved", host=host, error=result.error)
        return result
