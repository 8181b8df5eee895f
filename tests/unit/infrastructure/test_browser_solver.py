"""Tests for BrowserSolver (per-host cache, in-flight dedupe, pool errors)."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from conftest import FakeClock

from definarr.domain.exceptions import BrowserPoolExhaustedError
from definarr.domain.ports.challenge_solver import SolveResult
from definarr.infrastructure.browser.solver import BrowserSolver

URL = "https://tracker.example/search.php?q=x"
HOST = "tracker.example"


def _solved(**kwargs: Any) -> SolveResult:
    kwargs.setdefault("cookies", {"cf_clearance": "abc"})
    return SolveResult(success=True, solve_time_ms=250.0, challenge_type="js-challenge", **kwargs)


def _mock_pool() -> MagicMock:
    pool = MagicMock()
    pool.acquire = AsyncMock(return_value=MagicMock())
    pool.release = AsyncMock()
    pool.shutdown = AsyncMock()
    return pool


def _make_solver(result: SolveResult | None = None, **kwargs: Any) -> tuple[BrowserSolver, MagicMock, MagicMock]:
    pool = _mock_pool()
    challenge = MagicMock()
    challenge.solve = AsyncMock(return_value=result or _solved())
    return BrowserSolver(pool, challenge_solver=challenge, **kwargs), pool, challenge


class TestSolve:
    async def test_disabled(self) -> None:
        solver, pool, _ = _make_solver(enabled=False)
        result = await solver.solve(URL)
        assert result.success is False
        assert result.error == "Browser solver disabled"
        pool.acquire.assert_not_awaited()

    async def test_worker_released_after_solve(self) -> None:
        solver, pool, challenge = _make_solver()
        result = await solver.solve(URL, timeout=20)
        assert result.success is True
        worker = pool.acquire.return_value
        challenge.solve.assert_awaited_once_with(worker.page, URL, timeout=20)
        pool.release.assert_awaited_once_with(worker)
        pool.record_solve.assert_called_once_with(True, 250.0)

    async def test_user_agent_attached(self) -> None:
        solver, _, _ = _make_solver(user_agent="UA/1.0")
        assert (await solver.solve(URL)).user_agent == "UA/1.0"

    async def test_pool_exhausted(self) -> None:
        solver, pool, challenge = _make_solver()
        pool.acquire.side_effect = BrowserPoolExhaustedError("Timed out waiting for a browser worker (30s)")

        result = await solver.solve(URL)

        assert result.success is False
        assert result.error is not None and "Timed out" in result.error
        challenge.solve.assert_not_awaited()
        assert solver.metrics.failures == 1

    async def test_failure_not_cached(self) -> None:
        failed = SolveResult(success=False, error="Failed to solve challenge")
        solver, pool, challenge = _make_solver(failed)

        await solver.solve(URL)
        await solver.solve(URL)

        assert challenge.solve.await_count == 2
        pool.record_error.assert_called_with("Failed to solve challenge")

    async def test_same_host_solved_once(self) -> None:
        solver, _, challenge = _make_solver()
        gate = asyncio.Event()

        async def _slow(page: Any, url: str, *, timeout: float) -> SolveResult:
            await gate.wait()
            return _solved()

        challenge.solve.side_effect = _slow
        first = asyncio.create_task(solver.solve(URL))
        second = asyncio.create_task(solver.solve("https://tracker.example/other"))
        await asyncio.sleep(0)
        gate.set()

        results = await asyncio.gather(first, second)

        assert all(r.success for r in results)
        assert challenge.solve.await_count == 1


class TestCache:
    async def test_cache_hit(self) -> None:
        solver, _, challenge = _make_solver()
        await solver.solve(URL)
        cached = await solver.solve(URL)

        assert cached.from_cache is True
        assert cached.cookies == {"cf_clearance": "abc"}
        assert challenge.solve.await_count == 1
        assert solver.metrics.cache_hits == 1
        assert solver.health()[2] == 1

    async def test_force_bypasses_cache(self) -> None:
        solver, _, challenge = _make_solver()
        await solver.solve(URL)
        await solver.solve(URL, force=True)
        assert challenge.solve.await_count == 2

    async def test_expiry_capped_by_clearance_cookie(self, clock: FakeClock) -> None:
        result = _solved(expirations={"cf_clearance": clock.now + 600})
        solver, _, challenge = _make_solver(result, cache_ttl_seconds=3600, clock=clock)
        await solver.solve(URL)

        clock.advance(539)
        assert (await solver.solve(URL)).from_cache is True
        clock.advance(2)
        assert (await solver.solve(URL)).from_cache is False
        assert challenge.solve.await_count == 2

    async def test_ttl_expiry(self, clock: FakeClock) -> None:
        solver, _, challenge = _make_solver(cache_ttl_seconds=10, clock=clock)
        await solver.solve(URL)
        clock.advance(10)
        await solver.solve(URL)
        assert challenge.solve.await_count == 2

    async def test_invalidate(self) -> None:
        solver, _, challenge = _make_solver()
        await solver.solve(URL)
        solver.invalidate(HOST)
        await solver.solve(URL)
        assert challenge.solve.await_count == 2

    async def test_shutdown_clears_cache(self) -> None:
        solver, pool, _ = _make_solver()
        await solver.solve(URL)
        await solver.shutdown()
        assert solver.health()[2] == 0
        pool.shutdown.assert_awaited_once()
