"""Tests for BrowserPool (bounded workers, FIFO waiters, recycling)."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from definarr.domain.exceptions import BrowserPoolExhaustedError, BrowserPoolShutdownError
from definarr.infrastructure.browser.pool import BrowserPool, BrowserWorker

from conftest import FakeClock


class _FakeLauncher:
    def __init__(self) -> None:
        self.launched = 0
        self.closed = False
        self.contexts: list[AsyncMock] = []

    async def launch(self) -> tuple[Any, Any, Any]:
        self.launched += 1
        context = AsyncMock()
        self.contexts.append(context)
        return AsyncMock(), context, AsyncMock()

    async def close(self) -> None:
        self.closed = True


def _make_pool(launcher: _FakeLauncher, **kwargs: Any) -> BrowserPool:
    kwargs.setdefault("size", 2)
    kwargs.setdefault("acquire_timeout", 5.0)
    return BrowserPool(launcher, **kwargs)


class TestLifecycle:
    async def test_starts_lazily(self) -> None:
        launcher = _FakeLauncher()
        pool = _make_pool(launcher)
        assert launcher.launched == 0
        assert pool.is_ready is False
        await pool.acquire()
        assert launcher.launched == 2
        assert pool.is_ready is True

    async def test_shutdown_closes_everything(self) -> None:
        launcher = _FakeLauncher()
        pool = _make_pool(launcher)
        await pool.start()
        await pool.shutdown()
        assert launcher.closed is True
        assert all(c.close.await_count == 1 for c in launcher.contexts)
        with pytest.raises(BrowserPoolShutdownError):
            await pool.acquire()

    async def test_shutdown_rejects_waiters(self) -> None:
        pool = _make_pool(_FakeLauncher(), size=1)
        await pool.acquire()
        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0)
        await pool.shutdown()
        with pytest.raises(BrowserPoolShutdownError):
            await waiter


    async def test_partial_start_tops_up_to_size(self) -> None:
        launcher = _FakeLauncher()
        real_launch = launcher.launch
        calls = 0

        async def _flaky_launch() -> tuple[Any, Any, Any]:
            nonlocal calls
            calls += 1
            if calls == 2:
                raise RuntimeError("browser crashed")
            return await real_launch()

        launcher.launch = _flaky_launch  # type: ignore[method-assign]
        pool = _make_pool(launcher, size=2)

        with pytest.raises(RuntimeError, match="browser crashed"):
            await pool.acquire()
        assert pool.is_ready is False
        assert pool.health().total == 1

        await pool.acquire()
        await pool.acquire()
        assert pool.health().total == 2
        assert pool.health().busy == 2
        with pytest.raises(BrowserPoolExhaustedError):
            await pool.acquire(timeout=0.05)


class TestAcquireRelease:
    async def test_never_more_busy_than_size(self) -> None:
        pool = _make_pool(_FakeLauncher(), size=2)
        first = await pool.acquire()
        second = await pool.acquire()
        assert first.id != second.id
        assert pool.health().busy == 2
        with pytest.raises(BrowserPoolExhaustedError):
            await pool.acquire(timeout=0.05)
        assert pool.health().queued == 0

    async def test_waiter_receives_released_worker(self) -> None:
        pool = _make_pool(_FakeLauncher(), size=1)
        worker = await pool.acquire()
        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0)
        assert pool.health().queued == 1

        await pool.release(worker)

        handed = await waiter
        assert handed.id == worker.id
        assert handed.use_count == 2
        worker.page.goto.assert_awaited_with("about:blank", timeout=5000)

    async def test_waiters_served_in_order(self) -> None:
        pool = _make_pool(_FakeLauncher(), size=1)
        worker = await pool.acquire()
        order: list[str] = []

        async def _wait(name: str) -> None:
            got = await pool.acquire()
            order.append(name)
            await pool.release(got)

        tasks = [asyncio.create_task(_wait("a")), asyncio.create_task(_wait("b"))]
        await asyncio.sleep(0)
        await pool.release(worker)
        await asyncio.gather(*tasks)
        assert order == ["a", "b"]

    async def test_release_unknown_worker_ignored(self) -> None:
        pool = _make_pool(_FakeLauncher())
        stranger = BrowserWorker(id="x", browser=None, context=None, page=None, created_at=0, last_used_at=0)
        await pool.release(stranger)


class TestRecycling:
    async def test_recycled_after_max_uses(self) -> None:
        launcher = _FakeLauncher()
        pool = _make_pool(launcher, size=1, max_uses=1)
        worker = await pool.acquire()
        await pool.release(worker)
        assert launcher.launched == 2
        assert launcher.contexts[0].close.await_count == 1
        health = pool.health()
        assert (health.total, health.available) == (1, 1)

    async def test_recycled_after_max_age(self, clock: FakeClock) -> None:
        launcher = _FakeLauncher()
        pool = _make_pool(launcher, size=1, max_age_seconds=10, clock=clock)
        worker = await pool.acquire()
        clock.advance(11)
        await pool.release(worker)
        assert launcher.launched == 2

    async def test_replacement_goes_to_waiter(self) -> None:
        launcher = _FakeLauncher()
        pool = _make_pool(launcher, size=1, max_uses=1)
        worker = await pool.acquire()
        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0)
        await pool.release(worker)
        replacement = await waiter
        assert replacement.id != worker.id
        assert replacement.available is False


class TestHealth:
    async def test_solve_statistics(self) -> None:
        pool = _make_pool(_FakeLauncher())
        pool.record_solve(True, 100.0)
        pool.record_solve(False, 300.0)
        pool.record_error("timeout")
        health = pool.health()
        assert health.success_rate == 0.5
        assert health.average_solve_time_ms == 200
        assert health.last_error == "timeout"
        assert health.total == 0
