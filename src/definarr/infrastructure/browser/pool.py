"""Bounded pool of stealth browser workers.

A worker is ``available`` or busy. Callers that find no idle worker wait
in a FIFO queue with a timeout; released workers past their use or age
ceiling are closed and replaced, and the replacement goes straight to the
next waiter.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from definarr.domain.exceptions import BrowserPoolExhaustedError, BrowserPoolShutdownError

log = structlog.get_logger(__name__)

_RECENT_SOLVES = 100


class BrowserLauncher(Protocol):
    async def launch(self) -> tuple[Any, Any, Any]: ...

    async def close(self) -> None: ...


@dataclass
class BrowserWorker:
    id: str
    browser: Any
    context: Any
    page: Any
    created_at: float
    last_used_at: float
    use_count: int = 0
    available: bool = True


@dataclass(frozen=True)
class PoolHealth:
    total: int
    available: int
    busy: int
    queued: int
    average_solve_time_ms: float
    success_rate: float
    last_error: str | None = None


class BrowserPool:
    """Fixed-size worker pool.

    Args:
        launcher: Creates ``(browser, context, page)`` for a new worker.
        size: Number of workers (never more are busy at once).
        max_uses: Recycle a worker after this many acquisitions.
        max_age_seconds: Recycle a worker older than this.
        acquire_timeout: Default queue wait before ``BrowserPoolExhaustedError``.
    """

    def __init__(
        self,
        launcher: BrowserLauncher,
        *,
        size: int = 2,
        max_uses: int = 50,
        max_age_seconds: float = 30 * 60,
        acquire_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._launcher = launcher
        self.size = size
        self.max_uses = max_uses
        self.max_age_seconds = max_age_seconds
        self.acquire_timeout = acquire_timeout
        self._clock = clock
        self._workers: dict[str, BrowserWorker] = {}
        self._queue: deque[asyncio.Future[BrowserWorker]] = deque()
        self._lock = asyncio.Lock()
        self._started = False
        self._shutting_down = False
        self._solves = 0
        self._successes = 0
        self._recent_times: deque[float] = deque(maxlen=_RECENT_SOLVES)
        self._last_error: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._started and not self._shutting_down

    async def start(self) -> None:
        if self._started:
            return
        async with self._lock:
            if self._started:
                return
            # Workers launched by an earlier, partly failed start are kept.
            missing = self.size - len(self._workers)
            results = await asyncio.gather(
                *(self._create_worker() for _ in range(missing)), return_exceptions=True
            )
            errors = [r for r in results if isinstance(r, BaseException)]
            if errors:
                log.warning(
                    "browser_pool_start_incomplete",
                    workers=len(self._workers),
                    size=self.size,
                    error=str(errors[0]),
                )
                raise errors[0]
            self._started = True
            log.info("browser_pool_started", size=self.size)

    async def shutdown(self) -> None:
        if self._shutting_down:
            return
        self._shutting_down = True
        log.info("browser_pool_shutting_down", workers=len(self._workers))
        while self._queue:
            waiter = self._queue.popleft()
            if not waiter.done():
                waiter.set_exception(BrowserPoolShutdownError("Browser pool is shutting down"))
        for worker in list(self._workers.values()):
            await self._close_worker(worker)
        self._workers.clear()
        await self._launcher.close()
        log.info("browser_pool_shutdown_complete")

    async def _create_worker(self) -> BrowserWorker:
        browser, context, page = await self._launcher.launch()
        now = self._clock()
        worker = BrowserWorker(
            id=uuid.uuid4().hex,
            browser=browser,
            context=context,
            page=page,
            created_at=now,
            last_used_at=now,
        )
        self._workers[worker.id] = worker
        log.debug("browser_worker_created", worker_id=worker.id)
        return worker

    async def _close_worker(self, worker: BrowserWorker) -> None:
        try:
            await worker.context.close()
            await worker.browser.close()
        except Exception:  # noqa: BLE001
            log.warning("browser_worker_close_error", worker_id=worker.id, exc_info=True)

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def _hand_out(self, worker: BrowserWorker) -> BrowserWorker:
        worker.available = False
        worker.use_count += 1
        worker.last_used_at = self._clock()
        return worker

    async def acquire(self, timeout: float | None = None) -> BrowserWorker:
        """Return an idle worker, waiting in the queue up to *timeout* seconds.

        Raises:
            BrowserPoolShutdownError: The pool is shutting down.
            BrowserPoolExhaustedError: No worker became free in time.
        """
        if self._shutting_down:
            raise BrowserPoolShutdownError("Browser pool is shutting down")
        await self.start()

        for worker in self._workers.values():
            if worker.available:
                log.debug("browser_worker_acquired", worker_id=worker.id, uses=worker.use_count + 1)
                return self._hand_out(worker)

        wait = self.acquire_timeout if timeout is None else timeout
        waiter: asyncio.Future[BrowserWorker] = asyncio.get_running_loop().create_future()
        self._queue.append(waiter)
        log.debug("browser_acquire_queued", position=len(self._queue), timeout=wait)
        try:
            return await asyncio.wait_for(asyncio.shield(waiter), wait)
        except asyncio.TimeoutError:
            if waiter in self._queue:
                self._queue.remove(waiter)
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # Handed a worker at the same instant the timer fired.
                await self.release(waiter.result())
            raise BrowserPoolExhaustedError(
                f"Timed out waiting for a browser worker ({wait:.0f}s)"
            ) from None

    async def release(self, worker: BrowserWorker) -> None:
        current = self._workers.get(worker.id)
        if current is None:
            log.warning("browser_release_unknown_worker", worker_id=worker.id)
            return

        age = self._clock() - current.created_at
        if current.use_count >= self.max_uses or age >= self.max_age_seconds:
            await self._recycle(current)
            return

        try:
            await current.page.goto("about:blank", timeout=5000)
        except Exception:  # noqa: BLE001
            log.debug("browser_page_reset_failed", worker_id=current.id)
        current.available = True
        self._drain_queue()

    def _next_waiter(self) -> asyncio.Future[BrowserWorker] | None:
        while self._queue:
            waiter = self._queue.popleft()
            if not waiter.done():
                return waiter
        return None

    def _drain_queue(self) -> None:
        for worker in self._workers.values():
            if not self._queue:
                return
            if not worker.available:
                continue
            waiter = self._next_waiter()
            if waiter is None:
                return
            waiter.set_result(self._hand_out(worker))

    async def _recycle(self, worker: BrowserWorker) -> None:
        log.debug(
            "browser_worker_recycled",
            worker_id=worker.id,
            uses=worker.use_count,
            age=round(self._clock() - worker.created_at),
        )
        self._workers.pop(worker.id, None)
        await self._close_worker(worker)
        if self._shutting_down:
            return
        try:
            replacement = await self._create_worker()
        except Exception as e:  # noqa: BLE001
            log.error("browser_worker_replace_failed", error=str(e))
            self._last_error = str(e)
            return
        waiter = self._next_waiter()
        if waiter is not None:
            waiter.set_result(self._hand_out(replacement))

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def record_solve(self, success: bool, solve_time_ms: float) -> None:
        self._solves += 1
        if success:
            self._successes += 1
        self._recent_times.append(solve_time_ms)

    def record_error(self, error: str) -> None:
        self._last_error = error

    def health(self) -> PoolHealth:
        available = sum(1 for w in self._workers.values() if w.available)
        average = sum(self._recent_times) / len(self._recent_times) if self._recent_times else 0.0
        return PoolHealth(
            total=len(self._workers),
            available=available,
            busy=len(self._workers) - available,
            queued=len(self._queue),
            average_solve_time_ms=round(average),
            success_rate=round(self._successes / self._solves, 2) if self._solves else 0.0,
            last_error=self._last_error,
        )
