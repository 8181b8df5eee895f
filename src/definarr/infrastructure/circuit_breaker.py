"""Per-indexer circuit breaker to skip consistently failing indexers.

When an indexer accumulates ``failure_threshold`` consecutive failed
searches, the breaker opens and subsequent searches are short-circuited
for ``cooldown_seconds``.  After the cooldown, a single trial search is
allowed (half-open state).  If the trial succeeds the breaker resets; if
it fails the cooldown restarts.

Status records are mirrored to an optional
:class:`IndexerStatusRepositoryPort` so a restarted process keeps
skipping indexers that were disabled before it went down.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum

import structlog

from definarr.domain.entities.session import IndexerStatus
from definarr.domain.ports.status_repository import IndexerStatusRepositoryPort

log = structlog.get_logger(__name__)


class _State(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IndexerCircuitBreaker:
    """Track per-indexer failure counts and manage open/closed state.

    Not thread-safe; safe for single-threaded asyncio (state changes never
    span an ``await``).
    """

    def __init__(
        self,
        repository: IndexerStatusRepositoryPort | None = None,
        *,
        failure_threshold: int = 5,
        cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._wall_clock = wall_clock
        self._statuses: dict[str, IndexerStatus] = {}
        self._states: dict[str, _State] = {}
        self._opened_at: dict[str, float] = {}
        self._hydrated: set[str] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def allow(self, indexer_id: str) -> bool:
        """Return ``True`` if *indexer_id* may run a search.

        - **CLOSED**: always allowed.
        - **OPEN**: blocked until cooldown expires, then transitions to
          HALF_OPEN and allows a single trial search.
        - **HALF_OPEN**: allowed (trial in progress).
        """
        state = self._states.get(indexer_id, _State.CLOSED)

        if state == _State.CLOSED:
            return True

        if state == _State.OPEN:
            elapsed = self._clock() - self._opened_at.get(indexer_id, 0.0)
            if elapsed >= self._cooldown:
                self._states[indexer_id] = _State.HALF_OPEN
                log.info("circuit_half_open", indexer_id=indexer_id)
                return True
            return False

        return True

    async def load(self, indexer_id: str) -> IndexerStatus:
        """Restore persisted status once per indexer; reopen if still disabled."""
        if indexer_id in self._hydrated or self._repository is None:
            self._hydrated.add(indexer_id)
            return self.status(indexer_id)
        self._hydrated.add(indexer_id)
        try:
            stored = await self._repository.load(indexer_id)
        except Exception as e:  # noqa: BLE001
            log.warning("indexer_status_load_failed", indexer_id=indexer_id, error=str(e))
            stored = None
        if stored is None:
            return self.status(indexer_id)

        self._statuses[indexer_id] = stored
        if stored.disabled_until is not None:
            remaining = (stored.disabled_until - self._wall_clock()).total_seconds()
            if remaining > 0:
                self._states[indexer_id] = _State.OPEN
                self._opened_at[indexer_id] = self._clock() - (self._cooldown - remaining)
                log.info(
                    "circuit_restored_open",
                    indexer_id=indexer_id,
                    remaining_seconds=round(remaining),
                )
        return stored

    async def record_success(self, indexer_id: str) -> None:
        """Record a successful search; resets the breaker to CLOSED."""
        previous = self._states.pop(indexer_id, None)
        self._opened_at.pop(indexer_id, None)
        status = self.status(indexer_id)
        status.consecutive_failures = 0
        status.last_error = None
        status.disabled_until = None
        status.last_success_at = self._wall_clock()
        if previous is not None:
            log.info("circuit_closed", indexer_id=indexer_id)
        await self._persist(status)

    async def record_failure(self, indexer_id: str, error: BaseException | str | None = None) -> None:
        """Record a failed search.

        Increments the consecutive failure counter.  When the counter
        reaches the threshold the breaker opens.  In HALF_OPEN state,
        a single failure re-opens the breaker immediately.
        """
        state = self._states.get(indexer_id, _State.CLOSED)
        status = self.status(indexer_id)
        status.consecutive_failures += 1
        status.last_error = str(error) if error is not None else None
        status.last_failure_at = self._wall_clock()

        if state == _State.HALF_OPEN or status.consecutive_failures >= self._threshold:
            self._open(indexer_id, status)
        await self._persist(status)

    def state(self, indexer_id: str) -> str:
        """Return the current state as a string (for diagnostics)."""
        return self._states.get(indexer_id, _State.CLOSED).value

    def status(self, indexer_id: str) -> IndexerStatus:
        status = self._statuses.get(indexer_id)
        if status is None:
            status = IndexerStatus(indexer_id=indexer_id)
            self._statuses[indexer_id] = status
        return status

    async def reset(self, indexer_id: str) -> None:
        """Manually reset *indexer_id* back to CLOSED."""
        await self.record_success(indexer_id)

    def snapshot(self) -> dict[str, dict[str, object]]:
        """Return a diagnostic snapshot of all tracked indexers."""
        result: dict[str, dict[str, object]] = {}
        for indexer_id in sorted(set(self._statuses) | set(self._states)):
            status = self.status(indexer_id)
            result[indexer_id] = {
                "state": self.state(indexer_id),
                "failures": status.consecutive_failures,
                "last_error": status.last_error,
            }
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open(self, indexer_id: str, status: IndexerStatus) -> None:
        self._states[indexer_id] = _State.OPEN
        self._opened_at[indexer_id] = self._clock()
        status.disabled_until = self._wall_clock() + timedelta(seconds=self._cooldown)
        log.warning(
            "circuit_opened",
            indexer_id=indexer_id,
            failures=status.consecutive_failures,
            cooldown_seconds=self._cooldown,
        )

    async def _persist(self, status: IndexerStatus) -> None:
        if self._repository is None:
            return
        try:
            await self._repository.save(status)
        except Exception as e:  # noqa: BLE001
            log.warning("indexer_status_save_failed", indexer_id=status.indexer_id, error=str(e))
