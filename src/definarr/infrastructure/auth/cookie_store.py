"""Indexer session cookies: in-memory cache over a :class:`CookieRepositoryPort`.

The repository may be unavailable at any time; failures are logged and the
in-memory copy keeps serving.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone

import structlog

from definarr.domain.entities.session import CookieRecord
from definarr.domain.ports.cookie_repository import CookieRepositoryPort

log = structlog.get_logger(__name__)

ExpirationWarningCallback = Callable[[str, list[str], float], None]
"""``(indexer_id, expiring_cookie_names, seconds_until_expiry)``."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CookieStore:
    """Shared cookie cache keyed by indexer id.

    Args:
        repository: Persistence backend, or ``None`` for memory only.
        warning_seconds: How long before the earliest expiry a warning fires.
        clock: UTC time source (injectable for tests).
    """

    def __init__(
        self,
        repository: CookieRepositoryPort | None = None,
        *,
        warning_seconds: float = 300.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.warning_seconds = warning_seconds
        self._clock = clock
        self._memory: dict[str, CookieRecord] = {}
        self._lock = asyncio.Lock()
        self._callbacks: list[ExpirationWarningCallback] = []
        self._warned: dict[str, datetime] = {}
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(
        self,
        indexer_id: str,
        cookies: Mapping[str, str],
        expires_at: datetime,
        expirations: Mapping[str, datetime] | None = None,
    ) -> CookieRecord:
        """Merge *cookies* into the stored record and persist it."""
        async with self._lock:
            existing = self._memory.get(indexer_id)
            merged = {**(existing.cookies if existing else {}), **cookies}
            merged_expirations = {
                **(existing.expirations if existing else {}),
                **(expirations or {}),
            }
            record = CookieRecord(
                cookies=merged,
                expires_at=expires_at,
                updated_at=self._clock(),
                expirations=merged_expirations,
            )
            self._memory[indexer_id] = record
            self._warned.pop(indexer_id, None)

        if self.repository is not None:
            try:
                await self.repository.save(indexer_id, record)
            except Exception as e:  # noqa: BLE001
                log.error("cookies_persist_failed", indexer_id=indexer_id, error=str(e))
        return record

    async def load(self, indexer_id: str) -> CookieRecord | None:
        """Return only still-valid cookies, clearing the record when none remain."""
        async with self._lock:
            record = self._memory.get(indexer_id)
        if record is None and self.repository is not None:
            try:
                record = await self.repository.load(indexer_id)
            except Exception as e:  # noqa: BLE001
                log.error("cookies_load_failed", indexer_id=indexer_id, error=str(e))
                record = None
            if record is not None:
                async with self._lock:
                    self._memory.setdefault(indexer_id, record)

        if record is None:
            return None

        now = self._clock()
        if record.expires_at <= now:
            log.debug("cookies_session_expired", indexer_id=indexer_id)
            await self.clear(indexer_id)
            return None

        valid = {
            name: value
            for name, value in record.cookies.items()
            if name not in record.expirations or record.expirations[name] > now
        }
        if not valid:
            await self.clear(indexer_id)
            return None

        if len(valid) != len(record.cookies):
            log.debug(
                "cookies_expired_filtered",
                indexer_id=indexer_id,
                expired=len(record.cookies) - len(valid),
            )
            record = CookieRecord(
                cookies=valid,
                expires_at=record.expires_at,
                updated_at=record.updated_at,
                expirations={k: v for k, v in record.expirations.items() if k in valid},
            )
            async with self._lock:
                self._memory[indexer_id] = record
        return record

    async def clear(self, indexer_id: str) -> None:
        async with self._lock:
            self._memory.pop(indexer_id, None)
            self._warned.pop(indexer_id, None)
        if self.repository is not None:
            try:
                await self.repository.clear(indexer_id)
            except Exception as e:  # noqa: BLE001
                log.error("cookies_clear_failed", indexer_id=indexer_id, error=str(e))

    def seconds_until_expiry(self, indexer_id: str) -> float | None:
        """Seconds until the earliest cookie (or session) expiry, ``None`` if unknown."""
        record = self._memory.get(indexer_id)
        if record is None:
            return None
        earliest = min([record.expires_at, *record.expirations.values()])
        return max(0.0, (earliest - self._clock()).total_seconds())

    def needs_refresh(self, indexer_id: str) -> bool:
        remaining = self.seconds_until_expiry(indexer_id)
        return remaining is not None and remaining < self.warning_seconds

    # ------------------------------------------------------------------
    # Expiration warnings
    # ------------------------------------------------------------------

    def on_expiration_warning(self, callback: ExpirationWarningCallback) -> None:
        self._callbacks.append(callback)

    def check_expirations(self) -> list[str]:
        """Fire warnings for records expiring within the warning window.

        Each record warns once per expiry instant. Returns the warned ids.
        """
        now = self._clock()
        horizon = now + timedelta(seconds=self.warning_seconds)
        warned: list[str] = []
        for indexer_id, record in list(self._memory.items()):
            earliest = min([record.expires_at, *record.expirations.values()])
            if earliest > horizon or self._warned.get(indexer_id) == earliest:
                continue
            expiring = [name for name, at in record.expirations.items() if at <= horizon]
            if record.expires_at <= horizon:
                expiring = list(record.cookies)
            remaining = max(0.0, (earliest - now).total_seconds())
            log.warning(
                "cookies_expiring_soon",
                indexer_id=indexer_id,
                cookies=expiring,
                seconds=round(remaining),
            )
            self._warned[indexer_id] = earliest
            warned.append(indexer_id)
            for callback in self._callbacks:
                try:
                    callback(indexer_id, expiring, remaining)
                except Exception:  # noqa: BLE001
                    log.error("cookies_warning_callback_error", indexer_id=indexer_id, exc_info=True)
        return warned

    async def run_expiration_checks(self, interval_seconds: float = 60.0) -> None:
        """Periodic sweep; run as a background task and cancel to stop."""
        log.info("cookie_expiration_checks_started", interval=interval_seconds)
        try:
            while True:
                await asyncio.sleep(interval_seconds)
                self.check_expirations()
        except asyncio.CancelledError:
            log.info("cookie_expiration_checks_cancelled")
            raise

    def start_expiration_checks(self, interval_seconds: float = 60.0) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_expiration_checks(interval_seconds))

    async def stop_expiration_checks(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
