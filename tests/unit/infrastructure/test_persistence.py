"""Tests for the cookie and indexer-status repositories over a real diskcache."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from definarr.domain.entities.session import CookieRecord, IndexerStatus
from definarr.infrastructure.cache.diskcache_adapter import DiskcacheAdapter
from definarr.infrastructure.persistence.cookie_cache import CacheCookieRepository
from definarr.infrastructure.persistence.status_cache import CacheIndexerStatusRepository


@pytest.fixture()
async def diskcache(tmp_path: Path) -> AsyncIterator[DiskcacheAdapter]:
    adapter = DiskcacheAdapter(directory=tmp_path / "cache", ttl_seconds=3600, max_concurrent=5)
    async with adapter:
        yield adapter


def _record(expires_in: timedelta = timedelta(days=1)) -> CookieRecord:
    now = datetime.now(timezone.utc)
    return CookieRecord(
        cookies={"uid": "1", "pass": "abc"},
        expires_at=now + expires_in,
        updated_at=now,
        expirations={"pass": now + timedelta(hours=2)},
    )


class TestCookieRepository:
    async def test_save_load_clear(self, diskcache: DiskcacheAdapter) -> None:
        repo = CacheCookieRepository(diskcache)
        record = _record()

        await repo.save("tracker", record)
        loaded = await repo.load("tracker")

        assert loaded == record
        assert await diskcache.exists("cookies:tracker")
        await repo.clear("tracker")
        assert await repo.load("tracker") is None

    async def test_corrupt_record_is_a_miss(self, diskcache: DiskcacheAdapter) -> None:
        await diskcache.set("cookies:tracker", "{not json")
        assert await CacheCookieRepository(diskcache).load("tracker") is None

    async def test_ttl_follows_session_expiry(self) -> None:
        cache = MagicMock()
        cache.set = AsyncMock()
        repo = CacheCookieRepository(cache, ttl_seconds=30 * 24 * 3600)

        await repo.save("tracker", _record(timedelta(hours=1)))
        ttl = cache.set.await_args.kwargs["ttl"]
        assert 3500 < ttl <= 3600

        await repo.save("tracker", _record(timedelta(hours=-1)))
        assert cache.set.await_args.kwargs["ttl"] == 1


class TestStatusRepository:
    async def test_save_load(self, diskcache: DiskcacheAdapter) -> None:
        repo = CacheIndexerStatusRepository(diskcache)
        now = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
        status = IndexerStatus(
            indexer_id="tracker",
            consecutive_failures=3,
            last_error="Connection timed out",
            last_failure_at=now,
            disabled_until=now + timedelta(minutes=5),
        )

        await repo.save(status)

        assert await repo.load("tracker") == status
        assert await repo.load("other") is None

    async def test_corrupt_record_is_a_miss(self, diskcache: DiskcacheAdapter) -> None:
        await diskcache.set("indexer-status:tracker", '{"consecutive_failures": 1}')
        assert await CacheIndexerStatusRepository(diskcache).load("tracker") is None
