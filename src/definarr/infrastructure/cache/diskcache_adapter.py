"""Diskcache adapter: SQLite-backed store for cookies and indexer status."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import structlog
from diskcache import Cache as DiskCache

log = structlog.get_logger(__name__)


class DiskcacheAdapter:
    """Async wrapper for diskcache.Cache (sync-only library).

    Disk I/O runs in ``asyncio.to_thread``; a semaphore bounds parallel
    SQLite access. The cache opens lazily on first use so callers that
    never touch persistence pay nothing.

    Args:
        directory: SQLite DB path.
        ttl_seconds: Default TTL for ``set()`` without explicit value.
        max_concurrent: Max parallel disk operations.
    """

    def __init__(
        self,
        directory: str | Path = "./.cache/definarr",
        ttl_seconds: int = 3600,
        max_concurrent: int = 10,
    ) -> None:
        self.directory = Path(directory)
        self.default_ttl = ttl_seconds
        self._cache: DiskCache | None = None
        self._open_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self) -> DiskcacheAdapter:
        await self._ensure_open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def _ensure_open(self) -> DiskCache:
        if self._cache is not None:
            return self._cache
        async with self._open_lock:
            if self._cache is None:
                self._cache = await asyncio.to_thread(DiskCache, str(self.directory))
                log.info("diskcache_opened", path=str(self.directory))
        return self._cache

    async def aclose(self) -> None:
        if self._cache is not None:
            await asyncio.to_thread(self._cache.close)
            self._cache = None
            log.info("diskcache_closed", directory=str(self.directory))

    async def get(self, key: str) -> Optional[Any]:
        cache = await self._ensure_open()
        async with self._semaphore:
            value = await asyncio.to_thread(cache.get, key, default=None)
        log.debug("cache_get", key=key, hit=value is not None)
        return value

    async def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        cache = await self._ensure_open()
        expire_time = ttl if ttl is not None else self.default_ttl
        async with self._semaphore:
            await asyncio.to_thread(cache.set, key, value, expire=expire_time)
        log.debug("cache_set", key=key, ttl=expire_time)

    async def delete(self, key: str) -> bool:
        cache = await self._ensure_open()
        async with self._semaphore:
            deleted = await asyncio.to_thread(cache.delete, key)
        log.debug("cache_delete", key=key, deleted=deleted)
        return bool(deleted)

    async def exists(self, key: str) -> bool:
        cache = await self._ensure_open()
        async with self._semaphore:
            return await asyncio.to_thread(cache.__contains__, key)

    async def clear(self) -> None:
        cache = await self._ensure_open()
        async with self._semaphore:
            await asyncio.to_thread(cache.clear)
        log.warning("cache_cleared", directory=str(self.directory))
