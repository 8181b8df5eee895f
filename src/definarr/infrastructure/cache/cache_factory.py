"""Builds the configured cache adapter."""

from __future__ import annotations

from typing import Literal

import structlog

from definarr.domain.ports.cache import CachePort
from definarr.infrastructure.cache.diskcache_adapter import DiskcacheAdapter
from definarr.infrastructure.cache.redis_adapter import RedisAdapter
from definarr.infrastructure.config.schema import CacheConfig

log = structlog.get_logger(__name__)

CacheBackend = Literal["diskcache", "redis"]

_REDIS_MAX_CONCURRENT = 50


def create_cache(config: CacheConfig) -> CachePort:
    """Create the cache adapter selected by ``config.backend``.

    Raises:
        ValueError: Unknown backend.
    """
    if config.backend == "diskcache":
        log.info(
            "cache_factory_create",
            backend=config.backend,
            directory=str(config.directory),
            ttl=config.ttl_seconds,
        )
        return DiskcacheAdapter(
            directory=config.directory,
            ttl_seconds=config.ttl_seconds,
            max_concurrent=config.max_concurrent,
        )
    if config.backend == "redis":
        log.info("cache_factory_create", backend=config.backend, ttl=config.ttl_seconds)
        return RedisAdapter(
            url=config.redis_url,
            ttl_seconds=config.ttl_seconds,
            max_concurrent=_REDIS_MAX_CONCURRENT,
        )
    raise ValueError(
        f"Unknown cache backend: {config.backend!r}. Must be 'diskcache' or 'redis'."
    )
