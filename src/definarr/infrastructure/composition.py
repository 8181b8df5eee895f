"""Composition root: shared resources every indexer instance is built from."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import structlog

from definarr.domain.ports.cache import CachePort
from definarr.infrastructure.auth.cookie_store import CookieStore
from definarr.infrastructure.browser.pool import BrowserPool
from definarr.infrastructure.browser.solver import BrowserSolver
from definarr.infrastructure.browser.stealth import StealthBrowserLauncher
from definarr.infrastructure.cache.cache_factory import create_cache
from definarr.infrastructure.circuit_breaker import IndexerCircuitBreaker
from definarr.infrastructure.config.schema import AppConfig
from definarr.infrastructure.definitions.loader import DefinitionLoader
from definarr.infrastructure.http.rate_limiter import RateLimiterRegistry
from definarr.infrastructure.persistence.cookie_cache import CacheCookieRepository
from definarr.infrastructure.persistence.status_cache import CacheIndexerStatusRepository

log = structlog.get_logger(__name__)


@dataclass
class EngineContext:
    """Process-wide handles threaded through every indexer constructor."""

    config: AppConfig
    cache: CachePort
    http_client: httpx.AsyncClient
    rate_limiters: RateLimiterRegistry
    cookie_store: CookieStore
    circuit_breaker: IndexerCircuitBreaker
    definitions: DefinitionLoader
    solver: BrowserSolver | None = None


@asynccontextmanager
async def engine_context(config: AppConfig) -> AsyncIterator[EngineContext]:
    """Initialize and clean up all shared resources.

    Order matters:
        1. Cache (backs cookie and status repositories)
        2. HTTP client (shared connection pool)
        3. Rate limiters, cookie store, circuit breaker
        4. Browser solver (only when enabled; browsers start lazily)
        5. Definition loader
    """
    # ========== 1) Cache ==========
    cache = create_cache(config.cache)
    await cache.__aenter__()
    log.info("cache_initialized", backend=config.cache.backend)

    # ========== 2) HTTP client ==========
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.http.timeout_seconds),
        headers={"User-Agent": config.http.user_agent},
        follow_redirects=True,
    )
    log.info("http_client_initialized")

    # ========== 3) Shared per-indexer state ==========
    rate_limiters = RateLimiterRegistry(
        indexer_requests=config.http.rate_limit_requests,
        period=config.http.rate_limit_period_seconds,
        host_requests=config.http.host_rate_limit_requests,
        max_wait=config.http.max_rate_limit_wait_seconds,
    )
    cookie_store = CookieStore(
        CacheCookieRepository(cache, ttl_seconds=config.cache.ttl_seconds),
        warning_seconds=config.cookies.warning_seconds,
    )
    cookie_store.start_expiration_checks(config.cookies.check_interval_seconds)
    circuit_breaker = IndexerCircuitBreaker(
        CacheIndexerStatusRepository(cache),
        failure_threshold=config.search.failure_threshold,
        cooldown_seconds=config.search.failure_cooldown_seconds,
    )

    # ========== 4) Browser solver ==========
    solver: BrowserSolver | None = None
    if config.browser.enabled:
        pool = BrowserPool(
            StealthBrowserLauncher(
                headless=config.browser.headless,
                user_agent=config.browser.user_agent,
            ),
            size=config.browser.pool_size,
            max_uses=config.browser.max_uses,
            max_age_seconds=config.browser.max_age_seconds,
            acquire_timeout=config.browser.acquire_timeout_seconds,
        )
        solver = BrowserSolver(
            pool,
            solve_timeout=config.browser.solve_timeout_seconds,
            cache_ttl_seconds=config.browser.cookie_cache_ttl_seconds,
            max_concurrent=config.browser.max_concurrent_solves,
            user_agent=config.browser.user_agent,
        )
        log.info("browser_solver_initialized", pool_size=config.browser.pool_size)

    # ========== 5) Definitions ==========
    definitions = DefinitionLoader(config.definitions_dir)

    ctx = EngineContext(
        config=config,
        cache=cache,
        http_client=http_client,
        rate_limiters=rate_limiters,
        cookie_store=cookie_store,
        circuit_breaker=circuit_breaker,
        definitions=definitions,
        solver=solver,
    )
    log.info("engine_startup_complete")

    try:
        yield ctx
    finally:
        # ========== Cleanup (reverse order) ==========
        if solver is not None:
            await solver.shutdown()
            log.info("browser_solver_closed")

        await cookie_store.stop_expiration_checks()

        await http_client.aclose()
        log.info("http_client_closed")

        await cache.aclose()
        log.info("cache_closed")

        log.info("engine_shutdown_complete")
