"""Shared test fixtures for the definarr test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from definarr.domain.entities.definition import Definition
from definarr.domain.entities.release import ReleaseResult, TorrentInfo
from definarr.infrastructure.auth.cookie_store import CookieStore
from definarr.infrastructure.circuit_breaker import IndexerCircuitBreaker
from definarr.infrastructure.composition import EngineContext
from definarr.infrastructure.config.schema import AppConfig, HttpConfig
from definarr.infrastructure.definitions.loader import DefinitionLoader, parse_definition
from definarr.infrastructure.engine.selectors import SelectorEngine
from definarr.infrastructure.engine.template import TemplateEngine
from definarr.infrastructure.http.rate_limiter import RateLimiterRegistry

# ---------------------------------------------------------------------------
# Definition documents
# ---------------------------------------------------------------------------

BASE_DEFINITION: dict[str, Any] = {
    "id": "testsite",
    "name": "Test Site",
    "links": ["https://tracker.example/"],
    "caps": {
        "categorymappings": [
            {"id": "1", "cat": "Movies/HD", "desc": "HD Movies"},
            {"id": "2", "cat": "TV/HD", "desc": "HD TV"},
            {"id": "3", "cat": "Audio", "desc": "Music"},
        ],
        "modes": {
            "search": ["q"],
            "tv-search": ["q", "season", "ep"],
            "movie-search": ["q", "imdbid"],
        },
    },
    "search": {
        "paths": [{"path": "search.php"}],
        "inputs": {"q": "{{ .Keywords }}"},
        "rows": {"selector": "table.results tr.row"},
        "fields": {
            "title": {"selector": "a.title"},
            "details": {"selector": "a.title", "attribute": "href"},
            "download": {"selector": "a.download", "attribute": "href"},
            "category": {"selector": "td.cat"},
            "size": {"selector": "td.size"},
            "seeders": {"selector": "td.seeders"},
            "leechers": {"selector": "td.leechers"},
            "date": {"selector": "td.date", "optional": True},
        },
    },
}

RESULTS_HTML = """
<html><body>
<table class="results">
  <tr class="row">
    <td class="cat">1</td>
    <td><a class="title" href="/details.php?id=10">Movie.2024.1080p.BluRay</a></td>
    <td><a class="download" href="/download.php?id=10">dl</a></td>
    <td class="size">1.5 GB</td>
    <td class="seeders">42</td>
    <td class="leechers">3</td>
    <td class="date">2024-05-01 12:00:00</td>
  </tr>
  <tr class="row">
    <td class="cat">2</td>
    <td><a class="title" href="/details.php?id=11">My.Show.S01E05.720p</a></td>
    <td><a class="download" href="/download.php?id=11">dl</a></td>
    <td class="size">700 MB</td>
    <td class="seeders">7</td>
    <td class="leechers">1</td>
  </tr>
</table>
</body></html>
"""


@pytest.fixture()
def definition_data() -> dict[str, Any]:
    """A mutable copy of the baseline definition document."""
    return deepcopy(BASE_DEFINITION)


@pytest.fixture()
def make_definition() -> Callable[..., Definition]:
    """Build a validated definition from the baseline with top-level overrides."""

    def _make(**overrides: Any) -> Definition:
        data = deepcopy(BASE_DEFINITION)
        data.update(overrides)
        return parse_definition(data, source="test.yml")

    return _make


@pytest.fixture()
def definition(make_definition: Callable[..., Definition]) -> Definition:
    return make_definition()


@pytest.fixture()
def results_html() -> str:
    return RESULTS_HTML


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def templates() -> TemplateEngine:
    engine = TemplateEngine()
    engine.set_site_link("https://tracker.example/")
    return engine


@pytest.fixture()
def selectors(templates: TemplateEngine) -> SelectorEngine:
    return SelectorEngine(templates)


# ---------------------------------------------------------------------------
# Domain entity fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def torrent_release() -> ReleaseResult:
    return ReleaseResult(
        guid="https://tracker.example/details.php?id=10",
        title="Movie.2024.1080p.BluRay",
        download_url="https://tracker.example/download.php?id=10",
        indexer_id="testsite",
        protocol="torrent",
        size=1_610_612_736,
        categories=(2040,),
        torrent=TorrentInfo(seeders=42, leechers=3),
    )


# ---------------------------------------------------------------------------
# Infrastructure fakes
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_cache() -> MagicMock:
    """In-memory async cache implementing the cache port."""
    store: dict[str, Any] = {}
    cache = MagicMock()

    async def _get(key: str) -> Any:
        return store.get(key)

    async def _set(key: str, value: Any, ttl: int | None = None) -> bool:
        store[key] = value
        return True

    async def _delete(key: str) -> bool:
        return store.pop(key, None) is not None

    async def _exists(key: str) -> bool:
        return key in store

    cache.get = AsyncMock(side_effect=_get)
    cache.set = AsyncMock(side_effect=_set)
    cache.delete = AsyncMock(side_effect=_delete)
    cache.exists = AsyncMock(side_effect=_exists)
    cache.clear = AsyncMock(side_effect=lambda: store.clear())
    cache.store = store
    return cache


class FakeClock:
    """Manually advanced clock for time-dependent components."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.advance(seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
async def engine_ctx(tmp_path: Path, mock_cache: MagicMock) -> AsyncIterator[EngineContext]:
    """Engine context with unlimited rate limits, no retries and no browser."""
    config = AppConfig(definitions_dir=tmp_path, http=HttpConfig(max_retries=0))
    async with httpx.AsyncClient() as client:
        yield EngineContext(
            config=config,
            cache=mock_cache,
            http_client=client,
            rate_limiters=RateLimiterRegistry(indexer_requests=0, host_requests=0),
            cookie_store=CookieStore(),
            circuit_breaker=IndexerCircuitBreaker(failure_threshold=2),
            definitions=DefinitionLoader(tmp_path),
        )
