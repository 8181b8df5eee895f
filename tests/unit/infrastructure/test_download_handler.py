"""Tests for DownloadHandler (before request, infohash block, download selectors)."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import pytest
import respx

from definarr.domain.entities.definition import Definition
from definarr.domain.exceptions import DownloadResolutionError
from definarr.infrastructure.common.torrent import bencode_encode
from definarr.infrastructure.config.schema import HttpConfig
from definarr.infrastructure.engine.selectors import SelectorEngine
from definarr.infrastructure.engine.template import TemplateEngine
from definarr.infrastructure.http.client import IndexerHttpClient
from definarr.infrastructure.http.rate_limiter import RateLimiterRegistry
from definarr.infrastructure.runtime.download_handler import DownloadHandler

BASE = "https://tracker.example/"
DETAILS = f"{BASE}details.php?id=10"
HASH = "0123456789abcdef0123456789abcdef01234567"
TORRENT = bencode_encode({b"info": {b"name": b"x", b"length": 1}})


def _make_handler(make_definition: Callable[..., Definition], **overrides: Any) -> DownloadHandler:
    definition = make_definition(**overrides)
    templates = TemplateEngine()
    templates.set_site_link(BASE)
    http = IndexerHttpClient(
        indexer_id="testsite",
        base_url=BASE,
        config=HttpConfig(max_retries=0),
        rate_limiters=RateLimiterRegistry(indexer_requests=0, host_requests=0),
    )
    return DownloadHandler(definition, http, SelectorEngine(templates), base_url=BASE)


class TestPassthrough:
    async def test_no_download_block(self, make_definition: Callable[..., Definition]) -> None:
        handler = _make_handler(make_definition)
        request = await handler.resolve(DETAILS)
        assert request.url == DETAILS
        assert request.headers == {"Referer": BASE}
        assert request.magnet_url is None

    async def test_download_headers_expanded(self, make_definition: Callable[..., Definition]) -> None:
        handler = _make_handler(make_definition, download={"headers": {"X-Site": ["{{ .Config.sitelink }}"]}})
        request = await handler.resolve(DETAILS)
        assert request.headers == {"Referer": BASE, "X-Site": BASE}


class TestSelectors:
    @respx.mock
    async def test_first_matching_selector_wins(self, make_definition: Callable[..., Definition]) -> None:
        respx.get(f"{BASE}details.php").respond(200, text='<a class="dl" href="get/10.torrent">dl</a>')
        respx.get(f"{BASE}get/10.torrent").respond(200, content=TORRENT)
        handler = _make_handler(
            make_definition,
            download={
                "selectors": [
                    {"selector": "a.missing", "attribute": "href"},
                    {"selector": "a.dl", "attribute": "href"},
                ]
            },
        )
        request = await handler.resolve(DETAILS)
        assert request.url == f"{BASE}get/10.torrent"

    @respx.mock
    async def test_page_fetched_once(self, make_definition: Callable[..., Definition]) -> None:
        page = respx.get(f"{BASE}details.php").respond(
            200, text=f'<a class="magnet" href="magnet:?xt=urn:btih:{HASH}">m</a>'
        )
        handler = _make_handler(
            make_definition,
            download={
                "selectors": [
                    {"selector": "a.missing", "attribute": "href"},
                    {"selector": "a.magnet", "attribute": "href"},
                ]
            },
        )
        request = await handler.resolve(DETAILS)
        assert request.magnet_url == f"magnet:?xt=urn:btih:{HASH}"
        assert page.call_count == 1

    @respx.mock
    async def test_non_torrent_link_skipped(self, make_definition: Callable[..., Definition]) -> None:
        respx.get(f"{BASE}details.php").respond(
            200, text='<a class="a" href="fake.php">x</a><a class="b" href="real.torrent">y</a>'
        )
        respx.get(f"{BASE}fake.php").respond(200, text="<html>please log in</html>")
        respx.get(f"{BASE}real.torrent").respond(200, content=TORRENT)
        handler = _make_handler(
            make_definition,
            download={"selectors": [{"selector": "a.a", "attribute": "href"}, {"selector": "a.b", "attribute": "href"}]},
        )
        assert (await handler.resolve(DETAILS)).url == f"{BASE}real.torrent"

    @respx.mock
    async def test_link_test_disabled(self, make_definition: Callable[..., Definition]) -> None:
        respx.get(f"{BASE}details.php").respond(200, text='<a class="a" href="file.php">x</a>')
        handler = _make_handler(
            make_definition,
            testlinktorrent=False,
            download={"selectors": [{"selector": "a.a", "attribute": "href"}]},
        )
        assert (await handler.resolve(DETAILS)).url == f"{BASE}file.php"

    @respx.mock
    async def test_all_selectors_fail(self, make_definition: Callable[..., Definition]) -> None:
        respx.get(f"{BASE}details.php").respond(200, text="<html></html>")
        handler = _make_handler(make_definition, download={"selectors": [{"selector": "a.dl", "attribute": "href"}]})
        with pytest.raises(DownloadResolutionError):
            await handler.resolve(DETAILS)

    @respx.mock
    async def test_selector_filters(self, make_definition: Callable[..., Definition]) -> None:
        respx.get(f"{BASE}details.php").respond(200, text='<a class="dl" href="/go?u=/torrents/10">x</a>')
        respx.get(f"{BASE}torrents/10").respond(200, content=TORRENT)
        handler = _make_handler(
            make_definition,
            download={
                "selectors": [
                    {
                        "selector": "a.dl",
                        "attribute": "href",
                        "filters": [{"name": "querystring", "args": ["u"]}],
                    }
                ]
            },
        )
        assert (await handler.resolve(DETAILS)).url == f"{BASE}torrents/10"


class TestInfohash:
    @respx.mock
    async def test_magnet_built_from_page(self, make_definition: Callable[..., Definition]) -> None:
        respx.get(f"{BASE}details.php").respond(
            200, text=f'<span class="hash">{HASH.upper()}</span><h1>My Release</h1>'
        )
        handler = _make_handler(
            make_definition,
            download={"infohash": {"hash": {"selector": "span.hash"}, "title": {"selector": "h1"}}},
        )
        request = await handler.resolve(DETAILS)
        assert request.magnet_url is not None
        assert request.magnet_url.startswith(f"magnet:?xt=urn:btih:{HASH}&dn=My%20Release")

    @respx.mock
    async def test_missing_hash_without_selectors(self, make_definition: Callable[..., Definition]) -> None:
        respx.get(f"{BASE}details.php").respond(200, text="<span class='hash'>short</span>")
        handler = _make_handler(
            make_definition,
            download={"infohash": {"hash": {"selector": "span.hash"}, "title": {"selector": "h1"}}},
        )
        with pytest.raises(DownloadResolutionError, match="InfoHash"):
            await handler.resolve(DETAILS)


class TestBefore:
    @respx.mock
    async def test_before_post_then_selector_on_its_response(
        self, make_definition: Callable[..., Definition]
    ) -> None:
        before = respx.post(f"{BASE}thanks.php").respond(
            200, text=f'<a class="dl" href="magnet:?xt=urn:btih:{HASH}">m</a>'
        )
        handler = _make_handler(
            make_definition,
            download={
                "before": {
                    "path": "thanks.php",
                    "method": "post",
                    "inputs": {"torrentid": "{{ .DownloadUri.Query.id }}"},
                },
                "selectors": [{"selector": "a.dl", "attribute": "href", "usebeforeresponse": True}],
            },
        )
        request = await handler.resolve(DETAILS)
        assert request.magnet_url == f"magnet:?xt=urn:btih:{HASH}"
        assert parse_qs(before.calls.last.request.content.decode()) == {"torrentid": ["10"]}


class TestDownloadUriVariables:
    def test_variables(self, make_definition: Callable[..., Definition]) -> None:
        handler = _make_handler(make_definition)
        handler.set_download_uri_variables("https://tracker.example/dl/10/file.torrent?id=10&k=v")
        get = handler.templates.get_variable
        assert get(".DownloadUri.AbsolutePath") == "/dl/10/file.torrent"
        assert get(".DownloadUri.Query") == "?id=10&k=v"
        assert get(".DownloadUri.Query.k") == "v"
        assert get(".DownloadUri.Segments.1") == "10"
        assert get(".DownloadUri.Host") == "tracker.example"
