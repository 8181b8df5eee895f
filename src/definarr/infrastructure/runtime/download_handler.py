"""Turns a release's download URL into the URL (or magnet) that actually serves it.

Definitions without a ``download`` block download the URL verbatim.
Otherwise the optional ``before`` request runs first, then the
``infohash`` block, then each download selector in order; the first
candidate that produces a link wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse

import httpx
import structlog

from definarr.domain.entities.definition import (
    BeforeBlock,
    Definition,
    DownloadBlock,
    DownloadSelector,
    InfohashBlock,
    SelectorBlock,
)
from definarr.domain.exceptions import DefinarrError, DownloadResolutionError
from definarr.infrastructure.common.torrent import build_magnet, looks_like_torrent
from definarr.infrastructure.common.urls import redact_url, resolve_url
from definarr.infrastructure.engine.selectors import SelectorEngine, parse_html
from definarr.infrastructure.http.client import HttpResponse, IndexerHttpClient

log = structlog.get_logger(__name__)

_NON_HEX_RE = re.compile(r"[^a-fA-F0-9]")


@dataclass(frozen=True)
class DownloadRequest:
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    magnet_url: str | None = None


class DownloadHandler:
    def __init__(
        self,
        definition: Definition,
        http: IndexerHttpClient,
        selectors: SelectorEngine,
        *,
        base_url: str,
    ) -> None:
        self.definition = definition
        self.http = http
        self.selectors = selectors
        self.templates = selectors.templates
        self.base_url = base_url

    async def resolve(self, download_url: str) -> DownloadRequest:
        """Resolve *download_url*.

        Raises:
            DownloadResolutionError: The infohash block and every selector failed.
        """
        download = self.definition.download
        self.set_download_uri_variables(download_url)
        headers = self._headers(download)
        if download is None or (
            download.infohash is None and not download.selectors and download.before is None
        ):
            return DownloadRequest(download_url, headers=headers)

        method = download.method.upper()
        before: HttpResponse | None = None
        if download.before is not None:
            before = await self._execute_before(download.before, download_url, headers)

        if download.infohash is not None:
            magnet = await self._from_infohash(download.infohash, download_url, headers, before)
            if magnet is not None:
                return DownloadRequest(magnet, method=method, headers=headers, magnet_url=magnet)

        if not download.selectors:
            if download.infohash is not None:
                raise DownloadResolutionError("InfoHash selector did not match")
            return DownloadRequest(download_url, method=method, headers=headers)

        page_cache: dict[str, str] = {}
        for candidate in download.selectors:
            try:
                resolved = await self._from_selector(
                    candidate, download_url, headers, before, page_cache
                )
            except (DefinarrError, httpx.HTTPError) as e:
                log.debug("download_selector_failed", selector=candidate.selector, error=str(e))
                continue
            if resolved is None:
                continue
            if resolved.startswith("magnet:"):
                return DownloadRequest(resolved, method=method, headers=headers, magnet_url=resolved)
            if self.definition.test_link_torrent and not await self._test_torrent_link(
                resolved, headers
            ):
                log.debug("download_link_not_torrent", url=redact_url(resolved))
                continue
            return DownloadRequest(resolved, method=method, headers=headers)

        raise DownloadResolutionError("Download selectors did not match")

    def set_download_uri_variables(self, url: str) -> None:
        parsed = urlparse(url)
        self.templates.set_variable(".DownloadUri.AbsoluteUri", url)
        self.templates.set_variable(".DownloadUri.AbsolutePath", parsed.path)
        self.templates.set_variable(".DownloadUri.Scheme", parsed.scheme)
        self.templates.set_variable(".DownloadUri.Host", parsed.netloc)
        self.templates.set_variable(".DownloadUri.Query", f"?{parsed.query}" if parsed.query else "")
        self.templates.set_variable(".DownloadUri.Fragment", f"#{parsed.fragment}" if parsed.fragment else "")
        for key, value in parse_qsl(parsed.query, keep_blank_values=True):
            self.templates.set_variable(f".DownloadUri.Query.{key}", value)
        for index, segment in enumerate(s for s in parsed.path.split("/") if s):
            self.templates.set_variable(f".DownloadUri.Segments.{index}", segment)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _headers(self, download: DownloadBlock | None) -> dict[str, str]:
        headers = {"Referer": self.base_url}
        source = (download.headers if download and download.headers else None) or self.definition.search.headers
        for name, values in source.items():
            if values:
                headers[name] = self.templates.expand(values[0])
        return headers

    async def _execute_before(
        self, before: BeforeBlock, download_url: str, headers: dict[str, str]
    ) -> HttpResponse:
        path = before.path or ""
        if before.path_selector is not None:
            page = await self.http.get(download_url, headers=headers)
            scraped = self.selectors.select(
                parse_html(page.body), before.path_selector, required=False
            ).value
            if scraped:
                path = scraped

        url = resolve_url(download_url, self.templates.expand(path)) or download_url
        inputs = {key: self.templates.expand(value) for key, value in before.inputs.items()}
        if before.method == "post":
            return await self.http.post(url, headers=headers, data=inputs)
        if inputs:
            url = f"{url}{'&' if '?' in url else '?'}{urlencode(inputs)}"
        return await self.http.get(url, headers=headers)

    async def _page(
        self,
        download_url: str,
        headers: dict[str, str],
        before: HttpResponse | None,
        use_before: bool,
        cache: dict[str, str] | None = None,
    ) -> str:
        if use_before and before is not None:
            return before.body
        if cache is not None and download_url in cache:
            return cache[download_url]
        body = (await self.http.get(download_url, headers=headers)).body
        if cache is not None:
            cache[download_url] = body
        return body

    async def _from_infohash(
        self,
        block: InfohashBlock,
        download_url: str,
        headers: dict[str, str],
        before: HttpResponse | None,
    ) -> str | None:
        document: Any = parse_html(
            await self._page(download_url, headers, before, block.use_before_response)
        )
        info_hash = self.selectors.select(document, block.hash, required=False).value
        cleaned = _NON_HEX_RE.sub("", info_hash or "").lower()
        if len(cleaned) != 40:
            log.debug("download_infohash_missing", url=redact_url(download_url))
            return None
        title = self.selectors.select(document, block.title, required=False).value or "Unknown"
        return build_magnet(cleaned, title)

    async def _from_selector(
        self,
        candidate: DownloadSelector,
        download_url: str,
        headers: dict[str, str],
        before: HttpResponse | None,
        cache: dict[str, str],
    ) -> str | None:
        body = await self._page(download_url, headers, before, candidate.use_before_response, cache)
        block = SelectorBlock(
            selector=candidate.selector,
            attribute=candidate.attribute,
            filters=candidate.filters,
            optional=True,
        )
        value = self.selectors.select(parse_html(body), block, required=False).value
        if not value:
            return None
        return resolve_url(download_url, value)

    async def _test_torrent_link(self, url: str, headers: dict[str, str]) -> bool:
        try:
            response = await self.http.get(url, headers=headers, follow_redirects=True)
        except (DefinarrError, httpx.HTTPError):
            return False
        return looks_like_torrent(response.content)
