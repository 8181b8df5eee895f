"""One configured indexer instance: search, test and download over a definition.

Search flow::

    ensure logged in -> build requests -> send each (re-login once on an
    expired session) -> parse -> concatenate in request order

Per-request failures are collected; the search only raises when every
request of the batch failed, so health tracking can tell "no results"
from "broken indexer".
"""

from __future__ import annotations

import re
import time
from typing import Any
from urllib.parse import urljoin

import structlog

from definarr.domain.entities.criteria import SearchCriteria
from definarr.domain.entities.definition import Definition
from definarr.domain.entities.release import DownloadResult, ReleaseResult
from definarr.domain.entities.session import IndexerRecord
from definarr.domain.exceptions import (
    AllMirrorsFailedError,
    DefinarrError,
    DownloadResolutionError,
    HttpError,
    IndexerApiError,
    IndexerTestError,
    LoginError,
    SearchFailedError,
)
from definarr.domain.ports.streaming_catalog import StreamingCatalogPort
from definarr.infrastructure.auth.auth_manager import AuthManager
from definarr.infrastructure.circuit_breaker import IndexerCircuitBreaker
from definarr.infrastructure.common.torrent import (
    info_hash_from_magnet,
    info_hash_from_torrent,
    looks_like_torrent,
)
from definarr.infrastructure.common.urls import REDACTED, redact_url
from definarr.infrastructure.engine.template import TemplateEngine
from definarr.infrastructure.http.client import HttpResponse, IndexerHttpClient
from definarr.infrastructure.protocols import ProtocolSettings
from definarr.infrastructure.runtime.download_handler import DownloadHandler
from definarr.infrastructure.runtime.errors import sanitize_error_message
from definarr.infrastructure.runtime.request_builder import HttpRequestDescriptor, RequestBuilder
from definarr.infrastructure.runtime.response_parser import ResponseParser

log = structlog.get_logger(__name__)

MAX_DOWNLOAD_REDIRECTS = 5
STREAM_SCHEME = "stream://"
DOWNLOAD_ACCEPT = "application/x-bittorrent, application/x-nzb, */*"

_API_ERROR_RE = re.compile(r'<error\s+code="(\d+)"(?:\s+description="([^"]*)")?', re.IGNORECASE)
_REDACTED_ENCODED = "%5BREDACTED%5D"
_ID_PARAM_RE = re.compile(r"[?&]id=([^&]+)")

# Capability mode name -> newznab ``t`` value it is requested with.
_MODE_TO_API_FUNCTION = {
    "search": "search",
    "tv-search": "tvsearch",
    "movie-search": "movie",
    "music-search": "music",
    "book-search": "book",
}
_SEARCH_TYPE_MODE = {
    "basic": "search",
    "tv": "tv-search",
    "movie": "movie-search",
    "music": "music-search",
    "book": "book-search",
}


class UnifiedIndexer:
    """Uniform ``search / test / download_content`` surface over one definition.

    Collaborators are built by :class:`~definarr.application.factories.IndexerFactory`
    and share one :class:`TemplateEngine`, so ``.Config.*`` set at construction is
    visible to login, search and download templates alike.
    """

    def __init__(
        self,
        record: IndexerRecord,
        definition: Definition,
        *,
        templates: TemplateEngine,
        http: IndexerHttpClient,
        requests: RequestBuilder,
        parser: ResponseParser,
        auth: AuthManager,
        downloads: DownloadHandler,
        protocol_settings: ProtocolSettings,
        circuit_breaker: IndexerCircuitBreaker | None = None,
        catalog: StreamingCatalogPort | None = None,
    ) -> None:
        self.id = record.id
        self.name = record.name
        self.record = record
        self.definition = definition
        self.protocol = definition.protocol
        self.templates = templates
        self.http = http
        self.requests = requests
        self.parser = parser
        self.auth = auth
        self.downloads = downloads
        self.protocol_settings = protocol_settings
        self.circuit_breaker = circuit_breaker
        self.catalog = catalog
        self.settings: dict[str, Any] = dict(record.settings)
        self.log = log.bind(indexer_id=self.id, indexer=self.name)

        if self.protocol == "usenet":
            for mode, params in definition.caps.modes.items():
                function = _MODE_TO_API_FUNCTION.get(mode)
                if function is not None and params:
                    self.requests.set_supported_params(function, params)

    @property
    def base_url(self) -> str:
        return self.requests.base_url

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def can_search(self, criteria: SearchCriteria) -> bool:
        """Whether the definition advertises a mode able to serve *criteria*."""
        modes = self.definition.caps.modes
        if criteria.search_type == "basic" or not modes:
            return True
        if _SEARCH_TYPE_MODE[criteria.search_type] in modes:
            return True
        return criteria.has_query and "search" in modes

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, criteria: SearchCriteria) -> list[ReleaseResult]:
        started = time.monotonic()
        try:
            if self.definition.uses_database_search:
                results = await self._search_database(criteria)
            else:
                results = await self._search_http(criteria)
        except Exception as e:
            self.log.error("search_failed", search_type=criteria.search_type, error=str(e))
            if self.circuit_breaker is not None:
                await self.circuit_breaker.record_failure(self.id, e)
            raise

        if self.circuit_breaker is not None:
            await self.circuit_breaker.record_success(self.id)
        self.log.debug(
            "search_completed",
            results=len(results),
            duration_ms=round((time.monotonic() - started) * 1000),
        )
        return results

    async def _search_database(self, criteria: SearchCriteria) -> list[ReleaseResult]:
        if self.catalog is None:
            raise DefinarrError(f"No streaming catalog configured for {self.definition.id}")
        return await self.catalog.query(
            self.definition, criteria, indexer_id=self.id, settings=self.settings
        )

    async def _search_http(self, criteria: SearchCriteria) -> list[ReleaseResult]:
        await self._ensure_logged_in()

        requests = self.requests.build_search_requests(criteria)
        if not requests:
            self.log.warning("search_no_requests", search_type=criteria.search_type)
            return []
        self.log.debug("search_requests_built", count=len(requests))

        results: list[ReleaseResult] = []
        errors: list[BaseException] = []
        for request in requests:
            try:
                results.extend(await self._execute(request))
            except Exception as e:  # noqa: BLE001
                self.log.warning(
                    "search_request_failed",
                    url=redact_url(request.url),
                    error=str(e),
                )
                errors.append(e)

        if len(errors) == len(requests):
            raise SearchFailedError(errors)
        return results

    async def _execute(self, request: HttpRequestDescriptor) -> list[ReleaseResult]:
        try:
            response = await self._send(request)
        except (HttpError, AllMirrorsFailedError) as e:
            if not (self.auth.requires_auth and self.auth.is_login_error(e)):
                raise
            self.log.info("login_expired", error=str(e))
            await self._reauthenticate()
            response = await self._send(request)
        else:
            if self.auth.check_login_needed(response, response.body):
                self.log.info("login_needed", status=response.status)
                await self._reauthenticate()
                response = await self._send(request)

        self._raise_api_error(response.body)
        outcome = self.parser.parse(response.body, request.search_path, base_url=self.base_url)
        if outcome.warnings:
            self.log.warning(
                "search_parse_warnings",
                count=len(outcome.warnings),
                first=outcome.warnings[0],
            )
        return outcome.releases

    async def _send(self, request: HttpRequestDescriptor) -> HttpResponse:
        path = request.search_path
        follow = path.follow_redirect if path is not None and path.follow_redirect is not None else True
        return await self.http.request(
            request.url,
            method=request.method,
            headers=request.headers,
            data=request.body,
            follow_redirects=follow,
        )

    @staticmethod
    def _raise_api_error(body: str) -> None:
        match = _API_ERROR_RE.search(body[:2048])
        if match:
            raise IndexerApiError(match.group(1), match.group(2))

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def _ensure_logged_in(self) -> None:
        result = await self.auth.ensure_logged_in()
        if not result.success:
            raise LoginError(f"Login failed: {result.error}")

    async def _reauthenticate(self) -> None:
        result = await self.auth.relogin()
        if not result.success:
            raise LoginError(f"Re-login failed: {result.error}")

    # ------------------------------------------------------------------
    # Test
    # ------------------------------------------------------------------

    async def test(self) -> None:
        """Run one real search request.

        Raises:
            IndexerTestError: With a sanitized, URL-free message.
        """
        if self.definition.uses_database_search:
            if self.catalog is None:
                raise IndexerTestError("No streaming catalog configured")
            self.log.info("indexer_test_succeeded", source="database")
            return

        try:
            await self._ensure_logged_in()
            criteria = SearchCriteria(search_type="basic", query="test", limit=1)
            if not self.requests.build_search_requests(criteria):
                raise IndexerTestError("Definition produced no search request")
            results = await self.search(criteria)
        except IndexerTestError:
            raise
        except Exception as e:
            message = sanitize_error_message(e)
            self.log.error("indexer_test_failed", error=message)
            raise IndexerTestError(message) from e
        self.log.info("indexer_test_succeeded", results=len(results))

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def get_download_url(self, release: ReleaseResult) -> str:
        """The URL a download client should fetch for *release*."""
        if self.protocol == "streaming":
            return release.download_url
        if (
            self.protocol == "torrent"
            and getattr(self.protocol_settings, "prefer_magnet_url", False)
            and release.magnet_url
        ):
            return release.magnet_url

        url = release.download_url or release.magnet_url
        if not url:
            raise DownloadResolutionError("No download URL available")
        if url.startswith(("magnet:", STREAM_SCHEME)) or self.definition.download is None:
            return url

        await self._ensure_logged_in()
        try:
            resolved = await self.downloads.resolve(url)
        except DownloadResolutionError as e:
            self.log.warning("download_resolution_failed", error=str(e))
            return url
        return resolved.magnet_url or resolved.url

    def restore_download_url(self, url: str) -> str:
        """Put the API key back into a URL that was redacted for logging."""
        if REDACTED not in url and _REDACTED_ENCODED not in url:
            return url
        apikey = self.settings.get("apikey")
        if not apikey or not isinstance(apikey, str):
            self.log.warning("download_url_restore_no_apikey")
            return url
        match = _ID_PARAM_RE.search(url)
        if match:
            return f"{self.base_url.rstrip('/')}/api?t=get&id={match.group(1)}&apikey={apikey}"
        return url.replace(REDACTED, apikey).replace(_REDACTED_ENCODED, apikey)

    async def download_content(self, url: str) -> DownloadResult:
        """Fetch a release: magnet passthrough, stream passthrough, or file bytes.

        Raises:
            DownloadResolutionError: Redirect without location or not a torrent file.
            HttpError: The final response was not successful.
        """
        url = self.restore_download_url(url)
        if url.startswith("magnet:"):
            return DownloadResult(magnet_url=url, info_hash=info_hash_from_magnet(url))
        if url.startswith(STREAM_SCHEME):
            return DownloadResult(data=url.encode(), final_url=url)

        await self._ensure_logged_in()
        headers = {"Accept": DOWNLOAD_ACCEPT}
        try:
            resolved = await self.downloads.resolve(url)
        except DownloadResolutionError as e:
            self.log.warning("download_resolution_failed_direct_fetch", error=str(e))
            headers["Referer"] = self.base_url
        else:
            if resolved.magnet_url:
                return DownloadResult(
                    magnet_url=resolved.magnet_url,
                    info_hash=info_hash_from_magnet(resolved.magnet_url),
                )
            if resolved.url.startswith("magnet:"):
                return DownloadResult(
                    magnet_url=resolved.url, info_hash=info_hash_from_magnet(resolved.url)
                )
            url = resolved.url
            headers.update(resolved.headers)

        response = await self._follow_redirects(url, headers)
        if isinstance(response, DownloadResult):
            return response

        data = response.content
        if self.protocol != "torrent":
            return DownloadResult(data=data, final_url=response.url)
        if not looks_like_torrent(data):
            raise DownloadResolutionError("Downloaded content is not a torrent file")
        return DownloadResult(
            data=data,
            info_hash=info_hash_from_torrent(data),
            final_url=response.url,
        )

    async def _follow_redirects(
        self, url: str, headers: dict[str, str]
    ) -> HttpResponse | DownloadResult:
        current = url
        for _ in range(MAX_DOWNLOAD_REDIRECTS):
            response = await self.http.request(current, headers=headers, follow_redirects=False)
            if not response.is_redirect:
                return response
            location = response.location
            if not location:
                raise DownloadResolutionError("Redirect without location header")
            if location.startswith("magnet:"):
                return DownloadResult(magnet_url=location, info_hash=info_hash_from_magnet(location))
            current = urljoin(current, location)
            self.log.debug("download_redirect", url=redact_url(current))
        raise DownloadResolutionError("Too many redirects")

    async def aclose(self) -> None:
        await self.http.aclose()
