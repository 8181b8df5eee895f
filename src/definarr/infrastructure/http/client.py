"""Per-indexer HTTP client.

Every outbound request of an indexer goes through :meth:`IndexerHttpClient.request`:

1. primary URL, then each mirror (``alternate_urls``) with a short delay
2. per URL, a bounded :class:`RetryPolicy` keyed by error classification
3. per wire request (attempt, redirect hop, post-solve refetch), a per-indexer
   then per-host rate-limit slot
4. per attempt, anti-bot detection with one transparent browser solve

The shared ``httpx.AsyncClient`` never stores cookies; each indexer's cookie
map is the only source of the ``Cookie`` header, so redirects are followed
here hop by hop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http.cookiejar import DefaultCookiePolicy
from typing import Any
from urllib.parse import urljoin

import httpx
import structlog

from definarr.domain.exceptions import (
    AllMirrorsFailedError,
    AntiBotBypassFailedError,
    AntiBotDetectedError,
    HttpError,
)
from definarr.domain.ports.challenge_solver import ChallengeSolverPort
from definarr.infrastructure.auth.cookies import (
    ParsedCookie,
    api_key_injection,
    basic_auth_header,
    cookie_header,
    parse_set_cookie_headers,
)
from definarr.infrastructure.common.urls import (
    add_query_param,
    has_query_param,
    host_of,
    is_cross_host,
    redact_url,
)
from definarr.infrastructure.config.schema import HttpConfig
from definarr.infrastructure.http.antibot import detect_challenge
from definarr.infrastructure.http.rate_limiter import RateLimiterRegistry
from definarr.infrastructure.http.retry import (
    RetryDecision,
    RetryPolicy,
    is_retryable_network_error,
    is_retryable_status,
    parse_retry_after,
)

log = structlog.get_logger(__name__)

MAX_REDIRECTS = 10

_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


@dataclass(frozen=True)
class HttpResponse:
    status: int
    url: str
    headers: httpx.Headers
    content: bytes
    body: str
    set_cookies: tuple[ParsedCookie, ...] = field(default=())

    @property
    def is_redirect(self) -> bool:
        return self.status in (301, 302, 303, 307, 308)

    @property
    def location(self) -> str | None:
        return self.headers.get("location")


def _normalize_base(url: str) -> str:
    return url.rstrip("/")


def _body_kwargs(data: Mapping[str, str] | str | None, json: Any) -> dict[str, Any]:
    if json is not None:
        return {"json": json}
    if isinstance(data, str):
        return {"content": data}
    if data is not None:
        return {"data": dict(data)}
    return {}


def disable_cookie_jar(client: httpx.AsyncClient) -> None:
    """Make *client* drop every ``Set-Cookie`` instead of replaying it."""
    client.cookies.clear()
    client.cookies.jar.set_policy(DefaultCookiePolicy(allowed_domains=[]))


class IndexerHttpClient:
    """HTTP access for one indexer instance.

    The cookie map is owned by the client; the auth layer writes session
    cookies (and auth sentinels) into it through :meth:`set_cookies`.
    """

    def __init__(
        self,
        *,
        indexer_id: str,
        base_url: str,
        config: HttpConfig,
        rate_limiters: RateLimiterRegistry,
        alternate_urls: tuple[str, ...] = (),
        solver: ChallengeSolverPort | None = None,
        client: httpx.AsyncClient | None = None,
        encoding: str = "UTF-8",
        solve_timeout: float | None = None,
    ) -> None:
        self.indexer_id = indexer_id
        self.base_url = _normalize_base(base_url)
        self.alternate_urls = tuple(
            _normalize_base(u) for u in alternate_urls if _normalize_base(u) != self.base_url
        )
        self.config = config
        self.rate_limiters = rate_limiters
        self.solver = solver
        self.encoding = encoding
        self.solve_timeout = solve_timeout
        self.user_agent = config.user_agent
        self.cookies: dict[str, str] = {}
        self.cookie_expirations: dict[str, datetime] = {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds),
        )
        disable_cookie_jar(self._client)
        self._retry = RetryPolicy(
            max_retries=config.max_retries,
            initial_delay=config.initial_retry_delay_seconds,
            max_backoff=config.max_backoff_seconds,
        )

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    def set_cookies(
        self,
        cookies: Mapping[str, str],
        expirations: Mapping[str, datetime] | None = None,
    ) -> None:
        self.cookies.update(cookies)
        if expirations:
            self.cookie_expirations.update(expirations)

    def clear_cookies(self) -> None:
        self.cookies.clear()
        self.cookie_expirations.clear()

    def _store_set_cookies(self, parsed: tuple[ParsedCookie, ...]) -> None:
        for cookie in parsed:
            if cookie.expires_at is not None and cookie.expires_at <= datetime.now(timezone.utc):
                self.cookies.pop(cookie.name, None)
                self.cookie_expirations.pop(cookie.name, None)
                continue
            self.cookies[cookie.name] = cookie.value
            if cookie.expires_at is not None:
                self.cookie_expirations[cookie.name] = cookie.expires_at

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, url: str, **kwargs: Any) -> HttpResponse:
        return await self.request(url, method="GET", **kwargs)

    async def post(self, url: str, **kwargs: Any) -> HttpResponse:
        return await self.request(url, method="POST", **kwargs)

    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, str] | str | None = None,
        json: Any = None,
        follow_redirects: bool = True,
        timeout: float | None = None,
        skip_rate_limit: bool = False,
        failover: bool = True,
    ) -> HttpResponse:
        """Send a request with rate limiting, mirror failover and retries.

        Raises:
            HttpError: Non-success status after retries (single URL).
            AntiBotDetectedError: Challenge still served after a successful solve.
            AntiBotBypassFailedError: No usable solver, or the browser solve failed.
            AllMirrorsFailedError: Primary and every mirror failed.
        """
        candidates = self._candidate_urls(url) if failover else [url]
        errors: list[BaseException] = []
        for index, candidate in enumerate(candidates):
            if index > 0:
                await asyncio.sleep(self.config.mirror_delay_seconds)
                log.info(
                    "http_mirror_failover",
                    indexer_id=self.indexer_id,
                    url=redact_url(candidate),
                )
            try:
                return await self._retry.execute(
                    lambda c=candidate: self._fetch(  # type: ignore[misc]
                        c,
                        method=method,
                        headers=headers,
                        data=data,
                        json=json,
                        follow_redirects=follow_redirects,
                        timeout=timeout,
                        skip_rate_limit=skip_rate_limit,
                    ),
                    self._classify,
                    context=self.indexer_id,
                )
            except Exception as e:  # noqa: BLE001
                log.warning(
                    "http_request_failed",
                    indexer_id=self.indexer_id,
                    url=redact_url(candidate),
                    error=str(e),
                )
                errors.append(e)

        if len(errors) == 1:
            raise errors[0]
        raise AllMirrorsFailedError(errors)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _candidate_urls(self, url: str) -> list[str]:
        candidates = [url]
        if not url.startswith(self.base_url):
            return candidates
        suffix = url[len(self.base_url) :]
        for mirror in self.alternate_urls:
            candidates.append(mirror + suffix)
        return candidates

    def _prepare(
        self, url: str, headers: Mapping[str, str] | None, *, credentials: bool = True
    ) -> tuple[str, dict[str, str]]:
        """Headers for one hop; *credentials* is False once a redirect leaves the site."""
        prepared: dict[str, str] = {"User-Agent": self.user_agent}
        if not credentials:
            for name, value in (headers or {}).items():
                if name.lower() not in ("cookie", "authorization"):
                    prepared[name] = value
            return url, prepared
        cookies = cookie_header(self.cookies)
        if cookies:
            prepared["Cookie"] = cookies
        for name, value in (headers or {}).items():
            if name.lower() == "cookie" and "Cookie" in prepared:
                prepared["Cookie"] = f"{prepared['Cookie']}; {value}"
            else:
                prepared[name] = value

        basic = basic_auth_header(self.cookies)
        if basic and not any(k.lower() == "authorization" for k in prepared):
            prepared["Authorization"] = basic

        injection = api_key_injection(self.cookies)
        if injection is not None and injection.value:
            if injection.location in ("header", "both"):
                prepared[injection.header_name] = f"{injection.prefix}{injection.value}"
            if injection.location in ("query", "both") and not has_query_param(
                url, injection.query_param
            ):
                url = add_query_param(url, injection.query_param, injection.value)
        return url, prepared

    def _decode(self, response: httpx.Response) -> str:
        if response.charset_encoding:
            return response.text
        try:
            return response.content.decode(self.encoding, errors="replace")
        except LookupError:
            return response.content.decode("utf-8", errors="replace")

    async def _fetch(
        self,
        url: str,
        *,
        method: str,
        headers: Mapping[str, str] | None,
        data: Mapping[str, str] | str | None,
        json: Any,
        follow_redirects: bool,
        timeout: float | None,
        skip_rate_limit: bool = False,
        skip_solver: bool = False,
    ) -> HttpResponse:
        """One attempt: every hop takes a rate-limit slot and carries the cookie map."""
        current, current_method = url, method
        body_kwargs = _body_kwargs(data, json)
        collected: list[ParsedCookie] = []
        for _ in range(MAX_REDIRECTS + 1):
            same_site = not is_cross_host(url, current)
            if not skip_rate_limit:
                await self.rate_limiters.acquire(self.indexer_id, current)
            target, prepared = self._prepare(current, headers, credentials=same_site)
            kwargs: dict[str, Any] = {"headers": prepared, "follow_redirects": False, **body_kwargs}
            if timeout is not None:
                kwargs["timeout"] = timeout
            log.debug(
                "http_request", indexer_id=self.indexer_id, method=current_method, url=redact_url(target)
            )
            response = await self._client.request(current_method, target, **kwargs)

            parsed = tuple(parse_set_cookie_headers(response.headers.get_list("set-cookie")))
            if same_site:
                self._store_set_cookies(parsed)
                collected.extend(parsed)

            location = response.headers.get("location")
            if not (follow_redirects and location and response.status_code in _REDIRECT_STATUSES):
                break
            current = urljoin(str(response.url), location)
            if response.status_code == 303 or (
                response.status_code in (301, 302) and current_method == "POST"
            ):
                current_method, body_kwargs = "GET", {}
        else:
            raise httpx.TooManyRedirects(
                f"Exceeded {MAX_REDIRECTS} redirects", request=response.request
            )

        body = self._decode(response)
        challenge = detect_challenge(response.status_code, response.headers, body)
        if challenge is not None:
            return await self._handle_challenge(
                url,
                challenge,
                skip_solver=skip_solver,
                method=method,
                headers=headers,
                data=data,
                json=json,
                follow_redirects=follow_redirects,
                timeout=timeout,
                skip_rate_limit=skip_rate_limit,
            )

        if response.status_code >= 400:
            raise HttpError(
                response.status_code,
                redact_url(str(response.url)),
                f"HTTP {response.status_code} {response.reason_phrase}".strip(),
                retry_after=parse_retry_after(response.headers),
            )

        return HttpResponse(
            status=response.status_code,
            url=str(response.url),
            headers=response.headers,
            content=response.content,
            body=body,
            set_cookies=tuple(collected),
        )

    async def _handle_challenge(
        self,
        url: str,
        challenge: str,
        *,
        skip_solver: bool,
        **request_kwargs: Any,
    ) -> HttpResponse:
        host = host_of(url)
        if skip_solver:
            # Cleared once already; a later attempt may solve again.
            raise AntiBotDetectedError(challenge, f"Anti-bot challenge detected on {host} ({challenge})")
        if self.solver is None or not self.solver.enabled:
            raise AntiBotBypassFailedError(
                challenge, f"Anti-bot challenge on {host} ({challenge}) and no browser solver available"
            )

        log.info("antibot_solve_started", indexer_id=self.indexer_id, host=host, challenge=challenge)
        result = await self.solver.solve(url, timeout=self.solve_timeout)
        if not result.success:
            log.warning(
                "antibot_solve_failed",
                indexer_id=self.indexer_id,
                host=host,
                challenge=result.challenge_type,
                error=result.error,
            )
            raise AntiBotBypassFailedError(
                result.challenge_type,
                f"Anti-bot bypass failed on {host}: {result.error or 'browser solver failed'}",
            )

        self.cookies.update(result.cookies)
        for name, expiry in result.expirations.items():
            self.cookie_expirations[name] = datetime.fromtimestamp(expiry, tz=timezone.utc)
        if result.user_agent:
            self.user_agent = result.user_agent
        log.info(
            "antibot_solve_succeeded",
            indexer_id=self.indexer_id,
            host=host,
            solve_time_ms=round(result.solve_time_ms),
            from_cache=result.from_cache,
        )
        return await self._fetch(url, skip_solver=True, **request_kwargs)

    def _classify(self, error: BaseException) -> RetryDecision:
        if isinstance(error, AntiBotBypassFailedError):
            return RetryDecision(False, "antibot_bypass_failed")
        if isinstance(error, AntiBotDetectedError):
            return RetryDecision(True, "antibot_challenge", self.config.challenge_retry_delay_seconds)
        if is_retryable_network_error(error):
            return RetryDecision(True, type(error).__name__)
        if isinstance(error, HttpError) and is_retryable_status(error.status):
            return RetryDecision(True, f"http_{error.status}", error.retry_after)
        return RetryDecision(False, "not_retryable")
