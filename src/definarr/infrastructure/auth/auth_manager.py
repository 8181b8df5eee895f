"""Login state machine for one indexer.

One method per definition (``login.method``). HTTP-based methods go
through the indexer's :class:`IndexerHttpClient` with manual redirect
handling, so cookies set on a 301/302 are captured before the redirect
is followed once. ``basic`` and ``apikey`` produce sentinel entries in the
cookie map instead of real cookies.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode, urlsplit

import structlog
from bs4 import BeautifulSoup, Tag

from definarr.domain.entities.definition import Definition, LoginBlock
from definarr.domain.exceptions import AllMirrorsFailedError, DefinarrError, HttpError, SelectorError
from definarr.infrastructure.auth.cookie_store import CookieStore
from definarr.infrastructure.auth.cookies import (
    ApiKeyInjection,
    api_key_sentinel,
    basic_auth_sentinel,
    parse_cookie_string,
)
from definarr.infrastructure.common.urls import is_cross_host, resolve_url
from definarr.infrastructure.engine.selectors import SelectorEngine, parse_html
from definarr.infrastructure.http.antibot import detect_captcha
from definarr.infrastructure.http.client import HttpResponse, IndexerHttpClient

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LoginResult:
    success: bool
    cookies: dict[str, str] = field(default_factory=dict)
    error: str | None = None


class _LoginFailed(Exception):
    pass


class AuthManager:
    """Runs the definition's login flow and keeps the session cookies fresh.

    Args:
        definition: Indexer definition (``login`` may be ``None``).
        http: The indexer's HTTP client; its cookie map is the live session.
        selectors: Selector engine sharing the indexer's template store.
        cookie_store: Shared persistence for session cookies.
        indexer_id: Key used for cookie persistence.
        base_url: Effective site link.
        settings: Raw user settings (credentials).
    """

    def __init__(
        self,
        definition: Definition,
        http: IndexerHttpClient,
        selectors: SelectorEngine,
        cookie_store: CookieStore,
        *,
        indexer_id: str,
        base_url: str,
        settings: Mapping[str, Any] | None = None,
        cookie_expiry_days: float = 30.0,
    ) -> None:
        self.definition = definition
        self.http = http
        self.selectors = selectors
        self.templates = selectors.templates
        self.cookie_store = cookie_store
        self.indexer_id = indexer_id
        self.base_url = base_url
        self.settings = dict(settings or {})
        self.cookie_expiry_days = cookie_expiry_days
        self.logged_in = False

    @property
    def requires_auth(self) -> bool:
        login = self.definition.login
        return login is not None and login.method != "none"

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def ensure_logged_in(self) -> LoginResult:
        """Restore persisted cookies, else log in and persist the new session."""
        if not self.requires_auth:
            return LoginResult(True)
        if self.logged_in and self.http.cookies:
            return LoginResult(True, dict(self.http.cookies))

        record = await self.cookie_store.load(self.indexer_id)
        if record is not None:
            self.http.set_cookies(record.cookies, record.expirations)
            self.logged_in = True
            log.debug("session_restored", indexer_id=self.indexer_id, cookies=len(record.cookies))
            return LoginResult(True, dict(record.cookies))

        return await self.login()

    async def relogin(self) -> LoginResult:
        """Drop the current session and log in again."""
        await self.clear_session()
        return await self.login()

    async def clear_session(self) -> None:
        self.logged_in = False
        self.http.clear_cookies()
        await self.cookie_store.clear(self.indexer_id)

    async def login(self) -> LoginResult:
        login = self.definition.login
        if login is None or login.method == "none":
            return LoginResult(True)

        self.templates.set_site_link(self.base_url)
        handler = {
            "post": self._login_post,
            "form": self._login_form,
            "get": self._login_get,
            "oneurl": self._login_oneurl,
            "cookie": self._login_cookie,
            "basic": self._login_basic,
            "apikey": self._login_apikey,
            "passkey": self._login_passkey,
        }.get(login.method)
        if handler is None:
            return LoginResult(False, error=f"Unknown login method: {login.method}")

        try:
            await handler(login)
            if login.method in ("post", "form", "get", "oneurl"):
                await self._run_login_test(login)
        except (_LoginFailed, DefinarrError) as e:
            log.warning("login_failed", indexer_id=self.indexer_id, method=login.method, error=str(e))
            self.logged_in = False
            return LoginResult(False, dict(self.http.cookies), str(e))

        cookies = dict(self.http.cookies)
        expires_at = datetime.now(timezone.utc) + timedelta(days=self.cookie_expiry_days)
        await self.cookie_store.save(
            self.indexer_id, cookies, expires_at, dict(self.http.cookie_expirations)
        )
        self.logged_in = True
        log.info("login_succeeded", indexer_id=self.indexer_id, method=login.method, cookies=len(cookies))
        return LoginResult(True, cookies)

    def check_login_needed(self, response: HttpResponse, body: str | None = None) -> bool:
        """``True`` when a search response indicates the session is gone."""
        login = self.definition.login
        if login is None or login.method == "none":
            return False
        if is_cross_host(self.base_url, response.url):
            return True
        if login.test is not None and login.test.selector:
            content_type = response.headers.get("content-type", "")
            if "html" in content_type:
                document = parse_html(body if body is not None else response.body)
                if not self.selectors.matches(document, login.test.selector):
                    return True
        return False

    @staticmethod
    def is_login_error(error: BaseException) -> bool:
        """HTTP failures that mean "log in again" rather than "indexer broken".

        A 401/403 from the primary still counts when the mirrors failed too.
        """
        if isinstance(error, AllMirrorsFailedError):
            return any(AuthManager.is_login_error(e) for e in error.errors)
        return isinstance(error, HttpError) and error.status in (401, 403)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _url(self, path: str | None, default: str = "/login", *, base: str | None = None) -> str:
        expanded = self.templates.expand(path if path is not None else default)
        return resolve_url(base or self.base_url, expanded) or self.base_url

    def _headers(self, login: LoginBlock, referer: str) -> dict[str, str]:
        headers = {"Referer": referer}
        for name, values in login.headers.items():
            if values:
                headers[name] = self.templates.expand(values[0])
        return headers

    def _apply_definition_cookies(self, login: LoginBlock) -> None:
        if login.cookies:
            self.http.set_cookies(parse_cookie_string("; ".join(login.cookies)))

    async def _send(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """One request without following redirects, then follow a 3xx once."""
        response = await self.http.request(
            url, method=method, headers=headers, data=data, follow_redirects=False
        )
        if response.is_redirect and response.location:
            target = resolve_url(url, response.location) or url
            log.debug("login_redirect", indexer_id=self.indexer_id, status=response.status)
            response = await self.http.request(
                target, method="GET", headers={"Referer": url}, follow_redirects=True
            )
        return response

    def _check_errors(self, login: LoginBlock, response: HttpResponse) -> None:
        if response.status == 401:
            raise _LoginFailed("Unauthorized (401)")
        if is_cross_host(self.base_url, response.url):
            raise _LoginFailed("Login redirected to a different host")
        if not login.errors:
            return
        document = parse_html(response.body)
        for check in login.errors:
            if check.path and check.path not in urlsplit(response.url).path:
                continue
            if not self.selectors.matches(document, check.selector):
                continue
            message = self.selectors.text_of(document, check.selector)
            if check.message is not None:
                custom = self.selectors.select(document, check.message, required=False).value
                message = custom or message
            raise _LoginFailed(message or "Login error")

    async def _run_login_test(self, login: LoginBlock) -> None:
        test = login.test
        if test is None or not test.path:
            return
        response = await self.http.get(self._url(test.path), follow_redirects=True)
        if is_cross_host(self.base_url, response.url):
            raise _LoginFailed("Login test redirected to a different host")
        if test.selector and not self.selectors.matches(parse_html(response.body), test.selector):
            raise _LoginFailed("Login test failed: logged-in marker not found")

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    def _expanded_inputs(self, login: LoginBlock) -> dict[str, str]:
        return {key: self.templates.expand(value) for key, value in login.inputs.items()}

    async def _login_post(self, login: LoginBlock) -> None:
        self._apply_definition_cookies(login)
        url = self._url(login.submit_path or login.path)
        response = await self._send(
            url,
            method="POST",
            headers=self._headers(login, self.base_url),
            data=self._expanded_inputs(login),
        )
        self._check_errors(login, response)

    async def _login_get(self, login: LoginBlock) -> None:
        self._apply_definition_cookies(login)
        url = self._url(login.path)
        inputs = self._expanded_inputs(login)
        if inputs:
            url = f"{url}{'&' if '?' in url else '?'}{urlencode(inputs)}"
        response = await self._send(url, headers=self._headers(login, self.base_url))
        self._check_errors(login, response)

    async def _login_oneurl(self, login: LoginBlock) -> None:
        one_url = login.inputs.get("oneurl")
        if not one_url:
            raise _LoginFailed("oneurl input not defined")
        path = self.templates.expand(login.path or "") + self.templates.expand(one_url)
        url = resolve_url(self.base_url, path) or self.base_url
        response = await self._send(url, headers=self._headers(login, self.base_url))
        self._check_errors(login, response)

    async def _login_form(self, login: LoginBlock) -> None:
        self._apply_definition_cookies(login)
        page_url = self._url(login.path)
        page = await self.http.get(
            page_url,
            headers={"Referer": self.base_url},
            follow_redirects=self.definition.follow_redirect,
        )
        document = parse_html(page.body)
        form_selector = login.form or "form"
        form = document.select_one(form_selector)
        if form is None:
            raise _LoginFailed(f"Form not found: {form_selector}")
        if login.captcha is not None and detect_captcha(page.body):
            raise _LoginFailed("Login requires solving a captcha")

        data = harvest_form_inputs(form)
        for key, value in login.inputs.items():
            name = key
            if login.selectors:
                target = form.select_one(key)
                if target is not None and target.get("name"):
                    name = str(target.get("name"))
            data[name] = self.templates.expand(value)

        for key, block in login.selector_inputs.items():
            try:
                value = self.selectors.select(document, block, required=True).value
            except SelectorError as e:
                raise _LoginFailed(f"Selector input {key!r} failed: {e}") from e
            if value is not None:
                data[key] = value

        action = login.submit_path or str(form.get("action") or "")
        submit_url = resolve_url(page_url, self.templates.expand(action)) or page_url
        query: dict[str, str] = {}
        for key, block in login.get_selector_inputs.items():
            value = self.selectors.select(document, block, required=False).value
            if value is not None:
                query[key] = value
        if query:
            submit_url = f"{submit_url}{'&' if '?' in submit_url else '?'}{urlencode(query)}"

        response = await self._send(
            submit_url,
            method="POST",
            headers=self._headers(login, page_url),
            data=data,
        )
        self._check_errors(login, response)

    async def _login_cookie(self, login: LoginBlock) -> None:
        raw = self.settings.get("cookie")
        if raw:
            cookies = parse_cookie_string(str(raw))
        elif self.settings.get("uid") and self.settings.get("pass"):
            cookies = {"uid": str(self.settings["uid"]), "pass": str(self.settings["pass"])}
        else:
            raise _LoginFailed("No cookie credentials provided")
        if not cookies:
            raise _LoginFailed("Cookie setting contains no cookies")
        self.http.set_cookies(cookies)

    async def _login_basic(self, login: LoginBlock) -> None:
        username = self.settings.get("username")
        if not username:
            raise _LoginFailed("Username not provided in settings")
        self.http.set_cookies(basic_auth_sentinel(str(username), str(self.settings.get("password") or "")))

    async def _login_apikey(self, login: LoginBlock) -> None:
        config = login.apikey
        source = config.source if config is not None else "apikey"
        value = self.settings.get(source) or self.settings.get("apikey")
        if not value:
            raise _LoginFailed("API key not provided in settings")
        injection = ApiKeyInjection(value=str(value))
        if config is not None:
            injection = ApiKeyInjection(
                value=str(value),
                location=config.location,
                header_name=config.header_name,
                query_param=config.query_param,
                prefix=config.prefix,
            )
        self.http.set_cookies(api_key_sentinel(injection))

    async def _login_passkey(self, login: LoginBlock) -> None:
        # Search and download templates read it from .Config.passkey.
        if not self.settings.get("passkey"):
            raise _LoginFailed("Passkey not provided in settings")


def harvest_form_inputs(form: Tag | BeautifulSoup) -> dict[str, str]:
    """Enabled, named inputs of *form*; unchecked checkboxes and radios are skipped."""
    data: dict[str, str] = {}
    for element in form.select("input, select, textarea"):
        name = element.get("name")
        if not name or element.has_attr("disabled"):
            continue
        if element.name == "input":
            kind = str(element.get("type") or "text").lower()
            if kind in ("checkbox", "radio") and not element.has_attr("checked"):
                continue
            if kind in ("submit", "button", "image", "reset", "file"):
                continue
            data[str(name)] = str(element.get("value") or "")
        elif element.name == "select":
            option = element.select_one("option[selected]") or element.select_one("option")
            data[str(name)] = str(option.get("value") or option.get_text()) if option else ""
        else:
            data[str(name)] = element.get_text()
    return data
