"""Cookie header parsing and the auth sentinels carried in the cookie map.

``basic`` and ``apikey`` logins produce no real cookies. Instead they
store a sentinel entry in the indexer's cookie map; the HTTP client
recognizes it, strips it from the ``Cookie`` header and turns it into an
``Authorization`` header or an API key header/query parameter.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from http.cookies import CookieError, SimpleCookie

BASIC_AUTH_SENTINEL = "__definarr_basic_auth"
API_KEY_SENTINEL = "__definarr_api_key"
SENTINELS = frozenset({BASIC_AUTH_SENTINEL, API_KEY_SENTINEL})


@dataclass(frozen=True)
class ApiKeyInjection:
    value: str
    location: str = "header"
    header_name: str = "X-Api-Key"
    query_param: str = "apikey"
    prefix: str = ""


@dataclass(frozen=True)
class ParsedCookie:
    name: str
    value: str
    expires_at: datetime | None = None


# ------------------------------------------------------------------
# Sentinels
# ------------------------------------------------------------------


def basic_auth_sentinel(username: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
    return {BASIC_AUTH_SENTINEL: token}


def api_key_sentinel(injection: ApiKeyInjection) -> dict[str, str]:
    payload = {
        "value": injection.value,
        "location": injection.location,
        "header_name": injection.header_name,
        "query_param": injection.query_param,
        "prefix": injection.prefix,
    }
    return {API_KEY_SENTINEL: json.dumps(payload)}


def basic_auth_header(cookies: Mapping[str, str]) -> str | None:
    token = cookies.get(BASIC_AUTH_SENTINEL)
    return f"Basic {token}" if token else None


def api_key_injection(cookies: Mapping[str, str]) -> ApiKeyInjection | None:
    raw = cookies.get(API_KEY_SENTINEL)
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return ApiKeyInjection(
        value=str(data.get("value", "")),
        location=str(data.get("location", "header")),
        header_name=str(data.get("header_name", "X-Api-Key")),
        query_param=str(data.get("query_param", "apikey")),
        prefix=str(data.get("prefix", "")),
    )


def real_cookies(cookies: Mapping[str, str]) -> dict[str, str]:
    return {k: v for k, v in cookies.items() if k not in SENTINELS}


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------


def cookie_header(cookies: Mapping[str, str]) -> str:
    return "; ".join(f"{k}={v}" for k, v in real_cookies(cookies).items())


def parse_cookie_string(raw: str) -> dict[str, str]:
    """``"a=1; b=2"`` -> ``{"a": "1", "b": "2"}`` (values may contain ``=``)."""
    cookies: dict[str, str] = {}
    for part in raw.split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name.strip():
            cookies[name.strip()] = value.strip()
    return cookies


def _expiry(morsel_expires: str, max_age: str, now: datetime) -> datetime | None:
    if max_age:
        try:
            return now + timedelta(seconds=int(max_age))
        except ValueError:
            pass
    if morsel_expires:
        try:
            parsed = parsedate_to_datetime(morsel_expires)
        except (TypeError, ValueError):
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def parse_set_cookie_headers(
    headers: Iterable[str], *, now: datetime | None = None
) -> list[ParsedCookie]:
    """Parse raw ``Set-Cookie`` values, keeping per-cookie expiry."""
    now = now or datetime.now(timezone.utc)
    parsed: list[ParsedCookie] = []
    for header in headers:
        jar: SimpleCookie = SimpleCookie()
        try:
            jar.load(header)
        except CookieError:
            name, sep, rest = header.partition("=")
            if sep and name.strip():
                parsed.append(ParsedCookie(name.strip(), rest.split(";", 1)[0].strip()))
            continue
        for name, morsel in jar.items():
            parsed.append(
                ParsedCookie(
                    name=name,
                    value=morsel.value,
                    expires_at=_expiry(morsel["expires"], morsel["max-age"], now),
                )
            )
    return parsed
