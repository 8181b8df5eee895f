"""URL helpers: resolution, host comparison, secret redaction."""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

SECRET_PARAMS: frozenset[str] = frozenset(
    {"apikey", "api_key", "passkey", "authkey", "torrent_pass", "rsskey", "token"}
)

_SECRET_PARAM_RE = re.compile(
    r"(?i)([?&](?:" + "|".join(sorted(SECRET_PARAMS)) + r")=)[^&\s\"'#]+"
)

REDACTED = "[REDACTED]"


def redact_url(url: str) -> str:
    """Replace secret query parameter values with ``[REDACTED]``."""
    return _SECRET_PARAM_RE.sub(r"\1" + REDACTED, url)


def restore_secret(url: str, param: str, secret: str) -> str:
    """Put *secret* back into a redacted ``param=[REDACTED]`` query value."""
    parsed = urlparse(url)
    pairs = parse_qsl(parsed.query, keep_blank_values=True)
    changed = False
    out: list[tuple[str, str]] = []
    for key, value in pairs:
        if key.lower() == param.lower() and value == REDACTED:
            out.append((key, secret))
            changed = True
        else:
            out.append((key, value))
    if not changed:
        return url
    return urlunparse(parsed._replace(query=urlencode(out)))


def resolve_url(base: str, href: str | None) -> str | None:
    """Resolve *href* against *base*; magnet links and absolute URLs pass through."""
    if not href:
        return None
    href = href.strip()
    if href.startswith(("magnet:", "http://", "https://")):
        return href
    if href.startswith("//"):
        scheme = urlparse(base).scheme or "https"
        return f"{scheme}:{href}"
    parsed = urlparse(base)
    last_segment = parsed.path.rsplit("/", 1)[-1]
    # Site links are directories; page URLs (query or file name) resolve as-is.
    if parsed.query or "." in last_segment or base.endswith("/"):
        return urljoin(base, href)
    return urljoin(base + "/", href)


def host_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def is_cross_host(original: str, target: str) -> bool:
    """True when *target* points at a different host than *original*.

    ``www.`` prefixes are ignored; relative targets never count as cross-host.
    """
    target_host = host_of(target)
    if not target_host:
        return False
    return target_host.removeprefix("www.") != host_of(original).removeprefix("www.")


def add_query_param(url: str, key: str, value: str) -> str:
    parsed = urlparse(url)
    pairs = parse_qsl(parsed.query, keep_blank_values=True)
    pairs.append((key, value))
    return urlunparse(parsed._replace(query=urlencode(pairs)))


def has_query_param(url: str, key: str) -> bool:
    return any(k.lower() == key.lower() for k, _ in parse_qsl(urlparse(url).query))
