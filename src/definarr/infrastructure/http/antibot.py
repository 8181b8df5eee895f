"""Anti-bot challenge and captcha detection on raw responses."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Literal

ChallengeType = Literal["js-challenge", "turnstile", "managed", "access-denied", "rate-limited", "unknown"]

CHALLENGE_PATTERNS: dict[str, tuple[str, ...]] = {
    "turnstile": ("cf-turnstile", "challenges.cloudflare.com/turnstile", "turnstile/v0/api.js"),
    "managed": ("cf-challenge-running", "cf-chl-widget-"),
    "js-challenge": (
        "<title>Just a moment...</title>",
        "cf_chl_opt",
        "__cf_chl_tk",
        "_cf_chl_opt",
        "cf-browser-verification",
    ),
    "access-denied": ("error code: 1020", "<title>Access denied</title>", "You have been blocked"),
    "rate-limited": ("<title>Attention Required!</title>", "error code: 1015"),
}

# Order matters: the more specific widget markers win.
_SOLVABLE = ("turnstile", "managed", "js-challenge")

_BODY_MARKERS = (
    "Just a moment...",
    "Just a moment…",
    "Checking your browser",
    "cf-browser-verification",
    "cf_chl_opt",
    "challenge-platform",
    "DDoS protection by Cloudflare",
)

_CAPTCHA_RE = re.compile(r"recaptcha|hcaptcha|captcha", re.IGNORECASE)


def classify_challenge(body: str) -> ChallengeType:
    """Challenge type of a page, ``unknown`` when no marker is present."""
    for kind in (*_SOLVABLE, "access-denied", "rate-limited"):
        if any(p in body for p in CHALLENGE_PATTERNS[kind]):
            return kind  # type: ignore[return-value]
    return "unknown"


def has_challenge_markers(body: str) -> bool:
    return any(p in body for kind in _SOLVABLE for p in CHALLENGE_PATTERNS[kind])


def _cloudflare_headers(headers: Mapping[str, str]) -> bool:
    for name, value in headers.items():
        lower = name.lower()
        if lower.startswith("cf-"):
            return True
        if lower == "server" and "cloudflare" in value.lower():
            return True
        if lower == "set-cookie" and value.lstrip().lower().startswith(("cf_", "__cf")):
            return True
    return False


def detect_challenge(status: int, headers: Mapping[str, str], body: str) -> ChallengeType | None:
    """Return the challenge type when the response is an anti-bot page, else ``None``.

    A 403/503 qualifies with a Cloudflare header/cookie or a body marker;
    any other status needs an explicit challenge marker in the body.
    """
    head = body[:20_000]
    if status in (403, 503):
        kind = classify_challenge(head)
        if kind != "unknown":
            return kind
        if any(m in head for m in _BODY_MARKERS):
            return "js-challenge"
        # Cloudflare-fronted sites send cf-* headers on every response; the
        # error page itself must mention Cloudflare too.
        if _cloudflare_headers(headers) and "cloudflare" in head.lower():
            return "access-denied"
        return None
    if has_challenge_markers(head):
        return classify_challenge(head)
    return None


def detect_captcha(body: str) -> bool:
    return bool(_CAPTCHA_RE.search(body))
