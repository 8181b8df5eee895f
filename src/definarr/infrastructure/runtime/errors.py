"""User-facing error text: short, stable, never containing URLs."""

from __future__ import annotations

import asyncio

import httpx

from definarr.domain.exceptions import (
    AllMirrorsFailedError,
    AntiBotDetectedError,
    HttpError,
    IndexerApiError,
    LoginError,
    RateLimitWaitExceeded,
    SearchFailedError,
)

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "no address associated",
)

GENERIC_MESSAGE = "Indexer request failed"


def sanitize_error_message(error: BaseException) -> str:
    """Map *error* to one of a few concise messages safe to show a user."""
    if isinstance(error, AllMirrorsFailedError) and error.last_error is not None:
        return sanitize_error_message(error.last_error)
    if isinstance(error, SearchFailedError) and error.errors:
        return sanitize_error_message(error.errors[-1])

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return "Connection timed out"
    if isinstance(error, AntiBotDetectedError):
        return "Blocked by anti-bot protection"
    if isinstance(error, LoginError):
        return "Authentication failed"
    if isinstance(error, RateLimitWaitExceeded):
        return "Rate limited by indexer"
    if isinstance(error, IndexerApiError):
        return f"Indexer API error: {error.code}"
    if isinstance(error, HttpError):
        if error.status in (401, 403):
            return "Authentication failed"
        if error.status == 429:
            return "Rate limited by indexer"
        return f"Indexer returned HTTP {error.status}"

    text = str(error).lower()
    if isinstance(error, (httpx.ConnectError, OSError)):
        if any(marker in text for marker in _DNS_MARKERS):
            return "Could not resolve host"
        if "refused" in text:
            return "Connection refused"
    if "timed out" in text or "timeout" in text:
        return "Connection timed out"
    return GENERIC_MESSAGE
