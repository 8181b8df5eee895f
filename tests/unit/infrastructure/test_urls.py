"""Tests for URL helpers."""

from __future__ import annotations

import pytest

from definarr.infrastructure.common.urls import (
    add_query_param,
    has_query_param,
    is_cross_host,
    redact_url,
    resolve_url,
    restore_secret,
)


class TestRedaction:
    def test_secret_params_redacted(self) -> None:
        url = "https://x.example/api?t=search&apikey=abc&q=1&PassKey=def"
        assert redact_url(url) == "https://x.example/api?t=search&apikey=[REDACTED]&q=1&PassKey=[REDACTED]"

    def test_plain_url_untouched(self) -> None:
        assert redact_url("https://x.example/?q=apikey") == "https://x.example/?q=apikey"

    def test_restore(self) -> None:
        redacted = "https://x.example/dl?id=1&passkey=[REDACTED]"
        assert restore_secret(redacted, "passkey", "s3cret") == "https://x.example/dl?id=1&passkey=s3cret"
        assert restore_secret(redacted, "apikey", "s3cret") == redacted


class TestResolveUrl:
    @pytest.mark.parametrize(
        ("base", "href", "expected"),
        [
            ("https://x.example/", "details.php?id=1", "https://x.example/details.php?id=1"),
            ("https://x.example/site", "a.php", "https://x.example/site/a.php"),
            ("https://x.example/browse.php?c=1", "details.php", "https://x.example/details.php"),
            ("https://x.example/", "//cdn.example/a.png", "https://cdn.example/a.png"),
            ("https://x.example/", "magnet:?xt=urn:btih:abc", "magnet:?xt=urn:btih:abc"),
            ("https://x.example/", " https://y.example/z ", "https://y.example/z"),
        ],
    )
    def test_resolve(self, base: str, href: str, expected: str) -> None:
        assert resolve_url(base, href) == expected

    def test_empty_href(self) -> None:
        assert resolve_url("https://x.example/", "") is None
        assert resolve_url("https://x.example/", None) is None


class TestHosts:
    def test_cross_host(self) -> None:
        assert is_cross_host("https://x.example/a", "https://cdn.example/b") is True
        assert is_cross_host("https://www.x.example/a", "https://x.example/b") is False
        assert is_cross_host("https://x.example/a", "/relative") is False


class TestQueryParams:
    def test_add_and_detect(self) -> None:
        url = add_query_param("https://x.example/getnzb?id=1", "apikey", "k")
        assert url == "https://x.example/getnzb?id=1&apikey=k"
        assert has_query_param(url, "APIKEY") is True
        assert has_query_param("https://x.example/getnzb?id=1", "apikey") is False
