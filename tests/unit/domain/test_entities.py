"""Tests for the framework-free domain entities."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from definarr.domain.entities.categories import (
    OTHER_CATEGORY,
    category_family,
    category_id_by_name,
    category_name,
    resolve_category_id,
)
from definarr.domain.entities.criteria import SearchCriteria
from definarr.domain.entities.definition import SettingField
from definarr.domain.entities.release import ReleaseResult, TorrentInfo
from definarr.domain.entities.selection import Selection
from definarr.domain.exceptions import (
    AllMirrorsFailedError,
    DefinitionValidationError,
    HttpError,
    IndexerApiError,
    SearchFailedError,
)


class TestSearchCriteria:
    def test_defaults_to_basic(self) -> None:
        c = SearchCriteria()
        assert c.search_type == "basic"
        assert c.categories == ()

    def test_tv_fields_allowed_on_tv(self) -> None:
        c = SearchCriteria(search_type="tv", query="My Show", season=1, episode=5)
        assert c.season == 1
        assert c.episode == 5

    def test_season_rejected_on_movie(self) -> None:
        with pytest.raises(ValueError, match="season"):
            SearchCriteria(search_type="movie", season=1)

    def test_imdb_rejected_on_music(self) -> None:
        with pytest.raises(ValueError, match="imdb_id"):
            SearchCriteria(search_type="music", imdb_id="tt0133093")

    def test_year_allowed_on_movie_and_music(self) -> None:
        assert SearchCriteria(search_type="movie", year=1999).year == 1999
        assert SearchCriteria(search_type="music", year=1999).year == 1999

    def test_has_query_ignores_whitespace(self) -> None:
        assert SearchCriteria(query="  ").has_query is False
        assert SearchCriteria(query="matrix").has_query is True


class TestCategories:
    def test_family_of_subcategory(self) -> None:
        assert category_family(2045) == 2000
        assert category_family(5000) == 5000

    def test_resolve_by_name_case_insensitive(self) -> None:
        assert resolve_category_id("movies/hd") == 2040

    def test_resolve_numeric_string(self) -> None:
        assert resolve_category_id("5030") == 5030

    def test_unknown_name_resolves_to_other(self) -> None:
        assert resolve_category_id("Not A Category") == OTHER_CATEGORY
        assert resolve_category_id(None) == OTHER_CATEGORY

    def test_exact_lookup_returns_none_for_unknown(self) -> None:
        assert category_id_by_name("Nope") is None

    def test_name_falls_back_to_family(self) -> None:
        assert category_name(2099) == "Movies"


class TestSettingField:
    def test_text_uses_default_when_empty(self) -> None:
        f = SettingField(name="sort", default="added")
        assert f.resolve(None) == "added"
        assert f.resolve("") == "added"
        assert f.resolve("size") == "size"

    def test_unchecked_checkbox_is_none(self) -> None:
        f = SettingField(name="freeleech", type="checkbox")
        assert f.resolve(False) is None
        assert f.resolve("false") is None
        assert f.resolve(None) is None

    def test_checked_checkbox_is_true(self) -> None:
        f = SettingField(name="freeleech", type="checkbox")
        assert f.resolve(True) is True
        assert f.resolve("on") is True

    def test_checkbox_default(self) -> None:
        f = SettingField(name="freeleech", type="checkbox", default=True)
        assert f.resolve(None) is True

    def test_select_returns_known_key(self) -> None:
        f = SettingField(name="order", type="select", options={"asc": "Up", "desc": "Down"})
        assert f.resolve("desc") == "desc"

    def test_select_clamps_index(self) -> None:
        f = SettingField(name="order", type="select", options={"asc": "Up", "desc": "Down"})
        assert f.resolve("7") == "desc"
        assert f.resolve("-3") == "asc"

    def test_select_falls_back_to_default_then_first(self) -> None:
        with_default = SettingField(
            name="order", type="select", default="desc", options={"asc": "Up", "desc": "Down"}
        )
        without_default = SettingField(name="order", type="select", options={"asc": "Up", "desc": "Down"})
        assert with_default.resolve(None) == "desc"
        assert without_default.resolve(None) == "asc"

    def test_info_never_produces_value(self) -> None:
        assert SettingField(name="note", type="info", default="x").resolve("y") is None


class TestReleaseResult:
    def test_magnet_from_torrent_info(self) -> None:
        r = ReleaseResult(
            guid="g",
            title="t",
            download_url="https://x/dl",
            indexer_id="i",
            protocol="torrent",
            torrent=TorrentInfo(magnet_url="magnet:?xt=urn:btih:abc"),
        )
        assert r.magnet_url == "magnet:?xt=urn:btih:abc"

    def test_magnet_from_download_url(self) -> None:
        r = ReleaseResult(
            guid="g", title="t", download_url="magnet:?xt=urn:btih:abc", indexer_id="i", protocol="torrent"
        )
        assert r.magnet_url == "magnet:?xt=urn:btih:abc"

    def test_no_magnet_for_http_download(self, torrent_release: ReleaseResult) -> None:
        assert torrent_release.magnet_url is None

    def test_freeleech(self) -> None:
        assert TorrentInfo(download_volume_factor=0).freeleech is True
        assert TorrentInfo().freeleech is False


class TestSelection:
    def test_missing_carries_default(self) -> None:
        s = Selection.missing(default="0", optional=True)
        assert s.status == "missing"
        assert s.value == "0"
        assert s.is_ok is False

    def test_invalid_carries_reason(self) -> None:
        s = Selection.invalid("bad selector")
        assert s.reason == "bad selector"


class TestExceptions:
    def test_validation_error_formats_issues(self) -> None:
        e = DefinitionValidationError([("search.rows", "required"), ("", "empty")])
        assert str(e) == "search.rows: required; empty"

    def test_all_mirrors_failed_keeps_last_error(self) -> None:
        first, last = HttpError(500, "https://a"), HttpError(502, "https://b")
        e = AllMirrorsFailedError([first, last])
        assert e.last_error is last
        assert "HTTP 500" in str(e)

    def test_search_failed_without_errors(self) -> None:
        assert "no requests succeeded" in str(SearchFailedError([]))

    def test_api_error_message(self) -> None:
        assert str(IndexerApiError("100", "Incorrect user credentials")) == (
            "API error 100: Incorrect user credentials"
        )
        assert str(IndexerApiError("910")) == "API error 910"

    def test_http_error_retry_after(self) -> None:
        e = HttpError(429, "https://a", retry_after=12.0)
        assert e.status == 429
        assert e.retry_after == 12.0
        assert str(e) == "HTTP 429"


def test_publish_date_is_optional() -> None:
    r = ReleaseResult(
        guid="g",
        title="t",
        download_url="https://x",
        indexer_id="i",
        protocol="usenet",
        publish_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    assert r.publish_date.year == 2024
