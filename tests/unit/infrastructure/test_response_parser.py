"""Tests for ResponseParser (raw response -> ReleaseResult records)."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from definarr.domain.entities.criteria import SearchCriteria
from definarr.domain.entities.definition import SearchPath
from definarr.infrastructure.definitions.loader import parse_definition
from definarr.infrastructure.engine.selectors import SelectorEngine
from definarr.infrastructure.engine.template import TemplateEngine
from definarr.infrastructure.runtime.category_mapper import CategoryMapper
from definarr.infrastructure.runtime.response_parser import ResponseParser, normalize_imdb_id

BASE_URL = "https://tracker.example/"
HASH = "0123456789abcdef0123456789abcdef01234567"


def _make_parser(data: dict[str, Any]) -> ResponseParser:
    definition = parse_definition(data)
    templates = TemplateEngine()
    templates.set_site_link(BASE_URL)
    return ResponseParser(
        definition,
        SelectorEngine(templates),
        CategoryMapper(definition.caps),
        indexer_id="testsite",
        indexer_name="Test Site",
    )


def _json_definition(data: dict[str, Any], **rows: Any) -> dict[str, Any]:
    data["search"]["rows"] = {"selector": "data.items", **rows}
    data["search"]["fields"] = {
        "title": {"selector": "name"},
        "download": {"selector": "link"},
        "infohash": {"selector": "hash", "optional": True},
        "size": {"selector": "size"},
        "seeders": {"selector": "seeds", "optional": True, "default": "0"},
        "category": {"selector": "cat"},
    }
    return data


class TestHtmlParsing:
    def test_rows_normalized(self, definition_data: dict[str, Any], results_html: str) -> None:
        outcome = _make_parser(definition_data).parse(results_html, None, base_url=BASE_URL)
        assert outcome.warnings == []
        assert len(outcome.releases) == 2

        first = outcome.releases[0]
        assert first.title == "Movie.2024.1080p.BluRay"
        assert first.download_url == "https://tracker.example/download.php?id=10"
        assert first.details_url == "https://tracker.example/details.php?id=10"
        assert first.guid == first.details_url
        assert first.size == 1_610_612_736
        assert first.categories == (2040,)
        assert first.torrent.seeders == 42
        assert first.torrent.leechers == 3
        assert first.publish_date == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert first.indexer_id == "testsite"
        assert first.indexer_name == "Test Site"

    def test_missing_optional_date_defaults_to_now(
        self, definition_data: dict[str, Any], results_html: str
    ) -> None:
        outcome = _make_parser(definition_data).parse(results_html, None, base_url=BASE_URL)
        second = outcome.releases[1]
        assert second.categories == (5040,)
        assert second.publish_date is not None
        assert second.publish_date.tzinfo is not None

    def test_bad_row_skipped_with_warning(self, definition_data: dict[str, Any]) -> None:
        html = """
        <table class="results">
          <tr class="row"><td class="cat">1</td><td><a class="title" href="/d/1">Good</a></td>
            <td><a class="download" href="/dl/1">x</a></td><td class="size">1 MB</td>
            <td class="seeders">1</td><td class="leechers">0</td></tr>
          <tr class="row"><td class="cat">1</td><td><a class="title" href="/d/2">Broken</a></td>
            <td class="size">1 MB</td><td class="seeders">1</td><td class="leechers">0</td></tr>
        </table>
        """
        outcome = _make_parser(definition_data).parse(html, None, base_url=BASE_URL)
        assert [r.title for r in outcome.releases] == ["Good"]
        assert len(outcome.warnings) == 1
        assert outcome.warnings[0].startswith("row 1: field 'download'")

    def test_no_rows_is_empty(self, definition_data: dict[str, Any]) -> None:
        outcome = _make_parser(definition_data).parse("<html></html>", None, base_url=BASE_URL)
        assert outcome.releases == []
        assert outcome.warnings == []

    def test_fields_see_earlier_fields(self, definition_data: dict[str, Any], results_html: str) -> None:
        definition_data["search"]["fields"]["description"] = {"text": "Title: {{ .Result.title }}"}
        outcome = _make_parser(definition_data).parse(results_html, None, base_url=BASE_URL)
        assert outcome.releases[0].description == "Title: Movie.2024.1080p.BluRay"

    def test_unknown_fields_land_in_extra(self, definition_data: dict[str, Any], results_html: str) -> None:
        definition_data["search"]["fields"]["uploader"] = {"text": "anon"}
        definition_data["search"]["fields"]["_helper"] = {"text": "hidden"}
        outcome = _make_parser(definition_data).parse(results_html, None, base_url=BASE_URL)
        assert outcome.releases[0].extra == {"uploader": "anon"}

    def test_date_headers(self, definition_data: dict[str, Any]) -> None:
        definition_data["search"]["rows"]["dateheaders"] = {"selector": "td.day"}
        definition_data["search"]["fields"].pop("date")
        html = """
        <table class="results">
          <tr class="hdr"><td class="day">2024-03-02</td></tr>
          <tr class="row"><td class="cat">1</td><td><a class="title" href="/d/1">A</a></td>
            <td><a class="download" href="/dl/1">x</a></td><td class="size">1 MB</td>
            <td class="seeders">1</td><td class="leechers">0</td></tr>
        </table>
        """
        outcome = _make_parser(definition_data).parse(html, None, base_url=BASE_URL)
        assert outcome.releases[0].publish_date == datetime(2024, 3, 2, tzinfo=timezone.utc)

    def test_after_merges_rows(self, definition_data: dict[str, Any]) -> None:
        definition_data["search"]["rows"] = {"selector": "table.results tr", "after": 1}
        html = """
        <table class="results">
          <tr><td class="cat">1</td><td><a class="title" href="/d/1">A</a></td>
            <td class="size">1 MB</td><td class="seeders">1</td><td class="leechers">0</td></tr>
          <tr><td><a class="download" href="/dl/1">x</a></td></tr>
        </table>
        """
        outcome = _make_parser(definition_data).parse(html, None, base_url=BASE_URL)
        assert len(outcome.releases) == 1
        assert outcome.releases[0].download_url == "https://tracker.example/dl/1"

    def test_preprocessing_filters(self, definition_data: dict[str, Any], results_html: str) -> None:
        definition_data["search"]["preprocessingfilters"] = [
            {"name": "replace", "args": ["Movie.2024", "Film.2024"]}
        ]
        outcome = _make_parser(definition_data).parse(results_html, None, base_url=BASE_URL)
        assert outcome.releases[0].title.startswith("Film.2024")


class TestTorrentFields:
    def test_magnet_built_from_infohash(self, definition_data: dict[str, Any]) -> None:
        data = _json_definition(definition_data)
        data["search"]["fields"]["download"] = {"selector": "link", "optional": True}
        body = json.dumps({"data": {"items": [{"name": "X", "hash": HASH, "size": 10, "cat": "1"}]}})
        release = _make_parser(data).parse(body, None, base_url=BASE_URL).releases[0]
        assert release.download_url.startswith(f"magnet:?xt=urn:btih:{HASH}")
        assert release.torrent.info_hash == HASH
        assert release.magnet_url == release.download_url

    def test_infohash_from_magnet_download(self, definition_data: dict[str, Any]) -> None:
        data = _json_definition(definition_data)
        magnet = f"magnet:?xt=urn:btih:{HASH.upper()}&dn=X"
        body = json.dumps({"data": {"items": [{"name": "X", "link": magnet, "size": 10, "cat": "1"}]}})
        release = _make_parser(data).parse(body, None, base_url=BASE_URL).releases[0]
        assert release.torrent.info_hash == HASH
        assert release.torrent.magnet_url == magnet

    def test_volume_factors_and_patterns(self, definition_data: dict[str, Any], results_html: str) -> None:
        definition_data["search"]["fields"]["uploadvolumefactor"] = {"text": "2"}
        definition_data["protocolConfig"] = {
            "torrent": {"freeleechPatterns": ["BluRay"], "internalPatterns": ["^Movie"]}
        }
        release = _make_parser(definition_data).parse(results_html, None, base_url=BASE_URL).releases[0]
        assert release.torrent.download_volume_factor == 0.0
        assert release.torrent.upload_volume_factor == 2.0
        assert release.torrent.freeleech is True
        assert release.torrent.is_internal is True

    def test_missing_download_and_magnet_skips_row(self, definition_data: dict[str, Any]) -> None:
        data = _json_definition(definition_data)
        data["search"]["fields"]["download"] = {"selector": "link", "optional": True}
        body = json.dumps({"data": {"items": [{"name": "X", "size": 10, "cat": "1"}]}})
        outcome = _make_parser(data).parse(body, None, base_url=BASE_URL)
        assert outcome.releases == []
        assert "missing download link" in outcome.warnings[0]


class TestJsonParsing:
    def test_json_rows(self, definition_data: dict[str, Any]) -> None:
        data = _json_definition(definition_data)
        body = json.dumps(
            {"data": {"items": [{"name": "A", "link": "/dl/a", "size": "2 GB", "cat": "2", "seeds": 5}]}}
        )
        release = _make_parser(data).parse(body, None, base_url=BASE_URL).releases[0]
        assert release.download_url == "https://tracker.example/dl/a"
        assert release.size == 2 * 1024**3
        assert release.categories == (5040,)
        assert release.torrent.seeders == 5

    def test_optional_default_zero(self, definition_data: dict[str, Any]) -> None:
        data = _json_definition(definition_data)
        body = json.dumps({"data": {"items": [{"name": "A", "link": "/dl/a", "size": 1, "cat": "2"}]}})
        release = _make_parser(data).parse(body, None, base_url=BASE_URL).releases[0]
        assert release.torrent.seeders == 0

    def test_missing_attribute_equals_no_results(self, definition_data: dict[str, Any]) -> None:
        data = _json_definition(definition_data, missingAttributeEqualsNoResults=True)
        outcome = _make_parser(data).parse(json.dumps({"data": {}}), None, base_url=BASE_URL)
        assert outcome.releases == []
        assert outcome.warnings == []

    def test_invalid_json_declared(self, definition_data: dict[str, Any]) -> None:
        data = _json_definition(definition_data)
        path = SearchPath(path="api", response=None)
        outcome = _make_parser(data).parse("{broken", path, base_url=BASE_URL)
        assert outcome.releases == []

    def test_declared_json_type_with_bad_body_warns(self, definition_data: dict[str, Any]) -> None:
        data = _json_definition(definition_data)
        data["search"]["paths"] = [{"path": "api", "response": {"type": "json"}}]
        parser = _make_parser(data)
        path = parser.definition.search.effective_paths()[0]
        outcome = parser.parse("not json", path, base_url=BASE_URL)
        assert outcome.warnings[0].startswith("Invalid JSON response")

    def test_count_zero_short_circuits(self, definition_data: dict[str, Any]) -> None:
        data = _json_definition(definition_data, count={"selector": "total"})
        body = json.dumps({"total": 0, "data": {"items": [{"name": "A", "link": "/x", "size": 1, "cat": "1"}]}})
        assert _make_parser(data).parse(body, None, base_url=BASE_URL).releases == []


class TestNoResultsAndFiltering:
    def test_no_results_message(self, definition_data: dict[str, Any]) -> None:
        definition_data["search"]["paths"] = [
            {"path": "search.php", "response": {"noResultsMessage": "Nothing found"}}
        ]
        parser = _make_parser(definition_data)
        path = parser.definition.search.effective_paths()[0]
        outcome = parser.parse("<p>Nothing found</p>", path, base_url=BASE_URL)
        assert outcome.releases == []
        assert outcome.warnings == []

    def test_andmatch_keeps_matching_titles(self, definition_data: dict[str, Any], results_html: str) -> None:
        definition_data["search"]["rows"]["filters"] = [{"name": "andmatch"}]
        parser = _make_parser(definition_data)
        parser.templates.set_query(SearchCriteria(query="my show"))
        outcome = parser.parse(results_html, None, base_url=BASE_URL)
        assert [r.title for r in outcome.releases] == ["My.Show.S01E05.720p"]


class TestOtherProtocols:
    def test_usenet_info(self, definition_data: dict[str, Any]) -> None:
        definition_data["protocol"] = "usenet"
        data = _json_definition(definition_data)
        data["search"]["fields"]["grabs"] = {"selector": "grabs"}
        data["search"]["fields"]["group"] = {"selector": "group"}
        body = json.dumps(
            {"data": {"items": [{"name": "A", "link": "/nzb/a", "size": 1, "cat": "1", "grabs": 12, "group": "alt.bin"}]}}
        )
        release = _make_parser(data).parse(body, None, base_url=BASE_URL).releases[0]
        assert release.protocol == "usenet"
        assert release.torrent is None
        assert release.usenet.grabs == 12
        assert release.usenet.group == "alt.bin"

    def test_streaming_quality(self, definition_data: dict[str, Any]) -> None:
        definition_data["protocol"] = "streaming"
        data = _json_definition(definition_data)
        data["search"]["fields"]["quality"] = {"selector": "q", "optional": True}
        body = json.dumps(
            {"data": {"items": [{"name": "Film 2024", "link": "https://s.example/e/1", "size": 0, "cat": "1", "q": "HD"}]}}
        )
        release = _make_parser(data).parse(body, None, base_url=BASE_URL).releases[0]
        assert release.streaming.quality == "720p"


def test_normalize_imdb_id() -> None:
    assert normalize_imdb_id("https://www.imdb.com/title/tt0133093/") == "tt0133093"
    assert normalize_imdb_id("133093") == "tt0133093"
    assert normalize_imdb_id("none") is None
