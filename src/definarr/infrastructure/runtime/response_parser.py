"""Raw search response -> normalized :class:`ReleaseResult` records.

A row that fails to parse is skipped and recorded in
:attr:`ParseOutcome.warnings`; it never aborts the batch.
"""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from bs4 import BeautifulSoup, Tag

from definarr.domain.entities.definition import Definition, SearchPath
from definarr.domain.entities.release import (
    ReleaseResult,
    StreamingInfo,
    TorrentInfo,
    UsenetInfo,
)
from definarr.domain.exceptions import SelectorError
from definarr.infrastructure.common.converters import to_float, to_int
from definarr.infrastructure.common.dates import parse_fuzzy_date
from definarr.infrastructure.common.parsers import parse_size_to_bytes
from definarr.infrastructure.common.release_quality import parse_quality
from definarr.infrastructure.common.torrent import build_magnet, info_hash_from_magnet
from definarr.infrastructure.common.urls import resolve_url
from definarr.infrastructure.engine.json_path import detect_response_type, select_json
from definarr.infrastructure.engine.selectors import SelectorEngine, parse_html, parse_xml
from definarr.infrastructure.runtime.category_mapper import CategoryMapper

log = structlog.get_logger(__name__)

_IMDB_RE = re.compile(r"(\d{5,})")
_INFOHASH_RE = re.compile(r"^[0-9a-fA-F]{40}$")

# Field names consumed by normalization; everything else lands in ``extra``.
_KNOWN_FIELDS = frozenset(
    {
        "title",
        "details",
        "comments",
        "download",
        "magnet",
        "infohash",
        "size",
        "seeders",
        "leechers",
        "grabs",
        "files",
        "date",
        "publishdate",
        "category",
        "categorydesc",
        "imdb",
        "imdbid",
        "tmdbid",
        "tvdbid",
        "downloadvolumefactor",
        "uploadvolumefactor",
        "minimumratio",
        "minimumseedtime",
        "genre",
        "poster",
        "description",
        "guid",
        "group",
        "usenetgroup",
        "poster_name",
        "completion",
        "password",
        "quality",
        "provider",
    }
)


@dataclass
class ParseOutcome:
    releases: list[ReleaseResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class _RowSkipped(Exception):
    pass


def normalize_imdb_id(value: str | None) -> str | None:
    if not value:
        return None
    match = _IMDB_RE.search(value)
    if not match:
        return None
    return f"tt{match.group(1).zfill(7)}"


def _split_ids(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class ResponseParser:
    def __init__(
        self,
        definition: Definition,
        selectors: SelectorEngine,
        categories: CategoryMapper,
        *,
        indexer_id: str,
        indexer_name: str | None = None,
    ) -> None:
        self.definition = definition
        self.selectors = selectors
        self.templates = selectors.templates
        self.categories = categories
        self.indexer_id = indexer_id
        self.indexer_name = indexer_name or definition.name

    # ------------------------------------------------------------------
    # Document level
    # ------------------------------------------------------------------

    def parse(self, content: str, search_path: SearchPath | None, *, base_url: str) -> ParseOutcome:
        outcome = ParseOutcome()
        search = self.definition.search
        if search.preprocessing_filters:
            content = self.templates.filters.apply(content, search.preprocessing_filters)

        response = search_path.response if search_path else None
        if response and response.no_results_message and response.no_results_message in content:
            return outcome

        kind = (response.type if response and response.type else None) or detect_response_type(content)
        document: Any
        if kind == "json":
            try:
                document = json.loads(content.lstrip("\ufeff"))
            except ValueError as e:
                outcome.warnings.append(f"Invalid JSON response: {e}")
                return outcome
        elif kind == "xml":
            document = parse_xml(content)
        else:
            document = parse_html(content)

        rows_block = search.rows
        if rows_block.count is not None:
            count = self.selectors.select(document, rows_block.count, required=False).value
            if count is not None and to_int(count) == 0:
                return outcome

        if kind == "json" and rows_block.missing_attribute_equals_no_results and rows_block.selector:
            try:
                missing = select_json(document, rows_block.selector) is None
            except ValueError:
                missing = False
            if missing:
                return outcome

        try:
            rows = self._rows(document)
        except SelectorError as e:
            outcome.warnings.append(str(e))
            return outcome

        for index, row in enumerate(rows):
            try:
                release = self._parse_row(row, base_url)
            except _RowSkipped as e:
                outcome.warnings.append(f"row {index}: {e}")
                continue
            except Exception as e:  # noqa: BLE001
                log.warning("row_parse_failed", indexer_id=self.indexer_id, row=index, error=str(e))
                outcome.warnings.append(f"row {index}: {e}")
                continue
            finally:
                self.templates.clear_row_context()
            if release is not None:
                outcome.releases.append(release)

        if outcome.warnings:
            log.debug(
                "response_parse_warnings",
                indexer_id=self.indexer_id,
                count=len(outcome.warnings),
                first=outcome.warnings[0],
            )
        return outcome

    def _rows(self, document: Any) -> list[Any]:
        rows_block = self.definition.search.rows
        if not rows_block.selector:
            rows = document if isinstance(document, list) else [document]
        else:
            rows = self.selectors.select_all(document, rows_block.selector)

        if rows_block.multiple:
            flattened: list[Any] = []
            for row in rows:
                flattened.extend(row if isinstance(row, list) else [row])
            rows = flattened

        if rows_block.after > 0 and rows and isinstance(rows[0], Tag):
            rows = self._merge_after(rows, rows_block.after)
        return rows

    @staticmethod
    def _merge_after(rows: list[Tag], after: int) -> list[Tag]:
        merged: list[Tag] = []
        step = after + 1
        for start in range(0, len(rows), step):
            wrapper = BeautifulSoup("", "lxml").new_tag("div")
            for row in rows[start : start + step]:
                wrapper.append(copy.copy(row))
            merged.append(wrapper)
        return merged

    def _date_header(self, row: Any) -> str | None:
        block = self.definition.search.rows.date_headers
        if block is None or not isinstance(row, Tag) or not block.selector:
            return None
        for sibling in row.find_previous_siblings():
            if self.selectors.matches(sibling, block.selector):
                return self.selectors.select(sibling, block, required=False).value
        return None

    # ------------------------------------------------------------------
    # Row level
    # ------------------------------------------------------------------

    def _extract_fields(self, row: Any) -> dict[str, str | None]:
        values: dict[str, str | None] = {}
        for name, block in self.definition.search.fields.items():
            try:
                result = self.selectors.select(row, block, required=True)
            except SelectorError as e:
                raise _RowSkipped(f"field {name!r}: {e}") from e
            values[name] = result.value
            self.templates.set_row_context({name: result.value})
        return values

    def _parse_row(self, row: Any, base_url: str) -> ReleaseResult | None:
        self.templates.clear_row_context()
        values = self._extract_fields(row)
        if not values.get("date") and not values.get("publishdate"):
            header = self._date_header(row)
            if header:
                values["date"] = header

        title = (values.get("title") or "").strip()
        if not title:
            raise _RowSkipped("missing title")

        details = resolve_url(base_url, values.get("details") or values.get("comments"))
        download = resolve_url(base_url, values.get("download"))
        magnet = values.get("magnet") or None
        if download and download.startswith("magnet:") and not magnet:
            magnet = download

        info_hash = (values.get("infohash") or "").strip() or None
        if info_hash and not _INFOHASH_RE.match(info_hash):
            info_hash = None
        if info_hash is None and magnet:
            info_hash = info_hash_from_magnet(magnet)
        if magnet is None and info_hash and self.definition.protocol == "torrent":
            magnet = build_magnet(info_hash, title)

        if not download:
            download = magnet
        if not download:
            raise _RowSkipped(f"missing download link for {title!r}")

        categories = self._categories(values)
        guid = values.get("guid") or details or download

        publish_date = parse_fuzzy_date(values.get("date") or values.get("publishdate"))
        if publish_date is None:
            publish_date = datetime.now(timezone.utc)

        release = ReleaseResult(
            guid=guid,
            title=title,
            download_url=download,
            indexer_id=self.indexer_id,
            indexer_name=self.indexer_name,
            protocol=self.definition.protocol,
            size=parse_size_to_bytes(values.get("size")),
            publish_date=publish_date,
            categories=categories,
            details_url=details,
            description=values.get("description") or None,
            poster=resolve_url(base_url, values.get("poster")),
            genre=values.get("genre") or None,
            imdb_id=normalize_imdb_id(values.get("imdbid") or values.get("imdb")),
            tmdb_id=to_int(values.get("tmdbid")),
            tvdb_id=to_int(values.get("tvdbid")),
            extra={
                k: v
                for k, v in values.items()
                if k not in _KNOWN_FIELDS and not k.startswith("_") and v is not None
            },
            **self._protocol_info(values, title, magnet, info_hash),
        )
        if not self._passes_row_filters(release):
            return None
        return release

    def _categories(self, values: dict[str, str | None]) -> tuple[int, ...]:
        native_ids = _split_ids(values.get("category"))
        mapped: list[int] = []
        for native_id in native_ids:
            mapped.extend(c for c in self.categories.map_from_tracker(native_id) if c not in mapped)
        description = values.get("categorydesc")
        if description:
            mapped.extend(
                c for c in self.categories.map_from_description(description) if c not in mapped
            )
        if mapped:
            return tuple(mapped)
        return self.categories.normalize(native_ids)

    def _protocol_info(
        self,
        values: dict[str, str | None],
        title: str,
        magnet: str | None,
        info_hash: str | None,
    ) -> dict[str, Any]:
        protocol = self.definition.protocol
        if protocol == "usenet":
            return {
                "usenet": UsenetInfo(
                    group=values.get("group") or values.get("usenetgroup") or None,
                    poster=values.get("poster_name") or None,
                    grabs=to_int(values.get("grabs")),
                    completion=to_float(values.get("completion")),
                    password_protected=(values.get("password") or "").strip().lower()
                    in ("1", "true", "yes"),
                    file_count=to_int(values.get("files")),
                )
            }
        if protocol == "streaming":
            return {
                "streaming": StreamingInfo(
                    quality=parse_quality(release_name=title, quality_badge=values.get("quality")),
                    provider=values.get("provider") or None,
                )
            }

        download_factor = to_float(values.get("downloadvolumefactor"))
        upload_factor = to_float(values.get("uploadvolumefactor"))
        config = self.definition.protocol_config.torrent
        is_internal = False
        if config is not None:
            if any(re.search(p, title, re.IGNORECASE) for p in config.freeleech_patterns):
                download_factor = 0.0
            is_internal = any(re.search(p, title, re.IGNORECASE) for p in config.internal_patterns)
        return {
            "torrent": TorrentInfo(
                seeders=to_int(values.get("seeders")),
                leechers=to_int(values.get("leechers")),
                grabs=to_int(values.get("grabs")),
                info_hash=info_hash.lower() if info_hash else None,
                magnet_url=magnet,
                download_volume_factor=1.0 if download_factor is None else download_factor,
                upload_volume_factor=1.0 if upload_factor is None else upload_factor,
                minimum_ratio=to_float(values.get("minimumratio")),
                minimum_seed_time=to_int(values.get("minimumseedtime")),
                is_internal=is_internal,
            )
        }

    def _passes_row_filters(self, release: ReleaseResult) -> bool:
        """``andmatch`` keeps only rows whose title contains every query keyword."""
        for spec in self.definition.search.rows.filters:
            if spec.name.lower() != "andmatch":
                continue
            keywords = self.templates.get_variable(".Query.Keywords") or ""
            title = release.title.lower()
            if not all(word.lower() in title for word in str(keywords).split()):
                return False
        return True
