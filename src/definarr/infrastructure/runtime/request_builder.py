"""Search criteria + definition -> concrete HTTP request descriptors."""

from __future__ import annotations

import codecs
import json
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from urllib.parse import quote, quote_plus

import structlog

from definarr.domain.entities.categories import DEFAULT_SEARCH_CATEGORIES
from definarr.domain.entities.criteria import SearchCriteria
from definarr.domain.entities.definition import Definition, SearchPath
from definarr.infrastructure.common.urls import resolve_url
from definarr.infrastructure.config.schema import DEFAULT_MEANINGFUL_PARAMS
from definarr.infrastructure.engine.template import TemplateEngine
from definarr.infrastructure.runtime.category_mapper import CategoryMapper

log = structlog.get_logger(__name__)

ALWAYS_ALLOWED_PARAMS = frozenset({"t", "apikey", "limit", "cat", "extended", "offset", "attrs", "$raw"})
RAW_INPUT = "$raw"


@dataclass(frozen=True)
class HttpRequestDescriptor:
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    search_path: SearchPath | None = None


def _codec(encoding: str) -> str:
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        return "utf-8"


def encode_param(value: str, encoding: str = "utf-8") -> str:
    """Form-style escape using the site's declared character set."""
    return quote_plus(value, encoding=_codec(encoding), errors="replace")


def encode_path_value(value: str) -> str:
    return quote(value, safe="-_.!~*'()")


def _raw_pairs(raw: str) -> list[tuple[str, str]]:
    pairs = []
    for part in raw.split("&"):
        key, _, value = part.partition("=")
        if key:
            pairs.append((key, value))
    return pairs


class RequestBuilder:
    """Builds the ordered, de-duplicated request list for one search.

    Mutates the shared :class:`TemplateEngine` (``.Query.*``, ``.Keywords``,
    ``.Categories``) as a side effect; callers own one engine per indexer.
    """

    def __init__(
        self,
        definition: Definition,
        templates: TemplateEngine,
        *,
        base_url: str | None = None,
        meaningful_params: Sequence[str] = DEFAULT_MEANINGFUL_PARAMS,
    ) -> None:
        self.definition = definition
        self.templates = templates
        self.categories = CategoryMapper(definition.caps)
        self.meaningful_params = frozenset(p.lower() for p in meaningful_params)
        self._supported_params: dict[str, frozenset[str]] = {}
        self.base_url = base_url or definition.primary_link
        self.templates.set_site_link(self.base_url)

    def set_base_url(self, url: str) -> None:
        self.base_url = url
        self.templates.set_site_link(url)

    def set_supported_params(self, mode: str, params: Sequence[str]) -> None:
        """Restrict inputs sent for API mode *mode* (the ``t`` input) to *params*."""
        self._supported_params[mode] = frozenset(p.lower() for p in params)

    # ------------------------------------------------------------------
    # Search requests
    # ------------------------------------------------------------------

    def with_default_categories(self, criteria: SearchCriteria) -> SearchCriteria:
        if criteria.categories or criteria.search_type == "basic":
            return criteria
        defaults = DEFAULT_SEARCH_CATEGORIES.get(criteria.search_type, ())
        return replace(criteria, categories=defaults)

    def build_search_requests(self, criteria: SearchCriteria) -> list[HttpRequestDescriptor]:
        search = self.definition.search
        effective = self.with_default_categories(criteria)

        self.templates.set_query(effective)
        native_categories = self.categories.map_to_tracker(effective.categories)
        keywords = self.templates.get_variable(".Query.Keywords") or ""
        if search.keywords_filters:
            keywords = self.templates.filters.apply(keywords, search.keywords_filters)
        self.templates.set_variable(".Keywords", keywords)

        requests: list[HttpRequestDescriptor] = []
        seen: set[tuple[str, str | None]] = set()
        for path in self._candidate_paths(effective, native_categories):
            request = self._build_for_path(path, native_categories)
            if request is None:
                continue
            key = (request.url, request.body)
            if key in seen:
                continue
            seen.add(key)
            requests.append(request)

        log.debug(
            "search_requests_built",
            definition_id=self.definition.id,
            search_type=effective.search_type,
            count=len(requests),
        )
        return requests

    def _candidate_paths(
        self, criteria: SearchCriteria, native_categories: list[str]
    ) -> list[SearchPath]:
        paths = list(self.definition.search.effective_paths())
        matching = [p for p in paths if self.categories.path_matches(p.categories, native_categories)]
        if criteria.search_type == "basic":
            generic = [p for p in matching if not p.categories]
            return generic or matching
        scoped = [p for p in matching if p.categories and p.categories[0] != "!"]
        return scoped or matching

    def _expand_inputs(self, inputs: dict[str, str], into: dict[str, str]) -> None:
        allow_empty = self.definition.search.allow_empty_inputs
        for key, template in inputs.items():
            value = self.templates.expand(template)
            if value or allow_empty:
                into[key] = value

    def filter_supported(self, inputs: dict[str, str]) -> dict[str, str]:
        supported = self._supported_params.get(inputs.get("t") or "search")
        if not supported:
            return inputs
        return {
            k: v for k, v in inputs.items() if k.lower() in ALWAYS_ALLOWED_PARAMS or k.lower() in supported
        }

    def _build_for_path(
        self, path: SearchPath, native_categories: list[str]
    ) -> HttpRequestDescriptor | None:
        categories = native_categories
        if path.categories and path.categories[0] != "!":
            intersection = [c for c in native_categories if c in path.categories]
            if intersection:
                categories = intersection
        self.templates.set_categories(categories)

        url = resolve_url(self.base_url, self.templates.expand(path.path, encode_path_value)) or self.base_url

        inputs: dict[str, str] = {}
        if path.inherit_inputs:
            self._expand_inputs(self.definition.search.inputs, inputs)
        self._expand_inputs(path.inputs, inputs)
        inputs = self.filter_supported(inputs)

        names = [k for k in inputs if k != RAW_INPUT]
        names += [k for k, _ in _raw_pairs(inputs.get(RAW_INPUT, ""))]
        has_criteria = any(k.lower() in self.meaningful_params for k in names)
        if not has_criteria and ".Keywords" not in path.path:
            log.debug("search_path_skipped_no_criteria", path=path.path)
            return None

        headers = {
            name: self.templates.expand(values[0])
            for name, values in self.definition.search.headers.items()
            if values
        }
        return self._assemble(url, path, inputs, headers)

    def _encoded_pairs(self, inputs: dict[str, str]) -> list[str]:
        encoding = self.definition.encoding
        parts: list[str] = []
        for key, value in inputs.items():
            pairs = _raw_pairs(value) if key == RAW_INPUT else [(key, value)]
            parts.extend(f"{encode_param(k, encoding)}={encode_param(v, encoding)}" for k, v in pairs)
        return parts

    def _assemble(
        self, url: str, path: SearchPath, inputs: dict[str, str], headers: dict[str, str]
    ) -> HttpRequestDescriptor:
        if path.method == "get":
            query = path.query_separator.join(self._encoded_pairs(inputs))
            if query:
                url += ("&" if "?" in url else "?") + query
            return HttpRequestDescriptor(url=url, method="GET", headers=headers, search_path=path)

        content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), "")
        if "application/json" in content_type:
            document: dict[str, object] = {}
            for key, value in inputs.items():
                try:
                    document[key] = json.loads(value)
                except ValueError:
                    document[key] = value
            body = json.dumps(document)
        else:
            body = "&".join(self._encoded_pairs(inputs))
            if not content_type:
                headers["Content-Type"] = "application/x-www-form-urlencoded"
        return HttpRequestDescriptor(url=url, method="POST", headers=headers, body=body, search_path=path)
