"""Pure domain models for indexer definitions (framework-free).

A ``Definition`` is the validated, immutable form of one site's YAML
document. Validation and coercion happen in the infrastructure layer
(pydantic); these classes only carry data and small total functions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from .release import AccessType, Protocol

SettingType = Literal["text", "password", "checkbox", "select", "info"]
LoginMethod = Literal["post", "form", "cookie", "get", "oneurl", "apikey", "basic", "passkey", "none"]

LOGIN_METHODS: frozenset[str] = frozenset(
    {"post", "form", "cookie", "get", "oneurl", "apikey", "basic", "passkey", "none"}
)

_TRUE_STRINGS = frozenset({"true", "1", "on", "yes"})


# ------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------


@dataclass(frozen=True)
class SettingField:
    """One user-configurable field declared by a definition."""

    name: str
    type: SettingType = "text"
    label: str | None = None
    default: str | bool | int | None = None
    required: bool = False
    options: dict[str, str] = field(default_factory=dict)
    raw_type: str | None = None

    @property
    def is_info(self) -> bool:
        return self.type == "info"

    def resolve(self, raw: Any) -> str | bool | None:
        """Turn a user-supplied value (or ``None``) into a template value.

        - ``text`` / ``password``: the string, else the default, else ``None``.
        - ``checkbox``: ``True`` when checked, ``None`` otherwise.
        - ``select``: always one of the option keys (index values are clamped).
        - ``info``: never produces a value.
        """
        if self.type == "info":
            return None
        if self.type == "checkbox":
            return _resolve_checkbox(raw if raw is not None else self.default)
        if self.type == "select":
            return self._resolve_select(raw)
        value = raw if raw not in (None, "") else self.default
        if value is None:
            return None
        return str(value)

    def _resolve_select(self, raw: Any) -> str | None:
        keys = sorted(self.options)
        if not keys:
            return None if raw is None else str(raw)
        if raw is None or raw == "":
            default = None if self.default is None else str(self.default)
            return default if default in self.options else keys[0]
        text = str(raw)
        if text in self.options:
            return text
        try:
            index = int(text)
        except ValueError:
            return keys[0]
        index = max(0, min(index, len(keys) - 1))
        return keys[index]


def _resolve_checkbox(value: Any) -> bool | None:
    if isinstance(value, bool):
        return True if value else None
    if value is None:
        return None
    return True if str(value).strip().lower() in _TRUE_STRINGS else None


# ------------------------------------------------------------------
# Extraction blocks
# ------------------------------------------------------------------


@dataclass(frozen=True)
class FilterSpec:
    name: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class SelectorBlock:
    """Declarative extraction instruction (HTML/XML/JSON)."""

    selector: str | None = None
    attribute: str | None = None
    text: str | None = None
    remove: str | None = None
    case: tuple[tuple[str, str], ...] = ()
    default: str | None = None
    optional: bool = False
    filters: tuple[FilterSpec, ...] = ()

    @classmethod
    def of_text(cls, text: str) -> SelectorBlock:
        return cls(text=text)


# ------------------------------------------------------------------
# Capabilities
# ------------------------------------------------------------------


@dataclass(frozen=True)
class CategoryMapping:
    id: str
    cat: str | None
    newznab_id: int
    desc: str | None = None
    default: bool = False


@dataclass(frozen=True)
class Capabilities:
    categories: dict[str, str] = field(default_factory=dict)
    category_mappings: tuple[CategoryMapping, ...] = ()
    modes: dict[str, tuple[str, ...]] = field(default_factory=dict)
    allow_raw_search: bool = False


# ------------------------------------------------------------------
# Login
# ------------------------------------------------------------------


@dataclass(frozen=True)
class LoginErrorCheck:
    selector: str
    path: str | None = None
    message: SelectorBlock | None = None


@dataclass(frozen=True)
class LoginTest:
    path: str | None = None
    selector: str | None = None


@dataclass(frozen=True)
class ApiKeyConfig:
    location: Literal["header", "query", "both"] = "header"
    header_name: str = "X-Api-Key"
    query_param: str = "apikey"
    prefix: str = ""
    source: str = "apikey"


@dataclass(frozen=True)
class LoginBlock:
    method: LoginMethod = "post"
    path: str | None = None
    submit_path: str | None = None
    cookies: tuple[str, ...] = ()
    form: str | None = None
    selectors: bool = False
    inputs: dict[str, str] = field(default_factory=dict)
    selector_inputs: dict[str, SelectorBlock] = field(default_factory=dict)
    get_selector_inputs: dict[str, SelectorBlock] = field(default_factory=dict)
    errors: tuple[LoginErrorCheck, ...] = ()
    test: LoginTest | None = None
    headers: dict[str, tuple[str, ...]] = field(default_factory=dict)
    apikey: ApiKeyConfig | None = None
    captcha: dict[str, Any] | None = None


# ------------------------------------------------------------------
# Search
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ResponseConfig:
    type: Literal["html", "json", "xml"] | None = None
    no_results_message: str | None = None


@dataclass(frozen=True)
class SearchPath:
    path: str
    method: Literal["get", "post"] = "get"
    inputs: dict[str, str] = field(default_factory=dict)
    query_separator: str = "&"
    categories: tuple[str, ...] = ()
    inherit_inputs: bool = True
    follow_redirect: bool | None = None
    response: ResponseConfig | None = None


@dataclass(frozen=True)
class RowsBlock:
    selector: str
    after: int = 0
    date_headers: SelectorBlock | None = None
    count: SelectorBlock | None = None
    multiple: bool = False
    missing_attribute_equals_no_results: bool = False
    filters: tuple[FilterSpec, ...] = ()


@dataclass(frozen=True)
class SearchBlock:
    rows: RowsBlock
    fields: dict[str, SelectorBlock]
    type: Literal["http", "database"] = "http"
    path: str | None = None
    paths: tuple[SearchPath, ...] = ()
    headers: dict[str, tuple[str, ...]] = field(default_factory=dict)
    keywords_filters: tuple[FilterSpec, ...] = ()
    allow_empty_inputs: bool = False
    inputs: dict[str, str] = field(default_factory=dict)
    errors: tuple[LoginErrorCheck, ...] = ()
    preprocessing_filters: tuple[FilterSpec, ...] = ()

    def effective_paths(self) -> tuple[SearchPath, ...]:
        """``paths`` when declared, else the legacy single ``path``."""
        if self.paths:
            return self.paths
        if self.path is not None:
            return (SearchPath(path=self.path),)
        return ()


# ------------------------------------------------------------------
# Download
# ------------------------------------------------------------------


@dataclass(frozen=True)
class DownloadSelector:
    selector: str
    attribute: str | None = None
    use_before_response: bool = False
    filters: tuple[FilterSpec, ...] = ()


@dataclass(frozen=True)
class BeforeBlock:
    path: str | None = None
    method: Literal["get", "post"] = "get"
    inputs: dict[str, str] = field(default_factory=dict)
    path_selector: SelectorBlock | None = None


@dataclass(frozen=True)
class InfohashBlock:
    hash: SelectorBlock
    title: SelectorBlock
    use_before_response: bool = False


@dataclass(frozen=True)
class DownloadBlock:
    selectors: tuple[DownloadSelector, ...] = ()
    method: Literal["get", "post"] = "get"
    before: BeforeBlock | None = None
    infohash: InfohashBlock | None = None
    headers: dict[str, tuple[str, ...]] = field(default_factory=dict)


# ------------------------------------------------------------------
# Protocol-specific configuration
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TorrentConfig:
    supports_magnet: bool = True
    supports_info_hash: bool = True
    freeleech_patterns: tuple[str, ...] = ()
    internal_patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class UsenetConfig:
    api_type: str = "newznab"
    default_api_path: str = "/api"


@dataclass(frozen=True)
class StreamingConfig:
    type: str = "external"
    data_source: Literal["http", "database"] = "http"
    providers: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProtocolConfig:
    torrent: TorrentConfig | None = None
    usenet: UsenetConfig | None = None
    streaming: StreamingConfig | None = None


# ------------------------------------------------------------------
# Definition
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Definition:
    id: str
    name: str
    links: tuple[str, ...]
    caps: Capabilities
    search: SearchBlock
    access_type: AccessType = "public"
    protocol: Protocol = "torrent"
    description: str | None = None
    language: str = "en-US"
    encoding: str = "UTF-8"
    request_delay: float | None = None
    legacy_links: tuple[str, ...] = ()
    follow_redirect: bool = False
    test_link_torrent: bool = True
    settings: tuple[SettingField, ...] = ()
    login: LoginBlock | None = None
    download: DownloadBlock | None = None
    protocol_config: ProtocolConfig = field(default_factory=ProtocolConfig)
    replaces: tuple[str, ...] = ()
    source: str | None = None

    @property
    def primary_link(self) -> str:
        return self.links[0]

    @property
    def uses_database_search(self) -> bool:
        """Internal streaming catalogs are queried directly, not over HTTP."""
        if self.protocol != "streaming":
            return False
        streaming = self.protocol_config.streaming
        if self.search.type == "database":
            return True
        return streaming is not None and (
            streaming.data_source == "database" or streaming.type == "internal"
        )

    def setting(self, name: str) -> SettingField | None:
        for s in self.settings:
            if s.name == name:
                return s
        return None
