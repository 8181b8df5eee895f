"""Pydantic validation models for indexer definition YAML files.

The models mirror the community (Cardigann) definition format. Scalar
values that definitions commonly write as numbers or booleans (inputs,
defaults, category ids) are coerced to strings here so the domain layer
only ever sees text.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator

DEFINITION_ID_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")

SettingTypeName = Literal[
    "text",
    "password",
    "checkbox",
    "select",
    "info",
    "info_cookie",
    "info_cloudflare",
    "info_flaresolverr",
    "info_useragent",
    "info_category_8000",
    "cardigannCaptcha",
]


def _to_str(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _to_str_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (str, int, float, bool)):
        return [_to_str(value)]
    if isinstance(value, list):
        return [_to_str(v) for v in value]
    return value


Text = Annotated[str, BeforeValidator(_to_str)]
TextList = Annotated[List[str], BeforeValidator(_to_str_list)]


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class FilterBlockModel(_Model):
    name: str
    args: TextList = Field(default_factory=list)


class SelectorBlockModel(_Model):
    selector: Optional[str] = None
    optional: bool = False
    default: Optional[Text] = None
    text: Optional[Text] = None
    attribute: Optional[str] = None
    remove: Optional[str] = None
    filters: List[FilterBlockModel] = Field(default_factory=list)
    case: Dict[str, Text] = Field(default_factory=dict)


class SettingsFieldModel(_Model):
    name: str
    type: SettingTypeName
    label: Optional[str] = None
    default: Optional[Union[bool, int, str]] = None
    required: bool = False
    options: Dict[Text, Text] = Field(default_factory=dict)


class CategoryMappingModel(_Model):
    id: Text
    cat: Optional[str] = None
    desc: Optional[str] = None
    default: bool = False


class CapabilitiesModel(_Model):
    categories: Dict[Text, Text] = Field(default_factory=dict)
    categorymappings: List[CategoryMappingModel] = Field(default_factory=list)
    modes: Dict[str, TextList] = Field(default_factory=dict)
    allowrawsearch: bool = False


# === Login ===


class ErrorBlockModel(_Model):
    path: Optional[str] = None
    selector: Optional[str] = None
    message: Optional[SelectorBlockModel] = None


class PageTestBlockModel(_Model):
    path: Optional[str] = None
    selector: Optional[str] = None


class ApiKeyAuthModel(_Model):
    location: Literal["header", "query", "both"] = "query"
    header_name: str = Field(default="X-Api-Key", alias="headerName")
    query_param: str = Field(default="apikey", alias="queryParam")
    prefix: str = ""
    source: Optional[str] = None


class LoginBlockModel(_Model):
    path: Optional[str] = None
    submitpath: Optional[str] = None
    cookies: TextList = Field(default_factory=list)
    method: Literal[
        "post", "form", "cookie", "get", "oneurl", "apikey", "basic", "passkey", "none"
    ] = "post"
    form: Optional[str] = None
    selectors: bool = False
    inputs: Dict[str, Text] = Field(default_factory=dict)
    selectorinputs: Dict[str, SelectorBlockModel] = Field(default_factory=dict)
    getselectorinputs: Dict[str, SelectorBlockModel] = Field(default_factory=dict)
    error: List[ErrorBlockModel] = Field(default_factory=list)
    test: Optional[PageTestBlockModel] = None
    captcha: Optional[Dict[str, Any]] = None
    headers: Dict[str, TextList] = Field(default_factory=dict)
    apikey: Optional[ApiKeyAuthModel] = None


# === Search ===


class ResponseBlockModel(_Model):
    type: Optional[Literal["json", "html", "xml"]] = None
    no_results_message: Optional[str] = Field(default=None, alias="noResultsMessage")


class SearchPathModel(_Model):
    path: Text = ""
    method: Optional[str] = None
    inputs: Dict[str, Text] = Field(default_factory=dict)
    queryseparator: str = "&"
    categories: TextList = Field(default_factory=list)
    inheritinputs: bool = True
    followredirect: Optional[bool] = None
    response: Optional[ResponseBlockModel] = None


class RowsBlockModel(SelectorBlockModel):
    after: int = 0
    dateheaders: Optional[SelectorBlockModel] = None
    count: Optional[SelectorBlockModel] = None
    multiple: Union[bool, str] = False
    missing_attribute_equals_no_results: bool = Field(
        default=False, alias="missingAttributeEqualsNoResults"
    )


class SearchBlockModel(_Model):
    type: Literal["http", "database"] = "http"
    path: Optional[Text] = None
    paths: List[SearchPathModel] = Field(default_factory=list)
    headers: Dict[str, TextList] = Field(default_factory=dict)
    keywordsfilters: List[FilterBlockModel] = Field(default_factory=list)
    allow_empty_inputs: bool = Field(default=False, alias="allowEmptyInputs")
    inputs: Dict[str, Text] = Field(default_factory=dict)
    error: List[ErrorBlockModel] = Field(default_factory=list)
    preprocessingfilters: List[FilterBlockModel] = Field(default_factory=list)
    rows: Optional[RowsBlockModel] = None
    fields: Dict[str, Union[SelectorBlockModel, Text]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_paths(self) -> "SearchBlockModel":
        if self.type == "http":
            if not self.path and not self.paths:
                raise ValueError("search requires 'path' or 'paths'")
            if self.rows is None or not self.rows.selector:
                raise ValueError("search requires 'rows.selector'")
        return self


# === Download ===


class SelectorFieldModel(_Model):
    selector: Optional[str] = None
    attribute: Optional[str] = None
    usebeforeresponse: bool = False
    filters: List[FilterBlockModel] = Field(default_factory=list)


class BeforeBlockModel(_Model):
    path: Optional[str] = None
    method: Optional[str] = None
    inputs: Dict[str, Text] = Field(default_factory=dict)
    queryseparator: str = "&"
    pathselector: Optional[SelectorFieldModel] = None


class InfohashBlockModel(_Model):
    hash: Optional[SelectorFieldModel] = None
    title: Optional[SelectorFieldModel] = None
    usebeforeresponse: bool = False


class DownloadBlockModel(_Model):
    selectors: List[SelectorFieldModel] = Field(default_factory=list)
    method: Optional[str] = None
    before: Optional[BeforeBlockModel] = None
    infohash: Optional[InfohashBlockModel] = None
    headers: Dict[str, TextList] = Field(default_factory=dict)


# === Protocol configuration ===


class TorrentProtocolModel(_Model):
    supports_magnet: bool = Field(default=True, alias="supportsMagnet")
    supports_info_hash: bool = Field(default=True, alias="supportsInfoHash")
    freeleech_patterns: List[str] = Field(default_factory=list, alias="freeleechPatterns")
    internal_patterns: List[str] = Field(default_factory=list, alias="internalPatterns")


class UsenetProtocolModel(_Model):
    api_type: str = Field(default="newznab", alias="apiType")
    default_api_path: str = Field(default="/api", alias="defaultApiPath")


class StreamingProviderModel(_Model):
    id: str
    name: Optional[str] = None
    enabled: bool = True


class StreamingProtocolModel(_Model):
    type: Literal["internal", "external"] = "external"
    data_source: Literal["database", "http"] = Field(default="http", alias="dataSource")
    providers: List[StreamingProviderModel] = Field(default_factory=list)


class ProtocolConfigModel(_Model):
    torrent: Optional[TorrentProtocolModel] = None
    usenet: Optional[UsenetProtocolModel] = None
    streaming: Optional[StreamingProtocolModel] = None


# === Definition ===


class DefinitionModel(_Model):
    id: Text
    replaces: TextList = Field(default_factory=list)
    name: Text
    description: Optional[str] = None
    type: Literal["public", "semi-private", "private"] = "public"
    language: str = "en-US"
    encoding: str = "UTF-8"
    protocol: Literal["torrent", "usenet", "streaming"] = "torrent"
    requestdelay: Optional[float] = None
    links: List[str]
    legacylinks: List[str] = Field(default_factory=list)
    followredirect: bool = False
    testlinktorrent: bool = True
    certificates: List[str] = Field(default_factory=list)
    protocol_config: Optional[ProtocolConfigModel] = Field(default=None, alias="protocolConfig")
    settings: List[SettingsFieldModel] = Field(default_factory=list)
    caps: CapabilitiesModel = Field(default_factory=CapabilitiesModel)
    login: Optional[LoginBlockModel] = None
    ratio: Optional[Dict[str, Any]] = None
    search: SearchBlockModel
    download: Optional[DownloadBlockModel] = None

    @field_validator("id")
    @classmethod
    def _validate_id(cls, v: str) -> str:
        if not DEFINITION_ID_RE.match(v):
            raise ValueError(f"invalid id {v!r}; expected lowercase letters, digits, '.', '_' or '-'")
        return v

    @field_validator("links")
    @classmethod
    def _validate_links(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one link is required")
        for link in v:
            if not link.startswith(("http://", "https://")):
                raise ValueError(f"link must be http(s): {link!r}")
        return v
