from __future__ import annotations

from .categories import (
    NEWZNAB_CATEGORIES,
    category_family,
    category_id_by_name,
    category_name,
    resolve_category_id,
)
from .criteria import EpisodeFormat, SearchCriteria, SearchType
from .definition import (
    Capabilities,
    CategoryMapping,
    Definition,
    DownloadBlock,
    FilterSpec,
    LoginBlock,
    SearchBlock,
    SearchPath,
    SelectorBlock,
    SettingField,
)
from .release import (
    DownloadResult,
    ReleaseResult,
    StreamingInfo,
    TorrentInfo,
    UsenetInfo,
)
from .selection import Selection, SelectionResult
from .session import CookieRecord, IndexerRecord, IndexerStatus

__all__ = [
    "NEWZNAB_CATEGORIES",
    "Capabilities",
    "CategoryMapping",
    "CookieRecord",
    "Definition",
    "DownloadBlock",
    "DownloadResult",
    "EpisodeFormat",
    "FilterSpec",
    "IndexerRecord",
    "IndexerStatus",
    "LoginBlock",
    "ReleaseResult",
    "SearchBlock",
    "SearchCriteria",
    "SearchPath",
    "SearchType",
    "Selection",
    "SelectionResult",
    "SelectorBlock",
    "SettingField",
    "StreamingInfo",
    "TorrentInfo",
    "UsenetInfo",
    "category_family",
    "category_id_by_name",
    "category_name",
    "resolve_category_id",
]
