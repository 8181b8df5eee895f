"""Session and indexer bookkeeping records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CookieRecord:
    """Persisted cookies for one indexer.

    ``expirations`` holds per-cookie expiry; ``expires_at`` is the session
    expiry as a whole. Both are timezone-aware UTC datetimes.
    """

    cookies: dict[str, str]
    expires_at: datetime
    updated_at: datetime
    expirations: dict[str, datetime] = field(default_factory=dict)


@dataclass
class IndexerStatus:
    """Health bookkeeping for one indexer (mutable, persisted externally)."""

    indexer_id: str
    consecutive_failures: int = 0
    last_error: str | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    disabled_until: datetime | None = None


@dataclass(frozen=True)
class IndexerRecord:
    """User configuration of one indexer instance."""

    id: str
    name: str
    definition_id: str
    base_url: str | None = None
    alternate_urls: tuple[str, ...] = ()
    settings: dict[str, Any] = field(default_factory=dict)
    protocol_settings: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    priority: int = 25
    enable_automatic_search: bool = True
    enable_interactive_search: bool = True
