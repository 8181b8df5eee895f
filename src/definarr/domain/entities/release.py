"""Normalized release records produced by indexers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

Protocol = Literal["torrent", "usenet", "streaming"]
AccessType = Literal["public", "semi-private", "private"]


@dataclass(frozen=True)
class TorrentInfo:
    seeders: int | None = None
    leechers: int | None = None
    grabs: int | None = None
    info_hash: str | None = None
    magnet_url: str | None = None
    download_volume_factor: float = 1.0
    upload_volume_factor: float = 1.0
    minimum_ratio: float | None = None
    minimum_seed_time: int | None = None
    is_internal: bool = False

    @property
    def freeleech(self) -> bool:
        return self.download_volume_factor == 0


@dataclass(frozen=True)
class UsenetInfo:
    group: str | None = None
    poster: str | None = None
    grabs: int | None = None
    completion: float | None = None
    password_protected: bool = False
    file_count: int | None = None


@dataclass(frozen=True)
class StreamingInfo:
    quality: str = "unknown"
    provider: str | None = None


@dataclass(frozen=True)
class ReleaseResult:
    """One search hit, independent of the site it came from.

    Exactly one of ``torrent`` / ``usenet`` / ``streaming`` is populated,
    matching ``protocol``.
    """

    guid: str
    title: str
    download_url: str
    indexer_id: str
    protocol: Protocol
    size: int = 0
    publish_date: datetime | None = None
    indexer_name: str | None = None
    categories: tuple[int, ...] = ()
    details_url: str | None = None
    description: str | None = None
    poster: str | None = None
    genre: str | None = None
    imdb_id: str | None = None
    tmdb_id: int | None = None
    tvdb_id: int | None = None
    torrent: TorrentInfo | None = None
    usenet: UsenetInfo | None = None
    streaming: StreamingInfo | None = None
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def magnet_url(self) -> str | None:
        if self.torrent is not None and self.torrent.magnet_url:
            return self.torrent.magnet_url
        if self.download_url.startswith("magnet:"):
            return self.download_url
        return None


@dataclass(frozen=True)
class DownloadResult:
    """Outcome of fetching a release: raw bytes or a magnet link."""

    data: bytes | None = None
    magnet_url: str | None = None
    info_hash: str | None = None
    final_url: str | None = None
