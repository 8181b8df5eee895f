"""Search criteria passed into an indexer."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Literal

SearchType = Literal["basic", "movie", "tv", "music", "book"]
EpisodeFormat = Literal["standard", "european", "compact"]

# Fields that only make sense for one content type. Shared identifiers
# (imdb/tmdb/year) are valid for several types and are checked separately.
_TYPE_ONLY_FIELDS: dict[str, frozenset[str]] = {
    "tv": frozenset({"season", "episode", "tvdb_id", "tvmaze_id", "preferred_episode_format"}),
    "music": frozenset({"artist", "album", "label", "track"}),
    "book": frozenset({"author", "title", "publisher"}),
}
_SHARED_FIELDS: dict[str, frozenset[SearchType]] = {
    "imdb_id": frozenset({"movie", "tv"}),
    "tmdb_id": frozenset({"movie", "tv"}),
    "trakt_id": frozenset({"movie", "tv"}),
    "douban_id": frozenset({"movie", "tv"}),
    "year": frozenset({"movie", "music"}),
    "genre": frozenset({"movie", "tv", "music", "book"}),
}


@dataclass(frozen=True)
class SearchCriteria:
    """Normalized search request.

    Only the fields belonging to ``search_type`` may be set; constructing a
    movie search with a season number raises ``ValueError``.
    """

    search_type: SearchType = "basic"
    query: str | None = None
    categories: tuple[int, ...] = ()
    limit: int | None = None
    offset: int | None = None

    # movie / tv identifiers
    imdb_id: str | None = None
    tmdb_id: int | None = None
    trakt_id: int | None = None
    douban_id: int | None = None
    year: int | None = None
    genre: str | None = None

    # tv
    season: int | None = None
    episode: int | None = None
    tvdb_id: int | None = None
    tvmaze_id: int | None = None
    preferred_episode_format: EpisodeFormat | None = None

    # music
    artist: str | None = None
    album: str | None = None
    label: str | None = None
    track: str | None = None

    # book
    author: str | None = None
    title: str | None = None
    publisher: str | None = None

    def __post_init__(self) -> None:
        for f in fields(self):
            if getattr(self, f.name) is None:
                continue
            for owner, names in _TYPE_ONLY_FIELDS.items():
                if f.name in names and self.search_type != owner:
                    raise ValueError(f"{f.name} is only valid for {owner} searches")
            allowed = _SHARED_FIELDS.get(f.name)
            if allowed is not None and self.search_type not in allowed:
                raise ValueError(f"{f.name} is not valid for {self.search_type} searches")

    @property
    def has_query(self) -> bool:
        return bool(self.query and self.query.strip())
