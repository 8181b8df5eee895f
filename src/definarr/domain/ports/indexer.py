"""Uniform indexer contract consumed by the rest of the application."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from definarr.domain.entities.criteria import SearchCriteria
from definarr.domain.entities.release import DownloadResult, Protocol as ReleaseProtocol, ReleaseResult


@runtime_checkable
class IndexerPort(Protocol):
    id: str
    name: str
    protocol: ReleaseProtocol

    async def search(self, criteria: SearchCriteria) -> list[ReleaseResult]: ...

    async def test(self) -> None:
        """Raise on failure; return normally when the indexer is usable."""
        ...

    async def download_content(self, url: str) -> DownloadResult: ...

    async def get_download_url(self, release: ReleaseResult) -> str: ...
