"""Port for indexer health/status persistence."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from definarr.domain.entities.session import IndexerStatus


@runtime_checkable
class IndexerStatusRepositoryPort(Protocol):
    async def load(self, indexer_id: str) -> IndexerStatus | None: ...

    async def save(self, status: IndexerStatus) -> None: ...
