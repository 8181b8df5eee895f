"""Port for indexer session cookie persistence."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from definarr.domain.entities.session import CookieRecord


@runtime_checkable
class CookieRepositoryPort(Protocol):
    """Keyed record store for cookies; may be unavailable at any time."""

    async def load(self, indexer_id: str) -> CookieRecord | None: ...

    async def save(self, indexer_id: str, record: CookieRecord) -> None: ...

    async def clear(self, indexer_id: str) -> None: ...
