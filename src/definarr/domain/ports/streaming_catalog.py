"""Port for internal streaming catalogs queried without HTTP."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from definarr.domain.entities.criteria import SearchCriteria
from definarr.domain.entities.definition import Definition
from definarr.domain.entities.release import ReleaseResult


@runtime_checkable
class StreamingCatalogPort(Protocol):
    async def query(
        self,
        definition: Definition,
        criteria: SearchCriteria,
        *,
        indexer_id: str,
        settings: dict[str, Any],
    ) -> list[ReleaseResult]: ...
