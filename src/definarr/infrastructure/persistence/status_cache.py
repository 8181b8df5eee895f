"""Indexer health status repository backed by CachePort."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import structlog

from definarr.domain.entities.session import IndexerStatus
from definarr.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)

_DT_FIELDS = ("last_success_at", "last_failure_at", "disabled_until")


def _dt_or_none(value: Any) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class CacheIndexerStatusRepository:
    """Stores :class:`IndexerStatus` under ``indexer-status:<indexer_id>``."""

    def __init__(self, cache: CachePort, ttl_seconds: int = 7 * 24 * 3600):
        self.cache = cache
        self.ttl = ttl_seconds

    @staticmethod
    def _key(indexer_id: str) -> str:
        return f"indexer-status:{indexer_id}"

    async def save(self, status: IndexerStatus) -> None:
        payload: dict[str, Any] = {
            "indexer_id": status.indexer_id,
            "consecutive_failures": status.consecutive_failures,
            "last_error": status.last_error,
        }
        for name in _DT_FIELDS:
            value = getattr(status, name)
            payload[name] = value.isoformat() if value else None
        await self.cache.set(self._key(status.indexer_id), json.dumps(payload), ttl=self.ttl)

    async def load(self, indexer_id: str) -> IndexerStatus | None:
        data = await self.cache.get(self._key(indexer_id))
        if data is None:
            return None
        try:
            d = json.loads(data)
            return IndexerStatus(
                indexer_id=d["indexer_id"],
                consecutive_failures=int(d.get("consecutive_failures", 0)),
                last_error=d.get("last_error"),
                **{name: _dt_or_none(d.get(name)) for name in _DT_FIELDS},
            )
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            log.error("indexer_status_deserialize_error", indexer_id=indexer_id, error=str(e))
            return None
