"""Cookie repository backed by CachePort (diskcache/redis)."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import structlog

from definarr.domain.entities.session import CookieRecord
from definarr.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)


def _parse_dt(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _serialize_record(record: CookieRecord) -> str:
    return json.dumps(
        {
            "cookies": record.cookies,
            "expires_at": record.expires_at.isoformat(),
            "updated_at": record.updated_at.isoformat(),
            "expirations": {k: v.isoformat() for k, v in record.expirations.items()},
        }
    )


def _deserialize_record(data: str) -> CookieRecord:
    d = json.loads(data)
    return CookieRecord(
        cookies={str(k): str(v) for k, v in d["cookies"].items()},
        expires_at=_parse_dt(d["expires_at"]),
        updated_at=_parse_dt(d["updated_at"]),
        expirations={k: _parse_dt(v) for k, v in d.get("expirations", {}).items()},
    )


class CacheCookieRepository:
    """Stores indexer session cookies under ``cookies:<indexer_id>``."""

    def __init__(self, cache: CachePort, ttl_seconds: int = 30 * 24 * 3600):
        self.cache = cache
        self.ttl = ttl_seconds

    @staticmethod
    def _key(indexer_id: str) -> str:
        return f"cookies:{indexer_id}"

    async def save(self, indexer_id: str, record: CookieRecord) -> None:
        remaining = int((record.expires_at - datetime.now(timezone.utc)).total_seconds())
        ttl = max(1, min(self.ttl, remaining)) if remaining > 0 else 1
        await self.cache.set(self._key(indexer_id), _serialize_record(record), ttl=ttl)
        log.debug("cookies_saved", indexer_id=indexer_id, count=len(record.cookies), ttl=ttl)

    async def load(self, indexer_id: str) -> CookieRecord | None:
        data = await self.cache.get(self._key(indexer_id))
        if data is None:
            return None
        try:
            return _deserialize_record(data)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError, AttributeError) as e:
            log.error("cookies_deserialize_error", indexer_id=indexer_id, error=str(e))
            return None

    async def clear(self, indexer_id: str) -> None:
        await self.cache.delete(self._key(indexer_id))
        log.debug("cookies_cleared", indexer_id=indexer_id)
