"""Protocol capability interface shared by torrent, usenet and streaming."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict

from definarr.domain.entities.release import ReleaseResult


class ProtocolSettings(BaseModel):
    """Per-indexer protocol preferences; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    maximum_size: int | None = None


@dataclass(frozen=True)
class DisplayInfo:
    badge: str
    availability: str
    details: tuple[tuple[str, str], ...] = ()


class ProtocolHandler(Protocol):
    protocol: str

    def parse_settings(self, raw: Mapping[str, Any] | None) -> ProtocolSettings: ...

    def validate(self, result: ReleaseResult) -> bool: ...

    def score_adjustment(self, result: ReleaseResult, settings: ProtocolSettings) -> int: ...

    def should_reject(self, result: ReleaseResult, settings: ProtocolSettings) -> str | None: ...

    def display_info(self, result: ReleaseResult) -> DisplayInfo: ...


def has_basics(result: ReleaseResult) -> bool:
    return bool(result.guid and result.title.strip() and result.download_url)


def age_days(result: ReleaseResult, now: datetime | None = None) -> int:
    if result.publish_date is None:
        return 0
    now = now or datetime.now(timezone.utc)
    return max(0, int((now - result.publish_date).total_seconds() // 86400))


def format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def exceeds_size(result: ReleaseResult, settings: ProtocolSettings) -> str | None:
    if settings.maximum_size is not None and result.size > settings.maximum_size:
        return f"Exceeds maximum size ({format_size(result.size)})"
    return None
