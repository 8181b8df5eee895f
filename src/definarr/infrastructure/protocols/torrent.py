"""Torrent scoring: swarm health, freeleech and internal releases."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from definarr.domain.entities.release import ReleaseResult
from definarr.infrastructure.common.torrent import build_magnet

from .base import DisplayInfo, ProtocolSettings, exceeds_size, has_basics

HealthLevel = Literal["dead", "poor", "fair", "good", "excellent"]

BONUS_FREELEECH = 50
BONUS_INTERNAL = 30
BONUS_HIGH_SEEDERS = 20
HEALTH_ADJUSTMENT: dict[str, int] = {
    "dead": -100,
    "poor": -20,
    "fair": 5,
    "good": 10,
    "excellent": 15,
}
PENALTY_BELOW_MINIMUM = -50


class TorrentSettings(ProtocolSettings):
    minimum_seeders: int | None = None
    reject_dead_torrents: bool = False
    prefer_magnet_url: bool = False


def health_level(seeders: int) -> HealthLevel:
    if seeders <= 0:
        return "dead"
    if seeders >= 50:
        return "excellent"
    if seeders >= 20:
        return "good"
    if seeders >= 5:
        return "fair"
    return "poor"


class TorrentHandler:
    protocol = "torrent"

    def parse_settings(self, raw: Mapping[str, Any] | None) -> TorrentSettings:
        return TorrentSettings.model_validate(raw or {})

    def validate(self, result: ReleaseResult) -> bool:
        return has_basics(result)

    def score_adjustment(self, result: ReleaseResult, settings: ProtocolSettings) -> int:
        torrent = result.torrent
        if torrent is None:
            return 0
        adjustment = 0
        if torrent.seeders is not None:
            level = health_level(torrent.seeders)
            adjustment += HEALTH_ADJUSTMENT[level]
            if level == "excellent" and torrent.seeders > 100:
                adjustment += BONUS_HIGH_SEEDERS
            minimum = getattr(settings, "minimum_seeders", None)
            if minimum is not None and torrent.seeders < minimum:
                adjustment += PENALTY_BELOW_MINIMUM
        if torrent.freeleech:
            adjustment += BONUS_FREELEECH
        if torrent.is_internal:
            adjustment += BONUS_INTERNAL
        return adjustment

    def should_reject(self, result: ReleaseResult, settings: ProtocolSettings) -> str | None:
        seeders = result.torrent.seeders if result.torrent else None
        if seeders is not None:
            if getattr(settings, "reject_dead_torrents", False) and seeders == 0:
                return "No seeders available"
            minimum = getattr(settings, "minimum_seeders", None)
            if minimum is not None and seeders < minimum:
                return f"Below minimum seeders ({seeders} < {minimum})"
        return exceeds_size(result, settings)

    def display_info(self, result: ReleaseResult) -> DisplayInfo:
        torrent = result.torrent
        seeders = (torrent.seeders if torrent else None) or 0
        leechers = (torrent.leechers if torrent else None) or 0
        details: list[tuple[str, str]] = [("Seeders", str(seeders)), ("Leechers", str(leechers))]
        if torrent is not None and torrent.grabs is not None:
            details.append(("Grabs", str(torrent.grabs)))
        if torrent is not None and torrent.freeleech:
            details.append(("Freeleech", "yes"))
        if torrent is not None and torrent.is_internal:
            details.append(("Internal", "yes"))
        return DisplayInfo("TORRENT", f"{seeders}S / {leechers}L", tuple(details))

    def magnet_url(self, result: ReleaseResult) -> str | None:
        """Existing magnet, else one built from the info-hash."""
        if result.magnet_url:
            return result.magnet_url
        if result.torrent is not None and result.torrent.info_hash:
            return build_magnet(result.torrent.info_hash, result.title)
        return None
