"""Streaming quality tiers from release names (guessit) and site badges."""

from __future__ import annotations

from typing import Literal

from guessit import guessit

QualityTier = Literal["4k", "1080p", "720p", "sd", "ts", "cam", "unknown"]

# Higher is better; used for ordering and scoring streaming releases.
QUALITY_RANK: dict[str, int] = {
    "4k": 6,
    "1080p": 5,
    "720p": 4,
    "sd": 3,
    "ts": 2,
    "cam": 1,
    "unknown": 0,
}

_SCREEN_SIZE_TO_QUALITY: dict[str, QualityTier] = {
    "2160p": "4k",
    "1080p": "1080p",
    "1080i": "1080p",
    "720p": "720p",
    "576p": "sd",
    "480p": "sd",
    "360p": "sd",
}

_OTHER_TO_QUALITY: dict[str, QualityTier] = {
    "Camera": "cam",
    "HD Camera": "cam",
    "Telesync": "ts",
    "HD Telesync": "ts",
}

_BADGE_TO_QUALITY: dict[str, QualityTier] = {
    "4K": "4k",
    "UHD": "4k",
    "2160P": "4k",
    "1080P": "1080p",
    "FHD": "1080p",
    "FULLHD": "1080p",
    "BLURAY": "1080p",
    "720P": "720p",
    "HD": "720p",
    "WEBRIP": "720p",
    "WEB-DL": "720p",
    "480P": "sd",
    "SD": "sd",
    "DVDRIP": "sd",
    "TS": "ts",
    "TELESYNC": "ts",
    "CAM": "cam",
    "HDCAM": "cam",
}


def parse_quality(*, release_name: str | None = None, quality_badge: str | None = None) -> QualityTier:
    """Quality tier of a release.

    Priority: 1) guessit screen size, 2) guessit cam/telesync markers, 3) the site's badge.
    """
    if release_name:
        guess = guessit(release_name)
        screen_size = guess.get("screen_size")
        if screen_size in _SCREEN_SIZE_TO_QUALITY:
            return _SCREEN_SIZE_TO_QUALITY[screen_size]
        other = guess.get("other")
        for marker in other if isinstance(other, list) else [other]:
            if marker in _OTHER_TO_QUALITY:
                return _OTHER_TO_QUALITY[marker]
    if quality_badge:
        return _BADGE_TO_QUALITY.get(quality_badge.strip().upper(), "unknown")
    return "unknown"
