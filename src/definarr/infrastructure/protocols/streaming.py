"""Streaming scoring by quality tier; excluded providers are rejected."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from definarr.domain.entities.release import ReleaseResult
from definarr.infrastructure.common.release_quality import QUALITY_RANK

from .base import DisplayInfo, ProtocolSettings, has_basics

QUALITY_SCORE_STEP = 10


class StreamingSettings(ProtocolSettings):
    excluded_providers: tuple[str, ...] = ()
    minimum_quality: str | None = None


class StreamingHandler:
    protocol = "streaming"

    def parse_settings(self, raw: Mapping[str, Any] | None) -> StreamingSettings:
        return StreamingSettings.model_validate(raw or {})

    def validate(self, result: ReleaseResult) -> bool:
        return has_basics(result)

    def score_adjustment(self, result: ReleaseResult, settings: ProtocolSettings) -> int:
        quality = result.streaming.quality if result.streaming else "unknown"
        return QUALITY_RANK.get(quality, 0) * QUALITY_SCORE_STEP

    def should_reject(self, result: ReleaseResult, settings: ProtocolSettings) -> str | None:
        streaming = result.streaming
        provider = (streaming.provider if streaming else None) or ""
        excluded = {p.lower() for p in getattr(settings, "excluded_providers", ())}
        if provider and provider.lower() in excluded:
            return f"Provider excluded ({provider})"
        minimum = getattr(settings, "minimum_quality", None)
        if minimum is not None:
            quality = streaming.quality if streaming else "unknown"
            if QUALITY_RANK.get(quality, 0) < QUALITY_RANK.get(minimum, 0):
                return f"Below minimum quality ({quality})"
        return None

    def display_info(self, result: ReleaseResult) -> DisplayInfo:
        streaming = result.streaming
        quality = streaming.quality if streaming else "unknown"
        details: list[tuple[str, str]] = [("Quality", quality)]
        if streaming is not None and streaming.provider:
            details.append(("Provider", streaming.provider))
        return DisplayInfo("STREAM", quality, tuple(details))
