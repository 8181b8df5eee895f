"""Usenet scoring: age, retention, completion and password protection."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from definarr.domain.entities.release import ReleaseResult
from definarr.infrastructure.common.urls import add_query_param, has_query_param

from .base import DisplayInfo, ProtocolSettings, age_days, exceeds_size, has_basics

DEFAULT_RETENTION_DAYS = 1200
MINIMUM_COMPLETION = 95.0


class UsenetSettings(ProtocolSettings):
    api_key: str | None = None
    maximum_retention: int | None = None
    reject_password_protected: bool = False


def retention_score(age: int, retention: int) -> int:
    """Percentage of retention left (0 once the release is past it)."""
    if age >= retention or retention <= 0:
        return 0
    return min(100, (retention - age) * 100 // retention)


def format_age(days: int) -> str:
    if days == 0:
        return "Today"
    if days == 1:
        return "1 day"
    if days < 7:
        return f"{days} days"
    if days < 30:
        return f"{days // 7} weeks"
    if days < 365:
        return f"{days // 30} months"
    return f"{days // 365} years"


class UsenetHandler:
    protocol = "usenet"

    def parse_settings(self, raw: Mapping[str, Any] | None) -> UsenetSettings:
        return UsenetSettings.model_validate(raw or {})

    def validate(self, result: ReleaseResult) -> bool:
        if not has_basics(result) or result.download_url.startswith("magnet:"):
            return False
        return result.torrent is None or not result.torrent.info_hash

    def score_adjustment(self, result: ReleaseResult, settings: ProtocolSettings) -> int:
        age = age_days(result)
        adjustment = 0
        if age < 7:
            adjustment += 20
        elif age < 30:
            adjustment += 10
        elif age > 365:
            adjustment -= 10

        retention = getattr(settings, "maximum_retention", None) or DEFAULT_RETENTION_DAYS
        if retention_score(age, retention) < 10:
            adjustment -= 20

        usenet = result.usenet
        if usenet is not None and usenet.completion is not None and usenet.completion < 100:
            adjustment -= 30
        else:
            adjustment += 30
        if usenet is not None and usenet.password_protected:
            adjustment -= 50
        else:
            adjustment += 15
        return adjustment

    def should_reject(self, result: ReleaseResult, settings: ProtocolSettings) -> str | None:
        usenet = result.usenet
        age = age_days(result)
        if getattr(settings, "reject_password_protected", False) and usenet and usenet.password_protected:
            return "Password protected release"
        retention = getattr(settings, "maximum_retention", None)
        if retention is not None and age > retention:
            return f"Exceeds retention limit ({age} days > {retention} days)"
        if usenet is not None and usenet.completion is not None and usenet.completion < MINIMUM_COMPLETION:
            return f"Incomplete release ({usenet.completion:g}% complete)"
        return exceeds_size(result, settings)

    def display_info(self, result: ReleaseResult) -> DisplayInfo:
        usenet = result.usenet
        age = format_age(age_days(result))
        details: list[tuple[str, str]] = [("Age", age)]
        if usenet is not None:
            if usenet.group:
                details.append(("Group", usenet.group))
            if usenet.grabs is not None:
                details.append(("Grabs", str(usenet.grabs)))
            if usenet.file_count is not None:
                details.append(("Files", str(usenet.file_count)))
            if usenet.password_protected:
                details.append(("Password", "yes"))
        return DisplayInfo("USENET", age, tuple(details))

    def download_url(self, result: ReleaseResult, settings: ProtocolSettings) -> str:
        """NZB URL with the API key appended unless already present."""
        url = result.download_url
        api_key = getattr(settings, "api_key", None)
        if not api_key or has_query_param(url, "apikey") or has_query_param(url, "api_key"):
            return url
        return add_query_param(url, "apikey", api_key)
