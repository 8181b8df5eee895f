"""Date parsing helpers for values scraped from indexer pages.

Sites publish dates in every format imaginable. ``parse_fuzzy_date`` tries
the common machine formats first (ISO 8601, RFC 2822, unix epoch) and then
relative forms such as ``"3 hours ago"`` or ``"yesterday 14:20"``.
``parse_go_layout`` handles definitions that declare an explicit Go
reference layout (``"2006-01-02 15:04"``).

All returned datetimes are timezone-aware (UTC when the input has no zone).
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from functools import lru_cache

_UNIT_SECONDS: dict[str, float] = {
    "s": 1,
    "sec": 1,
    "second": 1,
    "m": 60,
    "min": 60,
    "minute": 60,
    "h": 3600,
    "hr": 3600,
    "hour": 3600,
    "d": 86400,
    "day": 86400,
    "w": 7 * 86400,
    "week": 7 * 86400,
    "mo": 30 * 86400,
    "month": 30 * 86400,
    "y": 365 * 86400,
    "yr": 365 * 86400,
    "year": 365 * 86400,
}

_RELATIVE_PART_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*(years?|yrs?|y|months?|mo|weeks?|w|days?|d|hours?|hrs?|h|"
    r"minutes?|mins?|m|seconds?|secs?|s)\b",
    re.IGNORECASE,
)
_TIME_OF_DAY_RE = re.compile(r"(\d{1,2}):(\d{2})(?::(\d{2}))?\s*(am|pm)?", re.IGNORECASE)
_EPOCH_RE = re.compile(r"^\d{9,13}$")

# Go reference-time tokens, longest first so "2006" wins over "2".
_GO_TOKENS: tuple[tuple[str, str], ...] = (
    ("January", "%B"),
    ("Monday", "%A"),
    ("2006", "%Y"),
    ("-07:00", "%z"),
    ("-0700", "%z"),
    ("Z07:00", "%z"),
    ("Jan", "%b"),
    ("Mon", "%a"),
    ("MST", "%Z"),
    ("_2", "%d"),
    ("01", "%m"),
    ("02", "%d"),
    ("03", "%I"),
    ("04", "%M"),
    ("05", "%S"),
    ("06", "%y"),
    ("15", "%H"),
    ("PM", "%p"),
    ("pm", "%p"),
    ("1", "%m"),
    ("2", "%d"),
    ("3", "%I"),
    ("4", "%M"),
    ("5", "%S"),
)
_GO_TOKEN_RE = re.compile("|".join(re.escape(token) for token, _ in _GO_TOKENS))
_GO_MAP = dict(_GO_TOKENS)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _unit_seconds(unit: str) -> float:
    unit = unit.lower()
    if unit in _UNIT_SECONDS:
        return _UNIT_SECONDS[unit]
    singular = unit.rstrip("s")
    return _UNIT_SECONDS.get(singular, 0)


def parse_time_ago(value: str, *, now: datetime | None = None) -> datetime | None:
    """Parse ``"2 hours, 5 min ago"`` style strings. ``None`` when nothing matched."""
    now = now or _utc_now()
    text = value.strip().lower()
    if text in ("now", "just now"):
        return now
    total = 0.0
    matched = False
    for amount, unit in _RELATIVE_PART_RE.findall(text):
        seconds = _unit_seconds(unit)
        if seconds:
            total += float(amount) * seconds
            matched = True
    if not matched:
        return None
    return now - timedelta(seconds=total)


def _apply_time_of_day(base: datetime, text: str) -> datetime:
    match = _TIME_OF_DAY_RE.search(text)
    if not match:
        return base.replace(hour=0, minute=0, second=0, microsecond=0)
    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3) or 0)
    meridiem = (match.group(4) or "").lower()
    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0
    return base.replace(hour=hour % 24, minute=minute, second=second, microsecond=0)


def parse_fuzzy_date(value: str | None, *, now: datetime | None = None) -> datetime | None:
    """Best-effort date parser. Returns ``None`` when the input is unrecognized."""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    now = now or _utc_now()
    lowered = text.lower()

    if _EPOCH_RE.match(text):
        stamp = int(text)
        if stamp > 10**11:
            stamp //= 1000
        return datetime.fromtimestamp(stamp, tz=timezone.utc)

    try:
        return _ensure_aware(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    try:
        return _ensure_aware(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        pass

    if lowered.startswith("today"):
        return _apply_time_of_day(now, lowered)
    if lowered.startswith("yesterday"):
        return _apply_time_of_day(now - timedelta(days=1), lowered)
    if lowered.startswith("tomorrow"):
        return _apply_time_of_day(now + timedelta(days=1), lowered)

    if "ago" in lowered or lowered in ("now", "just now"):
        relative = parse_time_ago(lowered, now=now)
        if relative is not None:
            return relative

    for fmt in (
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d %H:%M",
        "%Y-%m-%d",
        "%d.%m.%Y %H:%M",
        "%d.%m.%Y",
        "%d/%m/%Y",
        "%m/%d/%Y",
        "%d %b %Y",
        "%b %d %Y",
        "%b %d, %Y",
        "%d-%m-%Y",
    ):
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


@lru_cache(maxsize=256)
def go_layout_to_strptime(layout: str) -> str:
    """Translate a Go reference layout (``"02 Jan 2006"``) into strptime syntax."""
    return _GO_TOKEN_RE.sub(lambda m: _GO_MAP[m.group(0)], layout.replace("%", "%%"))


def parse_go_layout(value: str, layout: str) -> datetime | None:
    text = value.strip()
    try:
        parsed = datetime.strptime(text, go_layout_to_strptime(layout))
    except ValueError:
        return None
    if "2006" not in layout and "06" not in layout:
        parsed = parsed.replace(year=_utc_now().year)
    return _ensure_aware(parsed)


def format_rfc1123(dt: datetime) -> str:
    """Format as the canonical string the date filters emit."""
    return _ensure_aware(dt).astimezone(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S +0000")
