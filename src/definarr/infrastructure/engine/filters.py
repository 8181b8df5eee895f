"""Named string filters applied after extraction and inside template pipelines.

Every filter is a total function ``(value, args) -> str``. Unknown filter
names and filters whose arguments are unusable log a warning and return
the value unchanged; a buggy definition must never abort a search.
"""

from __future__ import annotations

import html
import json
import re
from collections.abc import Callable, Sequence
from functools import lru_cache
from urllib.parse import parse_qs, quote_plus, unquote_plus, urlparse

import structlog
from unidecode import unidecode

from definarr.domain.entities.definition import FilterSpec
from definarr.infrastructure.common.dates import (
    format_rfc1123,
    parse_fuzzy_date,
    parse_go_layout,
    parse_time_ago,
)
from definarr.infrastructure.engine.json_path import json_scalar, select_json

log = structlog.get_logger(__name__)

MAX_PATTERN_LENGTH = 500

# Nested quantifiers such as (a+)+ or (.*)* backtrack exponentially.
_NESTED_QUANTIFIER_RE = re.compile(r"\((?:[^()\\]|\\.)*[+*}](?:[^()\\]|\\.)*\)\s*[+*{]")
_BACKREF_RE = re.compile(r"\$(\d+)|\$\{(\d+)\}")
_INVALID_FILENAME_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

FilterFunc = Callable[[str, Sequence[str]], str]


# ------------------------------------------------------------------
# Regex safety
# ------------------------------------------------------------------


@lru_cache(maxsize=512)
def safe_compile(pattern: str) -> re.Pattern[str] | None:
    """Compile *pattern*, or return ``None`` when it is invalid or unsafe."""
    if len(pattern) > MAX_PATTERN_LENGTH or _NESTED_QUANTIFIER_RE.search(pattern):
        log.warning("regex_rejected_unsafe", pattern=pattern[:80])
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        log.warning("regex_invalid", pattern=pattern[:80], error=str(e))
        return None


def convert_replacement(replacement: str) -> str:
    """Translate ``$1`` / ``${1}`` backreferences into Python's ``\\g<1>``."""
    escaped = replacement.replace("\\", "\\\\")
    return _BACKREF_RE.sub(lambda m: f"\\g<{m.group(1) or m.group(2)}>", escaped)


def regex_replace(value: str, pattern: str, replacement: str) -> str:
    compiled = safe_compile(pattern)
    if compiled is None:
        return value
    return compiled.sub(convert_replacement(replacement), value)


# ------------------------------------------------------------------
# Filter implementations
# ------------------------------------------------------------------


def _arg(args: Sequence[str], index: int, default: str = "") -> str:
    return args[index] if len(args) > index else default


def _int_arg(args: Sequence[str], index: int, default: int) -> int:
    try:
        return int(_arg(args, index, str(default)))
    except ValueError:
        return default


def _querystring(value: str, args: Sequence[str]) -> str:
    params = parse_qs(urlparse(value).query)
    found = params.get(_arg(args, 0))
    return found[0] if found else ""


def _regexp(value: str, args: Sequence[str]) -> str:
    compiled = safe_compile(_arg(args, 0))
    if compiled is None:
        return value
    match = compiled.search(value)
    if not match:
        return ""
    return match.group(1) if compiled.groups else match.group(0)


def _re_replace(value: str, args: Sequence[str]) -> str:
    return regex_replace(value, _arg(args, 0), _arg(args, 1))


def _split(value: str, args: Sequence[str]) -> str:
    parts = value.split(_arg(args, 0, ","))
    index = _int_arg(args, 1, 0)
    if index < 0:
        index += len(parts)
    return parts[index] if 0 <= index < len(parts) else ""


def _replace(value: str, args: Sequence[str]) -> str:
    if len(args) < 2:
        return value
    return value.replace(args[0], args[1])


def _trim(value: str, args: Sequence[str]) -> str:
    cutset = _arg(args, 0)
    return value.strip(cutset) if cutset else value.strip()


def _trimprefix(value: str, args: Sequence[str]) -> str:
    return value.removeprefix(_arg(args, 0))


def _trimsuffix(value: str, args: Sequence[str]) -> str:
    return value.removesuffix(_arg(args, 0))


def _slice(value: str, args: Sequence[str]) -> str:
    start = _int_arg(args, 0, 0)
    if len(args) > 1:
        return value[start : _int_arg(args, 1, len(value))]
    return value[start:]


def _substring(value: str, args: Sequence[str]) -> str:
    start = _int_arg(args, 0, 0)
    if len(args) > 1:
        return value[start : start + _int_arg(args, 1, len(value))]
    return value[start:]


def _join(value: str, args: Sequence[str]) -> str:
    separator = _arg(args, 0, ",")
    if "," not in value:
        return value
    return separator.join(part.strip() for part in value.split(","))


def _printf(value: str, args: Sequence[str]) -> str:
    fmt = _arg(args, 0)
    if not fmt:
        return value
    return re.sub(r"%[sdvq]", lambda _: value, fmt.replace("%%", "\x00")).replace("\x00", "%")


def _first(value: str, args: Sequence[str]) -> str:
    return value[: _int_arg(args, 0, 1)]


def _last(value: str, args: Sequence[str]) -> str:
    n = _int_arg(args, 0, 1)
    return value[-n:] if n > 0 else ""


def _default(value: str, args: Sequence[str]) -> str:
    return value if value.strip() else _arg(args, 0)


def _timeago(value: str, args: Sequence[str]) -> str:
    parsed = parse_time_ago(value)
    return format_rfc1123(parsed) if parsed else value


def _fuzzytime(value: str, args: Sequence[str]) -> str:
    parsed = parse_fuzzy_date(value)
    return format_rfc1123(parsed) if parsed else value


def _dateparse(value: str, args: Sequence[str]) -> str:
    layout = _arg(args, 0)
    parsed = parse_go_layout(value, layout) if layout else parse_fuzzy_date(value)
    if parsed is None:
        log.debug("dateparse_failed", value=value[:40], layout=layout)
        return value
    return format_rfc1123(parsed)


def _diacritics(value: str, args: Sequence[str]) -> str:
    return unidecode(value)


def _validfilename(value: str, args: Sequence[str]) -> str:
    return _INVALID_FILENAME_RE.sub("", value).strip()


def _strdump(value: str, args: Sequence[str]) -> str:
    log.debug("filter_strdump", tag=_arg(args, 0), value=value[:500])
    return value


def _jsonjoinarray(value: str, args: Sequence[str]) -> str:
    try:
        document = json.loads(value)
    except ValueError:
        return value
    selected = select_json(document, _arg(args, 0, "$"))
    if not isinstance(selected, list):
        return json_scalar(selected) or ""
    separator = _arg(args, 1, ",")
    return separator.join(s for s in (json_scalar(item) for item in selected) if s)


def _validate(value: str, args: Sequence[str]) -> str:
    allowed = {a.strip().lower() for a in ",".join(args).split(",") if a.strip()}
    words = re.split(r"[,\s]+", value)
    return ",".join(w for w in words if w and w.lower() in allowed)


FILTERS: dict[str, FilterFunc] = {
    "querystring": _querystring,
    "regexp": _regexp,
    "re_replace": _re_replace,
    "split": _split,
    "replace": _replace,
    "trim": _trim,
    "trimprefix": _trimprefix,
    "trimsuffix": _trimsuffix,
    "prepend": lambda v, a: _arg(a, 0) + v,
    "append": lambda v, a: v + _arg(a, 0),
    "tolower": lambda v, a: v.lower(),
    "lower": lambda v, a: v.lower(),
    "toupper": lambda v, a: v.upper(),
    "upper": lambda v, a: v.upper(),
    "urldecode": lambda v, a: unquote_plus(v),
    "urlencode": lambda v, a: quote_plus(v),
    "htmldecode": lambda v, a: html.unescape(v),
    "htmlencode": lambda v, a: html.escape(v),
    "slice": _slice,
    "substring": _substring,
    "join": _join,
    "printf": _printf,
    "first": _first,
    "last": _last,
    "default": _default,
    "timeago": _timeago,
    "reltime": _timeago,
    "fuzzytime": _fuzzytime,
    "dateparse": _dateparse,
    "timeparse": _dateparse,
    "diacritics": _diacritics,
    "validfilename": _validfilename,
    "strdump": _strdump,
    "jsonjoinarray": _jsonjoinarray,
    "validate": _validate,
}


class FilterEngine:
    """Applies filter chains; unknown names are logged once and skipped."""

    def __init__(self, extra: dict[str, FilterFunc] | None = None) -> None:
        self._filters = {**FILTERS, **(extra or {})}
        self._warned: set[str] = set()

    def knows(self, name: str) -> bool:
        return name.lower() in self._filters

    def apply_one(self, value: str, name: str, args: Sequence[str] = ()) -> str:
        func = self._filters.get(name.lower())
        if func is None:
            if name not in self._warned:
                self._warned.add(name)
                log.warning("filter_unknown", filter=name)
            return value
        return func(value, args)

    def apply(self, value: str, filters: Sequence[FilterSpec]) -> str:
        for spec in filters:
            value = self.apply_one(value, spec.name, spec.args)
        return value
