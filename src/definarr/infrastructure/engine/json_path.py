"""Minimal JSON path language used by definitions.

Supported forms::

    $                      the document root
    data.items[0].name     dot properties and numeric indexes
    torrents:has(magnet)   keep objects carrying a key
    files:not(hidden)      keep objects missing a key
    tags:contains(x265)    keep values whose JSON text contains a string

Property access on a list maps over its elements, so ``files.name`` on a
list of objects yields a list of names.
"""

from __future__ import annotations

import json
import re
from typing import Any

_INDEX_RE = re.compile(r"^\[(-?\d+)\]")
_FILTER_RE = re.compile(r"^:(has|not|contains)\(([^)]*)\)", re.IGNORECASE)
_PROPERTY_RE = re.compile(r"^([^.\[:]+)")

_MISSING = object()


def _tokenize(path: str) -> list[tuple[str, Any]]:
    parts: list[tuple[str, Any]] = []
    remaining = path.strip()
    if remaining.startswith("$"):
        remaining = remaining[1:]
    while remaining:
        if remaining[0] == ".":
            remaining = remaining[1:]
            continue
        if remaining.startswith("[*]"):
            remaining = remaining[3:]
            continue
        match = _INDEX_RE.match(remaining)
        if match:
            parts.append(("index", int(match.group(1))))
            remaining = remaining[match.end() :]
            continue
        match = _FILTER_RE.match(remaining)
        if match:
            parts.append(("filter", (match.group(1).lower(), match.group(2).strip().strip("\"'"))))
            remaining = remaining[match.end() :]
            continue
        match = _PROPERTY_RE.match(remaining)
        if not match:
            raise ValueError(f"Invalid JSON path segment: {remaining!r}")
        parts.append(("property", match.group(1)))
        remaining = remaining[match.end() :]
    return parts


def _keep(item: Any, kind: str, arg: str) -> bool:
    if kind == "has":
        return isinstance(item, dict) and arg in item
    if kind == "not":
        return not (isinstance(item, dict) and arg in item)
    text = item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
    return arg in text


def _step(current: Any, kind: str, value: Any) -> Any:
    if current is _MISSING or current is None:
        return _MISSING
    if kind == "index":
        if not isinstance(current, list):
            return _MISSING
        try:
            return current[value]
        except IndexError:
            return _MISSING
    if kind == "filter":
        filter_kind, arg = value
        if isinstance(current, list):
            return [item for item in current if _keep(item, filter_kind, arg)]
        return current if _keep(current, filter_kind, arg) else _MISSING
    # property
    if isinstance(current, dict):
        return current.get(value, _MISSING)
    if isinstance(current, list):
        if value.isdigit():
            index = int(value)
            return current[index] if index < len(current) else _MISSING
        mapped = [_step(item, "property", value) for item in current]
        return [item for item in mapped if item is not _MISSING and item is not None]
    return _MISSING


def select_json(document: Any, path: str) -> Any | None:
    """Evaluate *path* against *document*; ``None`` when nothing matched."""
    path = path.strip()
    if path.startswith(".") and not path.startswith(".."):
        path = path[1:]
    if path in ("", "$"):
        return document
    current: Any = document
    for kind, value in _tokenize(path):
        current = _step(current, kind, value)
        if current is _MISSING:
            return None
    return current


def select_json_all(document: Any, path: str) -> list[Any]:
    """Select row items: the matched list, or a single matched value wrapped."""
    selected = select_json(document, path)
    if selected is None:
        return []
    if isinstance(selected, list):
        return selected
    return [selected]


def json_scalar(value: Any) -> str | None:
    """Coerce a JSON value to the string a selector returns."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join(s for s in (json_scalar(v) for v in value) if s is not None)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def detect_response_type(content: str) -> str:
    """Guess ``json`` / ``xml`` / ``html`` from the body."""
    trimmed = content.lstrip("\ufeff \t\r\n")
    if trimmed.startswith(("{", "[")):
        try:
            json.loads(trimmed)
            return "json"
        except ValueError:
            pass
    if trimmed.startswith(("<?xml", "<rss", "<feed")):
        return "xml"
    return "html"
