"""Parsing utilities for data extraction."""

from __future__ import annotations

import re

_SIZE_RE = re.compile(r"([\d.,]+)\s*([KMGTP]?I?B|[KMGTP])?\b", re.IGNORECASE)

_MULTIPLIERS: dict[str, int] = {
    "B": 1,
    "K": 1024,
    "M": 1024**2,
    "G": 1024**3,
    "T": 1024**4,
    "P": 1024**5,
}


def _normalize_number(text: str) -> float:
    # "1,234.5" → 1234.5 ; "1,5" → 1.5 ; "1.234,5" → 1234.5
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        head, _, tail = text.rpartition(",")
        text = f"{head.replace(',', '')}.{tail}" if len(tail) != 3 else text.replace(",", "")
    return float(text)


def parse_size_to_bytes(size_str: str | None) -> int:
    """Parse size string to bytes.

    Supports formats:
        - "1234" (raw bytes)
        - "4.5 GB" / "4,5 GB"
        - "500 MiB"
        - "1.2T"

    Units are binary (1 KB = 1024 B); unparseable input yields 0.
    """
    if not size_str:
        return 0

    text = size_str.strip()
    if text.isdigit():
        return int(text)

    match = _SIZE_RE.search(text)
    if not match:
        return 0

    try:
        value = _normalize_number(match.group(1))
    except ValueError:
        return 0

    unit = (match.group(2) or "B").upper()
    return int(value * _MULTIPLIERS.get(unit[0], 1))
