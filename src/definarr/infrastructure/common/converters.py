"""Type conversion utilities."""

from __future__ import annotations

import re

_FLOAT_RE = re.compile(r"-?\d+(?:[.,]\d+)?")


def to_int(raw: str | int | float | None) -> int | None:
    """Convert string or number to int, return None if invalid.

    Handles various formats:
        - None → None
        - int → int (passthrough)
        - "123" → 123
        - "1,234" → 1234
        - "1 234" → 1234
        - "" → None
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, int):
        return raw

    if isinstance(raw, float):
        return int(raw)

    if isinstance(raw, str):
        txt = "".join(ch for ch in raw if ch.isdigit())
        if not txt:
            return None
        return int(txt)

    return None


def to_float(raw: str | int | float | None) -> float | None:
    """Extract the first decimal number from *raw* (``"1,5x"`` → ``1.5``)."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    match = _FLOAT_RE.search(raw)
    if not match:
        return None
    return float(match.group(0).replace(",", "."))
