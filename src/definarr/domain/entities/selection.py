"""Outcome of evaluating one selector block."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

SelectionStatus = Literal["ok", "missing", "invalid"]


@dataclass(frozen=True)
class Selection:
    """``Ok(value) | Missing | Invalid(reason)``.

    ``optional`` echoes the selector block so callers can decide whether a
    miss is fatal, skips the row, or skips the candidate.
    """

    status: SelectionStatus
    value: str | None = None
    reason: str | None = None
    optional: bool = False

    @classmethod
    def ok(cls, value: str | None, *, optional: bool = False) -> Selection:
        return cls("ok", value=value, optional=optional)

    @classmethod
    def missing(cls, *, default: str | None = None, optional: bool = False) -> Selection:
        return cls("missing", value=default, optional=optional)

    @classmethod
    def invalid(cls, reason: str, *, optional: bool = False) -> Selection:
        return cls("invalid", reason=reason, optional=optional)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"


@dataclass(frozen=True)
class SelectionResult:
    """Public ``select()`` return shape."""

    value: str | None
    optional: bool = False
