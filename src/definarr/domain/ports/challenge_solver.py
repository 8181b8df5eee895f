"""Port for anti-bot challenge solving (implemented by the browser pool)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class SolveResult:
    success: bool
    cookies: dict[str, str] = field(default_factory=dict)
    expirations: dict[str, float] = field(default_factory=dict)
    content: str | None = None
    final_url: str | None = None
    solve_time_ms: float = 0.0
    challenge_type: str = "unknown"
    user_agent: str | None = None
    error: str | None = None
    from_cache: bool = False


@runtime_checkable
class ChallengeSolverPort(Protocol):
    @property
    def enabled(self) -> bool: ...

    async def solve(self, url: str, *, timeout: float | None = None) -> SolveResult: ...
