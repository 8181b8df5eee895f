"""Headless browser pool for anti-bot challenge solving (Playwright)."""

from .challenge import ChallengeSolver
from .pool import BrowserPool, BrowserWorker, PoolHealth
from .solver import BrowserSolver, SolverMetrics
from .stealth import StealthBrowserLauncher

__all__ = [
    "BrowserPool",
    "BrowserSolver",
    "BrowserWorker",
    "ChallengeSolver",
    "PoolHealth",
    "SolverMetrics",
    "StealthBrowserLauncher",
]
