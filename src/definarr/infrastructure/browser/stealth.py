"""Stealth Chromium launcher used by the browser pool.

One Playwright driver is shared; every pool worker gets its own browser
process, a context with fixed fingerprint settings and
``playwright-stealth`` evasions, and one long-lived page.
"""

from __future__ import annotations

import asyncio

import structlog
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright_stealth import Stealth

log = structlog.get_logger(__name__)

STEALTH_LAUNCH_ARGS: tuple[str, ...] = (
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-breakpad",
    "--disable-component-extensions-with-background-pages",
    "--disable-component-update",
    "--disable-default-apps",
    "--disable-hang-monitor",
    "--disable-ipc-flooding-protection",
    "--disable-popup-blocking",
    "--disable-prompt-on-repost",
    "--disable-renderer-backgrounding",
    "--disable-sync",
    "--disable-translate",
    "--window-size=1920,1080",
    "--enable-features=NetworkService,NetworkServiceInProcess",
    "--force-color-profile=srgb",
)

STEALTH_CONTEXT_OPTIONS: dict[str, object] = {
    "viewport": {"width": 1920, "height": 1080},
    "locale": "en-US",
    "timezone_id": "America/New_York",
    "bypass_csp": True,
    "java_script_enabled": True,
    "ignore_https_errors": True,
}


class StealthBrowserLauncher:
    """Creates ``(browser, context, page)`` triples for pool workers.

    The Playwright driver starts lazily on the first launch (double-check
    lock) and is stopped by :meth:`close`.
    """

    def __init__(self, *, headless: bool = True, user_agent: str | None = None) -> None:
        self._headless = headless
        self._user_agent = user_agent
        self._pw: Playwright | None = None
        self._lock = asyncio.Lock()

    async def _ensure_playwright(self) -> Playwright:
        if self._pw is not None:
            return self._pw
        async with self._lock:
            if self._pw is None:
                self._pw = await async_playwright().start()
                log.info("playwright_started", headless=self._headless)
            return self._pw

    async def launch(self) -> tuple[Browser, BrowserContext, Page]:
        pw = await self._ensure_playwright()
        browser = await pw.chromium.launch(headless=self._headless, args=list(STEALTH_LAUNCH_ARGS))
        options = dict(STEALTH_CONTEXT_OPTIONS)
        if self._user_agent:
            options["user_agent"] = self._user_agent
        context = await browser.new_context(**options)  # type: ignore[arg-type]
        await Stealth().apply_stealth_async(context)
        page = await context.new_page()
        return browser, context, page

    async def close(self) -> None:
        if self._pw is not None:
            try:
                await self._pw.stop()
            except Exception:  # noqa: BLE001
                log.warning("playwright_stop_error", exc_info=True)
            self._pw = None
