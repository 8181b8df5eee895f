"""Solves one anti-bot challenge on a pooled browser page."""

from __future__ import annotations

import time
from typing import Any

import structlog

from definarr.domain.ports.challenge_solver import SolveResult
from definarr.infrastructure.http.antibot import classify_challenge, has_challenge_markers

log = structlog.get_logger(__name__)

CLEARANCE_COOKIE = "cf_clearance"
NAVIGATION_RETRIES = 2

_TURNSTILE_IFRAMES = (
    'iframe[src*="challenges.cloudflare.com/turnstile"]',
    'iframe[src*="cloudflare.com/cdn-cgi/challenge-platform"]',
)
_TURNSTILE_RESPONSE = 'input[name="cf-turnstile-response"]'


async def extract_cookies(page: Any) -> tuple[dict[str, str], dict[str, float], bool]:
    """Context cookies, their expiry (epoch seconds) and whether clearance was granted."""
    cookies: dict[str, str] = {}
    expirations: dict[str, float] = {}
    for cookie in await page.context.cookies():
        cookies[cookie["name"]] = cookie["value"]
        expires = cookie.get("expires", -1)
        if expires and expires > 0:
            expirations[cookie["name"]] = float(expires)
    return cookies, expirations, CLEARANCE_COOKIE in cookies


async def has_clearance(page: Any) -> bool:
    return any(c["name"] == CLEARANCE_COOKIE for c in await page.context.cookies())


class ChallengeSolver:
    """Navigate, classify, wait for clearance, then harvest cookies."""

    def __init__(self, *, clock: Any = time.monotonic) -> None:
        self._clock = clock

    async def solve(self, page: Any, url: str, *, timeout: float = 60.0) -> SolveResult:
        started = self._clock()
        try:
            await self._navigate(page, url, timeout)
            challenge = classify_challenge(await page.content())
            log.debug("challenge_detected", url=url, challenge=challenge)

            if challenge == "turnstile":
                solved = await self._solve_turnstile(page, timeout)
            elif challenge == "managed":
                solved = await self._solve_managed(page, timeout)
            elif challenge == "js-challenge":
                solved = await self._wait_for_completion(page, timeout)
            elif challenge in ("access-denied", "rate-limited"):
                log.warning("challenge_blocked", url=url, challenge=challenge)
                solved = False
            else:
                solved = await self._already_solved(page)
                if not solved:
                    await page.wait_for_timeout(3000)
                    solved = await self._already_solved(page)

            cookies, expirations, cleared = await extract_cookies(page)
            elapsed = (self._clock() - started) * 1000
            if solved or cleared:
                return SolveResult(
                    success=True,
                    cookies=cookies,
                    expirations=expirations,
                    content=await page.content(),
                    final_url=page.url,
                    solve_time_ms=elapsed,
                    challenge_type=challenge,
                )
            return SolveResult(
                success=False,
                cookies=cookies,
                expirations=expirations,
                solve_time_ms=elapsed,
                challenge_type=challenge,
                error="Failed to solve challenge",
            )
        except Exception as e:  # noqa: BLE001
            log.error("challenge_solve_error", url=url, error=str(e))
            return SolveResult(
                success=False,
                solve_time_ms=(self._clock() - started) * 1000,
                error=str(e),
            )

    async def _navigate(self, page: Any, url: str, timeout: float) -> None:
        nav_timeout = min(timeout / 2, 30.0) * 1000
        for attempt in range(NAVIGATION_RETRIES + 1):
            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=nav_timeout)
                return
            except Exception as e:
                if attempt >= NAVIGATION_RETRIES:
                    raise
                log.warning("challenge_navigation_retry", attempt=attempt + 1, error=str(e))
                await page.wait_for_timeout(1000)

    async def _already_solved(self, page: Any) -> bool:
        if await has_clearance(page):
            return True
        return not has_challenge_markers(await page.content())

    async def _wait_for_completion(self, page: Any, timeout: float) -> bool:
        """Poll until clearance appears or the challenge markers are gone."""
        started = self._clock()
        while self._clock() - started < timeout:
            if await has_clearance(page):
                return True
            if not has_challenge_markers(await page.content()):
                await page.wait_for_timeout(1000)
                if await has_clearance(page) or self._clock() - started > 5:
                    return True
            await page.wait_for_timeout(500)
        return await has_clearance(page)

    async def _solve_managed(self, page: Any, timeout: float) -> bool:
        if "cf-turnstile" in await page.content() and await self._solve_turnstile(page, timeout):
            return True
        return await self._wait_for_completion(page, timeout)

    async def _solve_turnstile(self, page: Any, timeout: float) -> bool:
        if await self._turnstile_token(page):
            return True
        frame_handle = None
        for selector in _TURNSTILE_IFRAMES:
            try:
                frame_handle = await page.wait_for_selector(
                    selector, timeout=min(timeout, 10.0) * 1000, state="attached"
                )
            except Exception:  # noqa: BLE001
                continue
            if frame_handle is not None:
                break

        if frame_handle is not None:
            frame = await frame_handle.content_frame()
            if frame is not None:
                try:
                    checkbox = await frame.wait_for_selector(
                        'input[type="checkbox"]', timeout=5000, state="visible"
                    )
                    if checkbox is not None:
                        await checkbox.click()
                        log.debug("turnstile_checkbox_clicked")
                except Exception:  # noqa: BLE001
                    log.debug("turnstile_checkbox_missing")

        started = self._clock()
        while self._clock() - started < timeout / 2:
            if await self._turnstile_token(page) or await has_clearance(page):
                await self._wait_for_completion(page, timeout / 2)
                return True
            await page.wait_for_timeout(500)
        return False

    async def _turnstile_token(self, page: Any) -> str | None:
        element = await page.query_selector(_TURNSTILE_RESPONSE)
        if element is None:
            return None
        value = await element.get_attribute("value")
        return value or None
