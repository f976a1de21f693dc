"""Discover the live exam finder endpoint by watching a real page load."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from playwright.async_api import async_playwright

from infrastructure.constants import (
    BROWSER_LAUNCH_ARGS,
    BROWSER_USER_AGENT,
    BROWSER_VIEWPORT,
    EXAM_API_MARKER,
    EXAM_PAGE_URL,
    CaptureConfig,
)


class EndpointCapturer:
    """Launches a throwaway Chromium per attempt and records the first API response URL.

    The exam finder page loads its data from an undocumented URL that changes
    over time, so the only reliable way to find it is to open the page and
    watch the network. Every attempt owns its own browser and closes it before
    returning, whatever happened.
    """

    def __init__(
        self,
        *,
        page_url: str = EXAM_PAGE_URL,
        marker: str = EXAM_API_MARKER,
        headless: bool = True,
        attempt_timeout: float = CaptureConfig.ATTEMPT_TIMEOUT,
        navigation_timeout_ms: int = CaptureConfig.NAVIGATION_TIMEOUT_MS,
        settle_delay: float = CaptureConfig.SETTLE_DELAY,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.page_url = page_url
        self.marker = marker
        self.headless = headless
        self.attempt_timeout = attempt_timeout
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_delay = settle_delay
        self.logger = logger or logging.getLogger('EndpointCapturer')

    async def capture_endpoint(
        self,
        max_retries: int = CaptureConfig.MAX_RETRIES,
        retry_delay: float = CaptureConfig.RETRY_DELAY,
    ) -> Optional[str]:
        """Return the captured endpoint URL, or ``None`` once every attempt failed."""

        for attempt in range(1, max_retries + 1):
            self.logger.info(
                "🔍 Attempt %s/%s: launching browser to capture API URL", attempt, max_retries
            )
            try:
                url = await self._attempt_capture(attempt)
            except Exception as exc:
                self.logger.error("❌ Browser error on attempt %s: %s", attempt, exc)
                url = None

            if url:
                self.logger.info("✅ Captured API URL on attempt %s: %s", attempt, url)
                return url

            if attempt < max_retries:
                self.logger.info("⏳ Waiting %ss before next attempt", retry_delay)
                await asyncio.sleep(retry_delay)

        self.logger.error("❌ Failed to capture API URL after %s attempts", max_retries)
        return None

    async def _attempt_capture(self, attempt: int) -> Optional[str]:
        playwright = await async_playwright().start()
        browser = None
        try:
            browser = await playwright.chromium.launch(
                headless=self.headless,
                args=BROWSER_LAUNCH_ARGS,
            )
            context = await browser.new_context(
                user_agent=BROWSER_USER_AGENT,
                viewport=BROWSER_VIEWPORT,
            )
            page = await context.new_page()

            captured: asyncio.Future[str] = asyncio.get_running_loop().create_future()

            def on_response(response) -> None:
                if not captured.done() and self.marker in response.url:
                    captured.set_result(response.url)

            page.on("response", on_response)

            navigation = asyncio.create_task(self._load_page(page, attempt))
            done, _ = await asyncio.wait(
                {captured, navigation},
                timeout=self.attempt_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if not navigation.done():
                navigation.cancel()
            await asyncio.gather(navigation, return_exceptions=True)

            if captured.done():
                return captured.result()

            if not done:
                self.logger.warning("⏱️ Timeout waiting for API URL on attempt %s", attempt)
            captured.cancel()
            return None
        finally:
            if browser is not None:
                try:
                    await browser.close()
                except Exception as exc:
                    self.logger.error("Error closing capture browser: %s", exc)
            await playwright.stop()

    async def _load_page(self, page, attempt: int) -> None:
        try:
            await page.goto(
                self.page_url,
                wait_until="networkidle",
                timeout=self.navigation_timeout_ms,
            )
            # Late XHRs still fire after network idle
            await asyncio.sleep(self.settle_delay)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.error("❌ Navigation error on attempt %s: %s", attempt, exc)
