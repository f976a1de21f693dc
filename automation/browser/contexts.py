"""Per-account Playwright execution contexts bound to a pool slot."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from playwright.async_api import async_playwright

from automation.browser.slot_pool import ResourceSlot
from infrastructure.constants import (
    BLOCKED_RESOURCE_TYPES,
    BROWSER_LAUNCH_ARGS,
    BROWSER_USER_AGENT,
    BROWSER_VIEWPORT,
    CONSENT_STORAGE,
)


@dataclass
class ExecutionContext:
    """Everything one booking task owns while it runs."""

    slot: ResourceSlot
    account_label: str
    browser: Any = None
    context: Any = None
    page: Any = None
    closed: bool = False


def _consent_script() -> str:
    lines = [
        f"window.localStorage.setItem({key!r}, {value!r});"
        for key, value in CONSENT_STORAGE.items()
    ]
    return "\n".join(lines)


class ExecutionContextFactory:
    """Launches one isolated Chromium per slot on a shared Playwright driver.

    The driver is started lazily on first use and torn down by :meth:`shutdown`.
    Headed browsers are pointed at the slot's virtual display.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        block_resources: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.headless = headless
        self.block_resources = block_resources
        self.logger = logger or logging.getLogger('ExecutionContextFactory')
        self._playwright = None
        self._start_lock = asyncio.Lock()

    async def _ensure_driver(self):
        async with self._start_lock:
            if self._playwright is None:
                self.logger.info("Starting Playwright...")
                self._playwright = await async_playwright().start()
        return self._playwright

    async def create(self, slot: ResourceSlot, account_label: str) -> ExecutionContext:
        playwright = await self._ensure_driver()
        execution = ExecutionContext(slot=slot, account_label=account_label)

        launch_kwargs = {"headless": self.headless, "args": BROWSER_LAUNCH_ARGS}
        if not self.headless:
            launch_kwargs["env"] = {"DISPLAY": slot.display}

        try:
            self.logger.info("[%s] Launching browser on %s", account_label, slot.display)
            execution.browser = await playwright.chromium.launch(**launch_kwargs)
            execution.context = await execution.browser.new_context(
                user_agent=BROWSER_USER_AGENT,
                viewport=BROWSER_VIEWPORT,
            )
            await execution.context.add_init_script(_consent_script())
            execution.page = await execution.context.new_page()
            if self.block_resources:
                await execution.page.route("**/*", self._filter_request)
        except Exception:
            await self.close(execution)
            raise
        return execution

    @staticmethod
    async def _filter_request(route) -> None:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()

    async def close(self, execution: ExecutionContext) -> None:
        """Close the browser behind ``execution``; safe to call more than once."""

        if execution.closed:
            return
        execution.closed = True
        for label, resource in (("context", execution.context), ("browser", execution.browser)):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as exc:
                self.logger.warning(
                    "[%s] Error closing %s: %s", execution.account_label, label, exc
                )
        execution.page = None
        execution.context = None
        execution.browser = None

    async def shutdown(self) -> None:
        async with self._start_lock:
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as exc:
                    self.logger.warning("Error stopping Playwright: %s", exc)
                self._playwright = None
