"""Playwright executor that drives one account through the exam checkout."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from automation.browser.contexts import ExecutionContext
from automation.shared.booking_contracts import (
    Account,
    BookingFlowError,
    BookingOutcome,
    ModulesUnavailableError,
)
from infrastructure.constants import (
    BOOK_FOR_BUTTON_SELECTOR,
    BOOKING_URL_TEMPLATE,
    LOGIN_PASSWORD_SELECTOR,
    LOGIN_SUBMIT_SELECTOR,
    LOGIN_USERNAME_SELECTOR,
    NEXT_BUTTON_SELECTOR,
    BookingTimeouts,
    OrchestratorConfig,
)

from .forms import CheckoutFormService

PAYMENT_HANDOFF_MESSAGE = (
    "✅ Redirected to the payment page.\n"
    "💳 Please log in to the RDP, review all the details and complete the payment manually.\n"
    "⏳ You have approximately *10 minutes* to finish the payment before the session expires."
)


class GoetheBookingExecutor:
    """Runs the registration flow up to the manual payment step.

    Progress is reported to the account owner with a ``[First Last - email]``
    prefix. Any failure is raised as :class:`BookingFlowError` so the caller
    can count and report it.
    """

    def __init__(
        self,
        *,
        notifier: Any,
        account_manager: Any = None,
        forms: Optional[CheckoutFormService] = None,
        booking_url_template: str = BOOKING_URL_TEMPLATE,
        payment_handoff_wait: float = OrchestratorConfig.PAYMENT_HANDOFF_WAIT,
        max_open_attempts: int = BookingTimeouts.MAX_OPEN_ATTEMPTS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.notifier = notifier
        self.account_manager = account_manager
        self.logger = logger or logging.getLogger('BookingExecutor')
        self.forms = forms or CheckoutFormService(logger=self.logger)
        self.booking_url_template = booking_url_template
        self.payment_handoff_wait = payment_handoff_wait
        self.max_open_attempts = max_open_attempts

    async def execute(
        self, context: ExecutionContext, account: Account, match_id: str
    ) -> BookingOutcome:
        page = context.page
        if page is None:
            raise BookingFlowError("Execution context has no page")

        try:
            return await self._run_flow(page, account, match_id)
        except BookingFlowError:
            raise
        except Exception as exc:
            raise BookingFlowError(f"Booking process failed: {exc}") from exc

    async def _run_flow(self, page: Page, account: Account, match_id: str) -> BookingOutcome:
        await self._open_booking_page(page, account, match_id)

        await self._report(account, "🚀 Starting booking process...")
        try:
            await self.forms.select_modules(page, account.modules)
        except ModulesUnavailableError:
            await self._report(account, "❌ Required modules not available, stopping booking.")
            raise
        await self._report(account, "Selected modules, continuing booking...")

        await page.wait_for_selector(
            NEXT_BUTTON_SELECTOR, state="visible", timeout=BookingTimeouts.SELECTOR
        )
        await self._click_and_wait(page, NEXT_BUTTON_SELECTOR)

        await page.wait_for_selector(
            BOOK_FOR_BUTTON_SELECTOR, state="visible", timeout=BookingTimeouts.SELECTOR
        )
        book_for = await page.query_selector_all(BOOK_FOR_BUTTON_SELECTOR)
        if len(book_for) < 2:
            raise BookingFlowError("'Book for me' button not found")
        async with page.expect_navigation(
            wait_until="domcontentloaded", timeout=BookingTimeouts.NAVIGATION
        ):
            await book_for[1].click()
        self.logger.info("[%s] 🎯 Clicked 'Book for me'", account.label)

        await page.wait_for_selector(
            LOGIN_USERNAME_SELECTOR, state="visible", timeout=BookingTimeouts.SELECTOR
        )
        await page.fill(LOGIN_USERNAME_SELECTOR, account.email)
        await page.fill(LOGIN_PASSWORD_SELECTOR, account.password)
        await self._report(account, "✅ Submitted login form")
        await self._click_and_wait(page, LOGIN_SUBMIT_SELECTOR)

        await self.forms.dismiss_booking_conflict(page)

        if await self.forms.fill_details_form(page, account):
            await self._optional_navigation(page, account, "details form")
        await self._report(account, "✅ Filled out DOB form")

        if await self.forms.fill_address_form(page, account):
            await self._optional_navigation(page, account, "address form")
        await self._report(account, "✅ Filled out contact details")

        await self._click_and_wait(page, NEXT_BUTTON_SELECTOR)
        self.logger.info("[%s] ✅ Navigated to payment page", account.label)
        await self._report(account, PAYMENT_HANDOFF_MESSAGE)

        if self.account_manager is not None:
            self.account_manager.deactivate(account.account_id)

        await asyncio.sleep(self.payment_handoff_wait)
        return BookingOutcome.PAYMENT_HANDOFF

    async def _open_booking_page(self, page: Page, account: Account, match_id: str) -> None:
        url = self.booking_url_template.format(oid=match_id)
        for attempt in range(1, self.max_open_attempts + 1):
            await page.goto(url, wait_until="domcontentloaded", timeout=BookingTimeouts.NAVIGATION)
            title = await page.title()
            if "Error" not in title:
                return

            self.logger.warning("[%s] ❗ Booking error page on attempt %s", account.label, attempt)
            await self._report(
                account,
                f"❗ Booking error detected, retrying... ({attempt}/{self.max_open_attempts})",
            )

        await self._report(account, "❌ Max retries reached. Stopping booking.")
        raise BookingFlowError(f"Booking page kept failing after {self.max_open_attempts} attempts")

    async def _click_and_wait(self, page: Page, selector: str) -> None:
        async with page.expect_navigation(
            wait_until="domcontentloaded", timeout=BookingTimeouts.NAVIGATION
        ):
            await page.click(selector)

    async def _optional_navigation(self, page: Page, account: Account, step: str) -> None:
        try:
            await page.wait_for_event("load", timeout=BookingTimeouts.OPTIONAL_NAVIGATION)
            self.logger.debug("[%s] Navigated after %s", account.label, step)
        except PlaywrightTimeoutError:
            self.logger.debug("[%s] No navigation after %s", account.label, step)

    async def _report(self, account: Account, message: str) -> None:
        full_message = f"[{account.label}] {message}"
        self.logger.info(full_message)
        await self.notifier.notify(account.owner_id, full_message)
