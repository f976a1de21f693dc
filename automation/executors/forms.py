"""Page-level helpers for the checkout forms of the exam registration site."""

from __future__ import annotations

import asyncio
import logging
from typing import List

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from automation.shared.booking_contracts import Account, ExamModules, ModulesUnavailableError
from infrastructure.constants import (
    ADDRESS_FORM_SELECTORS,
    BIRTH_YEAR_OFFSET,
    CONFLICT_DISCARD_SELECTOR,
    CONFLICT_OVERLAY_SELECTOR,
    DETAILS_FORM_SELECTORS,
    MODULE_CHECKBOX_SELECTOR,
    MOTIVATION_DEFAULT,
    NEXT_BUTTON_SELECTOR,
    BookingTimeouts,
)

_SELECT_MODULES_JS = """
([selector, wanted]) => {
    const unavailable = [];
    document.querySelectorAll(selector).forEach((checkbox) => {
        const moduleId = checkbox.id.trim().toLowerCase();
        if (!wanted[moduleId]) {
            return;
        }
        if (checkbox.disabled) {
            unavailable.push(moduleId);
        } else if (!checkbox.checked) {
            checkbox.click();
        }
    });
    return unavailable;
}
"""

_SET_SELECT_JS = """
([selector, value, onlyIfEmpty]) => {
    const select = document.querySelector(selector);
    if (!select || (onlyIfEmpty && select.value)) {
        return false;
    }
    select.value = String(value);
    select.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}
"""


class CheckoutFormService:
    """Fills the module, details, and address steps of the checkout."""

    def __init__(
        self,
        *,
        logger: logging.Logger | None = None,
        settle_delay: float = BookingTimeouts.FORM_SETTLE_SECONDS,
    ) -> None:
        self.logger = logger or logging.getLogger('BookingExecutor')
        self.settle_delay = settle_delay

    async def select_modules(self, page: Page, modules: ExamModules) -> None:
        """Tick every wanted module checkbox.

        Raises:
            ModulesUnavailableError: a wanted module is disabled (fully booked),
                or the checkbox list never appeared.
        """

        try:
            await page.wait_for_selector(
                MODULE_CHECKBOX_SELECTOR, timeout=BookingTimeouts.MODULE_CHECKBOXES
            )
        except PlaywrightTimeoutError as exc:
            raise ModulesUnavailableError(modules.required()) from exc

        unavailable: List[str] = await page.evaluate(
            _SELECT_MODULES_JS, [MODULE_CHECKBOX_SELECTOR, modules.as_checkbox_map()]
        )
        if unavailable:
            self.logger.warning("⚠️ Required modules fully booked: %s", ", ".join(unavailable))
            raise ModulesUnavailableError(unavailable)
        self.logger.info("✅ All required modules selected")

    async def dismiss_booking_conflict(self, page: Page) -> bool:
        """Discard another open booking if the site shows the conflict overlay."""

        try:
            overlay = await page.query_selector(CONFLICT_OVERLAY_SELECTOR)
            if overlay is None:
                return False

            self.logger.info("⚠️ Booking conflict detected, discarding other booking")
            async with page.expect_navigation(
                wait_until="networkidle", timeout=BookingTimeouts.CONFLICT_NAVIGATION
            ):
                await page.click(CONFLICT_DISCARD_SELECTOR)
            self.logger.info("✅ Navigated after discarding other booking")
            return True
        except Exception as exc:
            self.logger.error("❌ Error handling booking conflict: %s", exc)
            return False

    async def fill_details_form(self, page: Page, account: Account) -> bool:
        """Fill name and date of birth; returns False when the step is skipped."""

        selectors = DETAILS_FORM_SELECTORS
        if await page.query_selector(selectors["first_name"]) is None:
            self.logger.info("ℹ️ Details form not present, skipping")
            return False

        await page.fill(selectors["first_name"], account.first_name)
        await page.fill(selectors["last_name"], account.last_name)

        dob = account.date_of_birth
        await page.select_option(selectors["birth_day"], str(dob.day - 1))
        month_value = dob.month - 1
        year_value = dob.year - BIRTH_YEAR_OFFSET

        # The month and year selects re-render each other; set both twice.
        for _ in range(2):
            await self._set_select(page, selectors["birth_month"], month_value)
            await self._set_select(page, selectors["birth_year"], year_value)
            await asyncio.sleep(self.settle_delay)

        await page.click(NEXT_BUTTON_SELECTOR)
        self.logger.info("✅ Filled name and date of birth")
        return True

    async def fill_address_form(self, page: Page, account: Account) -> bool:
        """Fill blank address fields; returns False when the step is skipped."""

        selectors = ADDRESS_FORM_SELECTORS
        if await page.query_selector(selectors["postal_code"]) is None:
            self.logger.info("ℹ️ Address form not present, skipping")
            return False

        values = {
            "postal_code": account.address.postal_code,
            "city": account.address.city,
            "street": account.address.street,
            "house_no": account.address.house_no,
            "mobile": account.phone.number,
            "birthplace": account.address.city,
        }
        for field_name, value in values.items():
            await self.type_if_empty(page, selectors[field_name], value)

        if await self._set_select(page, selectors["motivation"], MOTIVATION_DEFAULT, only_if_empty=True):
            self.logger.info("✅ Set motivation to %s", MOTIVATION_DEFAULT)
        return True

    async def type_if_empty(self, page: Page, selector: str, value: str) -> bool:
        element = await page.query_selector(selector)
        if element is None or not value:
            return False

        existing = (await element.input_value()).strip()
        if existing:
            self.logger.debug("Skipping %s, already filled with %r", selector, existing)
            return False

        await element.fill(value)
        return True

    async def _set_select(self, page: Page, selector: str, value, *, only_if_empty: bool = False) -> bool:
        return bool(await page.evaluate(_SET_SELECT_JS, [selector, value, only_if_empty]))
