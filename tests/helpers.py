"""Shared fakes and utilities for unit tests."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from automation.browser.contexts import ExecutionContext
from automation.shared.booking_contracts import (
    Account,
    Address,
    BookingOutcome,
    ExamModules,
    Phone,
)


class DummyLogger:
    """Lightweight stand-in for ``logging.Logger`` that records calls."""

    def __init__(self) -> None:
        self.records: List[Tuple[str, Tuple[Any, ...], Dict[str, Any]]] = []

    def _record(self, level: str, *args: Any, **kwargs: Any) -> None:
        self.records.append((level, args, kwargs))

    def debug(self, *args: Any, **kwargs: Any) -> None:
        self._record("debug", *args, **kwargs)

    def info(self, *args: Any, **kwargs: Any) -> None:
        self._record("info", *args, **kwargs)

    def warning(self, *args: Any, **kwargs: Any) -> None:
        self._record("warning", *args, **kwargs)

    def error(self, *args: Any, **kwargs: Any) -> None:
        self._record("error", *args, **kwargs)

    def critical(self, *args: Any, **kwargs: Any) -> None:
        self._record("critical", *args, **kwargs)

    def exception(self, *args: Any, **kwargs: Any) -> None:
        self._record("exception", *args, **kwargs)

    @property
    def messages(self) -> List[Tuple[str, Any]]:
        """Return formatted messages for quick assertions."""

        formatted: List[Tuple[str, Any]] = []
        for level, args, _kwargs in self.records:
            message: Any = None
            if args:
                template = args[0]
                if isinstance(template, str) and len(args) > 1:
                    try:
                        message = template % args[1:]
                    except (TypeError, ValueError):
                        message = template
                else:
                    message = template
            formatted.append((level, message))
        return formatted

    def has(self, level: str, fragment: str) -> bool:
        return any(
            lvl == level and isinstance(msg, str) and fragment in msg
            for lvl, msg in self.messages
        )


def make_account(
    account_id: str = "acc-1",
    *,
    owner_id: str = "100",
    first_name: str = "Asha",
    last_name: str = "Rao",
    active: bool = True,
) -> Account:
    return Account(
        account_id=account_id,
        owner_id=owner_id,
        first_name=first_name,
        last_name=last_name,
        email=f"{account_id}@example.com",
        password="secret",
        date_of_birth=date(1998, 4, 12),
        address=Address(street="MG Road", city="Chennai", postal_code="600001", house_no="12"),
        phone=Phone(country_code="+91", number="9876543210"),
        modules=ExamModules(read=True, hear=True),
        active=active,
    )


class FakeNotifier:
    """Collects notifications instead of sending them."""

    def __init__(self, *, fail: bool = False) -> None:
        self.sent: List[Tuple[str, str]] = []
        self.fail = fail

    async def notify(self, recipient_id: str, message: str) -> bool:
        if self.fail:
            raise RuntimeError("notifier down")
        self.sent.append((recipient_id, message))
        return True

    def messages_for(self, recipient_id: str) -> List[str]:
        return [message for rid, message in self.sent if rid == recipient_id]


class FakeCapturer:
    """Returns queued capture results in order; repeats the last one."""

    def __init__(self, *results: Optional[str]) -> None:
        self.results = list(results) or [None]
        self.calls: List[Tuple[int, float]] = []

    async def capture_endpoint(self, max_retries: int = 1, retry_delay: float = 0) -> Optional[str]:
        self.calls.append((max_retries, retry_delay))
        index = min(len(self.calls) - 1, len(self.results) - 1)
        await asyncio.sleep(0)
        return self.results[index]


class FakeContextFactory:
    """Hands out bare execution contexts and tracks which are open."""

    def __init__(self, *, fail_for: Optional[set] = None) -> None:
        self.created: List[ExecutionContext] = []
        self.closed: List[ExecutionContext] = []
        self.fail_for = fail_for or set()
        self.shutdown_calls = 0

    async def create(self, slot, account_label: str) -> ExecutionContext:
        await asyncio.sleep(0)
        if account_label in self.fail_for:
            raise RuntimeError(f"browser launch failed for {account_label}")
        execution = ExecutionContext(slot=slot, account_label=account_label, page=object())
        self.created.append(execution)
        return execution

    async def close(self, execution: ExecutionContext) -> None:
        if execution.closed:
            return
        execution.closed = True
        self.closed.append(execution)

    async def shutdown(self) -> None:
        self.shutdown_calls += 1

    @property
    def open_count(self) -> int:
        return len(self.created) - len(self.closed)


class FakeExecutor:
    """Executor double: per-account delays and failures, with concurrency tracking."""

    def __init__(
        self,
        *,
        delay: float = 0.01,
        failures: Optional[Dict[str, BaseException]] = None,
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.delay = delay
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls: List[Tuple[str, str, str]] = []
        self.running = 0
        self.max_running = 0
        self.displays_in_use: List[str] = []
        self.display_overlap = False

    async def execute(self, context: ExecutionContext, account: Account, match_id: str) -> BookingOutcome:
        self.calls.append((account.account_id, match_id, context.slot.slot_id))
        display = context.slot.display
        if display in self.displays_in_use:
            self.display_overlap = True
        self.displays_in_use.append(display)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await asyncio.sleep(self.delays.get(account.account_id, self.delay))
            if account.account_id in self.failures:
                raise self.failures[account.account_id]
            return BookingOutcome.PAYMENT_HANDOFF
        finally:
            self.running -= 1
            self.displays_in_use.remove(display)


class FakeAccountManager:
    def __init__(self, accounts: Optional[List[Account]] = None) -> None:
        self.accounts = list(accounts or [])
        self.deactivated: List[str] = []

    def active_accounts(self, owner_id: Optional[str] = None) -> List[Account]:
        return [account for account in self.accounts if account.active]

    def get_all_accounts(self) -> List[Account]:
        return list(self.accounts)

    def deactivate(self, account_id: str) -> bool:
        self.deactivated.append(account_id)
        return True
