"""Dependency container wiring the monitoring and booking components together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from automation.browser.contexts import ExecutionContextFactory
from automation.browser.slot_pool import SlotPool
from automation.executors.booking import GoetheBookingExecutor
from bookings.orchestrator import BookingOrchestrator
from bookings.repository import ScheduleRepository
from bookings.scheduler import ExamScheduler
from botapp.notifications import TelegramNotifier
from infrastructure.constants import PollingConfig
from infrastructure.settings import AppSettings
from monitoring.availability_poller import ExamAvailabilityPoller
from monitoring.endpoint_capture import EndpointCapturer
from users.manager import AccountManager


@dataclass(frozen=True)
class AppDependencies:
    """Concrete dependency snapshot for the exam bot runtime."""

    settings: AppSettings
    notifier: TelegramNotifier
    account_manager: AccountManager
    schedule_repository: ScheduleRepository
    slot_pool: SlotPool
    context_factory: ExecutionContextFactory
    orchestrator: BookingOrchestrator
    http_client: httpx.AsyncClient
    scheduler: ExamScheduler

    def as_dict(self) -> Dict[str, Any]:
        """Return dependencies as a mapping keyed by attribute name."""

        return {
            'settings': self.settings,
            'notifier': self.notifier,
            'account_manager': self.account_manager,
            'schedule_repository': self.schedule_repository,
            'slot_pool': self.slot_pool,
            'context_factory': self.context_factory,
            'orchestrator': self.orchestrator,
            'http_client': self.http_client,
            'scheduler': self.scheduler,
        }


class DependencyContainer:
    """Lazy dependency container with optional override support."""

    def __init__(
        self,
        settings: AppSettings,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.settings = settings
        self._cache: Dict[str, Any] = {}
        if overrides:
            self._cache.update(overrides)

    def _resolve(self, key: str, factory: Callable[[], Any]) -> Any:
        if key not in self._cache:
            self._cache[key] = factory()
        return self._cache[key]

    # ------------------------------------------------------------------
    # Leaf services
    @property
    def notifier(self) -> TelegramNotifier:
        return self._resolve('notifier', lambda: TelegramNotifier(token=self.settings.bot_token))

    @property
    def account_manager(self) -> AccountManager:
        return self._resolve('account_manager', lambda: AccountManager(self.settings.accounts_file))

    @property
    def schedule_repository(self) -> ScheduleRepository:
        return self._resolve(
            'schedule_repository', lambda: ScheduleRepository(self.settings.schedules_file)
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._resolve(
            'http_client', lambda: httpx.AsyncClient(timeout=PollingConfig.FETCH_TIMEOUT)
        )

    @property
    def endpoint_capturer(self) -> EndpointCapturer:
        def factory() -> EndpointCapturer:
            return EndpointCapturer(
                page_url=self.settings.exam_page_url,
                marker=self.settings.exam_api_marker,
            )

        return self._resolve('endpoint_capturer', factory)

    # ------------------------------------------------------------------
    # Booking side
    @property
    def slot_pool(self) -> SlotPool:
        def factory() -> SlotPool:
            return SlotPool(
                self.settings.slot_pool_size,
                base_display=self.settings.base_display,
            )

        return self._resolve('slot_pool', factory)

    @property
    def context_factory(self) -> ExecutionContextFactory:
        return self._resolve(
            'context_factory',
            lambda: ExecutionContextFactory(headless=self.settings.browser_headless),
        )

    @property
    def executor(self) -> GoetheBookingExecutor:
        def factory() -> GoetheBookingExecutor:
            return GoetheBookingExecutor(
                notifier=self.notifier,
                account_manager=self.account_manager,
                booking_url_template=self.settings.booking_url_template,
                payment_handoff_wait=self.settings.payment_handoff_wait_seconds,
            )

        return self._resolve('executor', factory)

    @property
    def orchestrator(self) -> BookingOrchestrator:
        def factory() -> BookingOrchestrator:
            return BookingOrchestrator(
                self.slot_pool,
                self.context_factory,
                self.executor,
                notifier=self.notifier,
                default_concurrency=self.settings.batch_concurrency_limit,
                task_timeout=self.settings.account_task_timeout_seconds,
            )

        return self._resolve('orchestrator', factory)

    # ------------------------------------------------------------------
    # Monitoring side
    def build_poller(self) -> ExamAvailabilityPoller:
        """Return a fresh poller sharing the capturer and HTTP client."""

        return ExamAvailabilityPoller(
            self.endpoint_capturer,
            http_client=self.http_client,
            timezone=self.settings.timezone,
            capture_max_retries=self.settings.capture_max_retries,
            capture_retry_delay=self.settings.capture_retry_delay_seconds,
        )

    @property
    def scheduler(self) -> ExamScheduler:
        def factory() -> ExamScheduler:
            return ExamScheduler(
                self.schedule_repository,
                self.account_manager,
                self.orchestrator,
                self.notifier,
                self.build_poller,
                check_interval=self.settings.scheduler_check_interval_seconds,
                lookahead=self.settings.monitoring_lookahead_seconds,
                poll_interval=self.settings.poll_interval_seconds,
                max_poll_duration=self.settings.max_poll_duration_seconds,
                priority_tags=self.settings.priority_locations,
                concurrency_limit=self.settings.batch_concurrency_limit,
            )

        return self._resolve('scheduler', factory)

    def build_dependencies(self) -> AppDependencies:
        """Materialise every dependency and return a frozen snapshot."""

        return AppDependencies(
            settings=self.settings,
            notifier=self.notifier,
            account_manager=self.account_manager,
            schedule_repository=self.schedule_repository,
            slot_pool=self.slot_pool,
            context_factory=self.context_factory,
            orchestrator=self.orchestrator,
            http_client=self.http_client,
            scheduler=self.scheduler,
        )
