"""Schedule watcher that turns due schedules into polling sessions and booking batches."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Dict, Optional, Sequence, Set, Tuple

import pytz

from automation.shared.booking_contracts import BatchOutcome, ExamRecord, MonitoringTarget
from botapp.notifications import (
    batch_summary_message,
    booking_available_message,
    exam_found_message,
    monitoring_started_message,
    schedule_error_message,
    schedule_expired_message,
    schedule_timeout_message,
    system_shutdown_message,
)
from infrastructure.constants import DEFAULT_PRIORITY_LOCATIONS, PollingConfig, SchedulerConfig
from monitoring.availability_poller import ExamAvailabilityPoller, PollerHandlers

from .orchestrator import BookingOrchestrator
from .repository import Schedule, ScheduleRepository, ScheduleStatus

_STATUS_BY_OUTCOME = {
    BatchOutcome.SUCCESS: ScheduleStatus.COMPLETED,
    BatchOutcome.PARTIAL: ScheduleStatus.PARTIAL,
    BatchOutcome.STOPPED: ScheduleStatus.STOPPED,
    BatchOutcome.FAILED: ScheduleStatus.FAILED,
}


@dataclass
class MonitoringSession:
    schedule: Schedule
    poller: ExamAvailabilityPoller
    started_at: datetime
    task: Optional[asyncio.Task] = None
    announced: Set[Tuple[str, str, str]] = field(default_factory=set)


class ExamScheduler:
    """Periodically starts monitoring for schedules whose run time is near.

    Every due schedule gets its own poller. A processable record starts a
    booking batch over the active accounts, and the batch outcome is written
    back to the schedule and reported to its owner.
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        account_manager: Any,
        orchestrator: BookingOrchestrator,
        notifier: Any,
        poller_factory: Callable[[], ExamAvailabilityPoller],
        *,
        check_interval: float = SchedulerConfig.CHECK_INTERVAL,
        lookahead: float = SchedulerConfig.LOOKAHEAD,
        session_expiry: float = SchedulerConfig.SESSION_EXPIRY,
        poll_interval: float = PollingConfig.INTERVAL,
        max_poll_duration: float = PollingConfig.MAX_DURATION,
        priority_tags: Sequence[str] = DEFAULT_PRIORITY_LOCATIONS,
        concurrency_limit: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repository = repository
        self.account_manager = account_manager
        self.orchestrator = orchestrator
        self.notifier = notifier
        self.poller_factory = poller_factory
        self.check_interval = check_interval
        self.lookahead = lookahead
        self.session_expiry = session_expiry
        self.poll_interval = poll_interval
        self.max_poll_duration = max_poll_duration
        self.priority_tags = tuple(priority_tags)
        self.concurrency_limit = concurrency_limit
        self._now = clock or (lambda: datetime.now(pytz.UTC))
        self.logger = logger or logging.getLogger('ExamScheduler')

        self._sessions: Dict[str, MonitoringSession] = {}
        self._loop_task: Optional[asyncio.Task] = None
        self._is_running = False

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        if self._is_running:
            self.logger.warning("⚠️ Scheduler is already running")
            return
        self.logger.info("🚀 Starting exam scheduler (every %ss)", self.check_interval)
        self._is_running = True
        self._loop_task = asyncio.create_task(self._run_loop(), name="exam-scheduler")

    async def stop(self) -> None:
        if not self._is_running:
            self.logger.warning("⚠️ Scheduler is not running")
            return
        self.logger.info("🛑 Stopping exam scheduler")
        self._is_running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

    async def _run_loop(self) -> None:
        while self._is_running:
            try:
                await self.check_and_start_monitoring()
            except Exception as exc:
                self.logger.error("❌ Scheduler error: %s", exc, exc_info=True)
            await asyncio.sleep(self.check_interval)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------
    async def check_and_start_monitoring(self) -> None:
        due = self.repository.find_due_for_monitoring(self._now(), timedelta(seconds=self.lookahead))
        if due:
            self.logger.info("🔍 Found %s schedule(s) ready for monitoring", len(due))

        for schedule in due:
            try:
                await self.start_monitoring_for_schedule(schedule)
            except Exception as exc:
                self.logger.error(
                    "❌ Failed to start monitoring for schedule %s: %s", schedule.schedule_id, exc
                )
                await self._fail_schedule(schedule, exc, "Failed to start monitoring")

        await self.cleanup_expired_sessions()

    async def start_monitoring_for_schedule(self, schedule: Schedule) -> None:
        schedule_id = schedule.schedule_id
        if schedule_id in self._sessions:
            self.logger.warning("⚠️ Already monitoring schedule %s (%s)", schedule.name, schedule_id)
            return

        if not schedule.created_by:
            await self._fail_schedule(schedule, "Schedule has no owner", "User validation failed")
            return

        await self._notify(schedule, monitoring_started_message(schedule.name, schedule.run_at))
        self.logger.info("🎯 Starting monitoring for %s at %s", schedule.name, schedule.run_at.isoformat())
        self.repository.mark_monitoring_started(schedule_id)

        poller = self.poller_factory()
        session = MonitoringSession(schedule=schedule, poller=poller, started_at=self._now())
        self._sessions[schedule_id] = session

        target = MonitoringTarget(
            target_time=schedule.run_at,
            poll_interval=self.poll_interval,
            max_duration=self.max_poll_duration,
            priority_tags=schedule.priority_tags or self.priority_tags,
            stop_on_first_match=True,
        )
        handlers = PollerHandlers(
            on_found=partial(self._on_found, session),
            on_processable=partial(self._on_processable, session),
            on_timeout=partial(self._on_timeout, session),
        )
        session.task = asyncio.create_task(
            self._start_session(session, target, handlers), name=f"monitor-{schedule_id[:8]}"
        )

    async def _start_session(
        self, session: MonitoringSession, target: MonitoringTarget, handlers: PollerHandlers
    ) -> None:
        try:
            await session.poller.start_polling(target, handlers)
        except Exception as exc:
            self.logger.error("❌ Failed to start polling for %s: %s", session.schedule.name, exc)
            self._sessions.pop(session.schedule.schedule_id, None)
            await self._fail_schedule(session.schedule, exc, "Failed to start polling")

    async def cleanup_expired_sessions(self) -> None:
        now = self._now()
        expiry = timedelta(seconds=self.session_expiry)
        expired = [
            session
            for session in self._sessions.values()
            if now > session.schedule.run_at + expiry and not session.poller.is_processing_match
        ]

        for session in expired:
            schedule = session.schedule
            self.logger.info("🧹 Cleaning up expired monitoring session for %s", schedule.schedule_id)
            self._sessions.pop(schedule.schedule_id, None)
            session.poller.stop()
            self.repository.mark_completed(
                schedule.schedule_id,
                ScheduleStatus.FAILED,
                "Monitoring session expired - exam time has passed",
            )
            await self._notify(schedule, schedule_expired_message(schedule.name))

        if expired:
            self.logger.info("🧹 Cleaned up %s expired monitoring session(s)", len(expired))

    # ------------------------------------------------------------------
    # Poller handlers
    # ------------------------------------------------------------------
    async def _on_found(self, session: MonitoringSession, record: ExamRecord) -> None:
        key = (record.location, record.event_name, str(record.window_start))
        if key in session.announced:
            return
        session.announced.add(key)
        self.logger.info("📋 [%s] Exam detected: %s", session.schedule.name, record.describe())
        await self._notify(session.schedule, exam_found_message(session.schedule.name, record))

    async def _on_processable(self, session: MonitoringSession, record: ExamRecord) -> None:
        schedule = session.schedule
        schedule_id = schedule.schedule_id
        self.logger.info("🎯 [%s] Processing exam with OID %s", schedule.name, record.record_id)
        await self._notify(schedule, booking_available_message(schedule.name, record))

        try:
            accounts = self.account_manager.active_accounts()
            if not accounts:
                self.logger.info("ℹ️ [%s] No active accounts found", schedule.name)
                self.repository.mark_completed(schedule_id, ScheduleStatus.FAILED, "No active accounts")
                await self._notify(
                    schedule,
                    schedule_error_message(schedule.name, "Automation skipped", "No active accounts"),
                )
                return

            try:
                result = await self.orchestrator.run_batch(
                    record.record_id,
                    accounts,
                    self.concurrency_limit,
                    schedule_id=schedule_id,
                )
            except Exception as exc:
                self.logger.error("❌ [%s] Automation failed: %s", schedule.name, exc, exc_info=True)
                await self._fail_schedule(schedule, exc, "Automation failed")
                return

            outcome = result.outcome
            error = None
            if outcome is not BatchOutcome.SUCCESS:
                error = f"{result.error_count} of {result.submitted_count} account(s) failed"
                if outcome is BatchOutcome.STOPPED:
                    error = "Batch stopped before every account ran"
            self.repository.mark_completed(schedule_id, _STATUS_BY_OUTCOME[outcome], error)
            await self._notify(schedule, batch_summary_message(schedule.name, result))
        finally:
            self._sessions.pop(schedule_id, None)

    async def _on_timeout(self, session: MonitoringSession) -> None:
        schedule = session.schedule
        minutes = self.max_poll_duration / 60
        self.logger.info("⏰ [%s] Polling timeout - no exam found", schedule.name)
        self._sessions.pop(schedule.schedule_id, None)
        self.repository.mark_completed(
            schedule.schedule_id,
            ScheduleStatus.FAILED,
            f"No exam found within {minutes:.0f} minute monitoring window",
        )
        await self._notify(schedule, schedule_timeout_message(schedule.name, minutes))

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------
    async def stop_all_monitoring(self) -> None:
        """Stop every session and batch, then return in-flight schedules to pending."""

        sessions = list(self._sessions.values())
        self.logger.warning("🛑 Emergency stop: stopping %s active monitoring session(s)", len(sessions))

        for session in sessions:
            await self._notify(session.schedule, system_shutdown_message(session.schedule.name))

        for schedule_id in self.orchestrator.request_stop_all():
            self.logger.info("Requested stop for batch %s", schedule_id[:8])

        for session in sessions:
            if session.task is not None and not session.task.done():
                session.task.cancel()
            await session.poller.destroy()
        self._sessions.clear()

        self.repository.reset_interrupted("Monitoring stopped by system shutdown")

    async def trigger_schedule(self, schedule_id: str) -> None:
        """Start monitoring for ``schedule_id`` now, regardless of its run time."""

        schedule = self.repository.get(schedule_id)
        if schedule is None:
            raise ValueError(f"Schedule {schedule_id} not found")
        if schedule.completed:
            raise ValueError(f"Schedule {schedule_id} is already completed")

        schedule = self.repository.reset_for_trigger(schedule_id) or schedule
        await self.start_monitoring_for_schedule(schedule)
        self.logger.info("✅ Manually triggered monitoring for schedule %s", schedule_id)

    def get_status(self) -> Dict[str, Any]:
        now = self._now()
        sessions = []
        for schedule_id, session in self._sessions.items():
            sessions.append({
                "schedule_id": schedule_id,
                "name": session.schedule.name,
                "target_time": session.schedule.run_at.isoformat(),
                "started_at": session.started_at.isoformat(),
                "running_for": f"{round((now - session.started_at).total_seconds())}s",
                "poller": session.poller.get_status(),
                "batch": self.orchestrator.get_batch_status(schedule_id),
            })
        return {
            "is_running": self._is_running,
            "active_sessions": len(self._sessions),
            "sessions": sessions,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _fail_schedule(self, schedule: Schedule, error: Any, context: str) -> None:
        details = str(error) or error.__class__.__name__
        self.repository.mark_failed(schedule.schedule_id, f"{context}: {details}")
        await self._notify(schedule, schedule_error_message(schedule.name, context, details))

    async def _notify(self, schedule: Schedule, message: str) -> None:
        if not schedule.created_by:
            return
        try:
            await self.notifier.notify(schedule.created_by, message)
        except Exception as exc:
            self.logger.error("❌ Failed to send log to user %s: %s", schedule.created_by, exc)
