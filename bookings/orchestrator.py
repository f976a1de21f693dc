"""Bounded-concurrency booking batches across many accounts."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from automation.browser.contexts import ExecutionContext, ExecutionContextFactory
from automation.browser.slot_pool import SlotPool
from automation.shared.booking_contracts import (
    Account,
    AccountTaskError,
    BatchResult,
    BookingOutcome,
    ResourceExhaustionError,
)
from infrastructure.constants import OrchestratorConfig, SlotPoolConfig

from .dispatch import DispatchJob, JobOutcome, dispatch_bounded
from .metrics import BatchStats


@dataclass
class ScheduleRun:
    """Live state of one batch; owned by :class:`BookingOrchestrator`."""

    schedule_id: str
    match_id: str
    stats: BatchStats = field(default_factory=BatchStats)
    contexts: Dict[str, ExecutionContext] = field(default_factory=dict)
    slot_ids: Set[str] = field(default_factory=set)
    task_started: Dict[str, float] = field(default_factory=dict)
    is_running: bool = True
    should_stop: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None


class BookingOrchestrator:
    """Runs the booking executor for a list of accounts against one exam id.

    Each account task acquires its own pool slot and execution context and
    always gives both back, whether the executor succeeded, raised, or timed
    out. One account failing never affects the others.
    """

    def __init__(
        self,
        slot_pool: SlotPool,
        context_factory: ExecutionContextFactory,
        executor: Any,
        *,
        notifier: Any = None,
        default_concurrency: int = OrchestratorConfig.DEFAULT_CONCURRENCY,
        task_timeout: float = OrchestratorConfig.ACCOUNT_TASK_TIMEOUT,
        acquire_retries: int = SlotPoolConfig.ACQUIRE_MAX_RETRIES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.slot_pool = slot_pool
        self.context_factory = context_factory
        self.executor = executor
        self.notifier = notifier
        self.default_concurrency = default_concurrency
        self.task_timeout = task_timeout
        self.acquire_retries = acquire_retries
        self.logger = logger or logging.getLogger('BookingOrchestrator')
        self._runs: Dict[str, ScheduleRun] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def run_batch(
        self,
        match_id: str,
        accounts: Sequence[Account],
        concurrency_limit: Optional[int] = None,
        schedule_id: Optional[str] = None,
    ) -> BatchResult:
        schedule_id = schedule_id or uuid.uuid4().hex
        existing = self._runs.get(schedule_id)
        if existing is not None and existing.is_running:
            raise RuntimeError(f"Batch {schedule_id} is already running")

        limit = max(1, concurrency_limit or self.default_concurrency)
        run = ScheduleRun(schedule_id=schedule_id, match_id=match_id)
        run.stats.submitted = len(accounts)
        self._runs[schedule_id] = run

        self.logger.info(
            "🚀 Batch %s: %s account(s) for OID %s with concurrency %s",
            schedule_id[:8], len(accounts), match_id, limit,
        )

        jobs = [
            DispatchJob(key=account.account_id, item=account, index=index, total=len(accounts))
            for index, account in enumerate(accounts, start=1)
        ]

        try:
            await dispatch_bounded(
                jobs,
                run_job=lambda job: self._run_account(run, job),
                limit=limit,
                should_stop=lambda: run.should_stop,
                on_settled=lambda outcome: self._record_outcome(run, outcome),
                logger=self.logger,
            )
        finally:
            run.is_running = False
            run.contexts.clear()
            run.completed_at = datetime.now()

        result = BatchResult(
            schedule_id=schedule_id,
            match_id=match_id,
            submitted_count=run.stats.submitted,
            processed_count=run.stats.processed,
            success_count=run.stats.successful,
            error_count=run.stats.failed,
            stopped=run.should_stop,
            started_at=run.started_at,
            completed_at=run.completed_at,
        )
        self.logger.info(
            "🏁 Batch %s finished (%s)\n%s",
            schedule_id[:8], result.outcome.value, run.stats.format_report(),
        )
        return result

    def request_stop(self, schedule_id: str) -> bool:
        """Stop admitting accounts for ``schedule_id``.

        Slots held by accounts that are already running stay allocated until
        that account's own cleanup releases them; the pool may be shared with
        other batches, so freeing them early would hand a live display out twice.
        """

        run = self._runs.get(schedule_id)
        if run is None or not run.is_running:
            return False

        run.should_stop = True
        self.logger.warning(
            "🛑 Stop requested for batch %s - %s in-flight slot(s) released on task cleanup",
            schedule_id[:8], len(run.slot_ids),
        )
        return True

    def request_stop_all(self) -> List[str]:
        return [schedule_id for schedule_id in list(self._runs) if self.request_stop(schedule_id)]

    def get_batch_status(self, schedule_id: str) -> Optional[Dict[str, Any]]:
        run = self._runs.get(schedule_id)
        if run is None:
            return None
        return {
            "schedule_id": run.schedule_id,
            "match_id": run.match_id,
            "active_slots": len(run.contexts),
            "submitted_count": run.stats.submitted,
            "processed_count": run.stats.processed,
            "success_count": run.stats.successful,
            "error_count": run.stats.failed,
            "is_running": run.is_running,
            "should_stop": run.should_stop,
        }

    def active_schedule_ids(self) -> List[str]:
        return [schedule_id for schedule_id, run in self._runs.items() if run.is_running]

    # ------------------------------------------------------------------
    # Per-account task
    # ------------------------------------------------------------------
    async def _run_account(self, run: ScheduleRun, job: DispatchJob[Account]) -> BookingOutcome:
        account = job.item
        run.task_started[job.key] = asyncio.get_running_loop().time()
        slot_id: Optional[str] = None
        execution: Optional[ExecutionContext] = None

        self.logger.info("[%s] Starting account %s/%s", account.label, job.index, job.total)
        try:
            slot_id = await self.slot_pool.acquire_with_retry(self.acquire_retries)
            if slot_id is None:
                raise ResourceExhaustionError(
                    f"No browser slot available after {self.acquire_retries} attempts"
                )
            run.slot_ids.add(slot_id)

            execution = await self.context_factory.create(self.slot_pool.get(slot_id), account.label)
            run.contexts[account.account_id] = execution

            try:
                outcome = await asyncio.wait_for(
                    self.executor.execute(execution, account, run.match_id),
                    timeout=self.task_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise AccountTaskError(
                    f"Booking timed out after {self.task_timeout / 3600:.1f} hours"
                ) from exc

            self.logger.info("[%s] ✅ Finished with %s", account.label, outcome.value)
            return outcome
        except Exception as exc:
            self.logger.error("[%s] ❌ Booking failed: %s", account.label, exc)
            await self._notify(account.owner_id, f"[{account.label}] ❌ Booking process failed: {exc}")
            raise
        finally:
            run.contexts.pop(account.account_id, None)
            if execution is not None:
                await self.context_factory.close(execution)
            if slot_id is not None:
                self.slot_pool.release(slot_id)
                run.slot_ids.discard(slot_id)

    def _record_outcome(self, run: ScheduleRun, outcome: JobOutcome[Account]) -> None:
        started = run.task_started.pop(outcome.job.key, None)
        elapsed = asyncio.get_running_loop().time() - started if started is not None else None
        if outcome.ok:
            run.stats.record_success(elapsed)
        else:
            run.stats.record_failure(elapsed)
        self.logger.info(
            "Batch %s progress: %s/%s processed (%s ok, %s failed)",
            run.schedule_id[:8], run.stats.processed, run.stats.submitted,
            run.stats.successful, run.stats.failed,
        )

    async def _notify(self, recipient_id: str, message: str) -> None:
        if self.notifier is None or not recipient_id:
            return
        try:
            await self.notifier.notify(recipient_id, message)
        except Exception as exc:
            self.logger.error("Failed to send notification to %s: %s", recipient_id, exc)
