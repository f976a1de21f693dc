import asyncio
from datetime import datetime, timedelta

import pytest
import pytz

from automation.shared.booking_contracts import BatchResult, CaptureExhaustedError, ExamRecord
from bookings.repository import Schedule, ScheduleRepository, ScheduleStatus
from bookings.scheduler import ExamScheduler
from tests.helpers import DummyLogger, FakeAccountManager, FakeNotifier, make_account

NOW = pytz.UTC.localize(datetime(2025, 3, 10, 4, 29))
RUN_AT = NOW + timedelta(minutes=1)


class StubPoller:
    def __init__(self, *, fail_with=None):
        self.fail_with = fail_with
        self.target = None
        self.handlers = None
        self.stopped = False
        self.destroyed = False
        self.is_processing_match = False

    async def start_polling(self, target, handlers=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.target = target
        self.handlers = handlers

    def stop(self):
        self.stopped = True

    async def destroy(self):
        self.destroyed = True

    def get_status(self):
        return {"state": "polling"}


class StubOrchestrator:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []
        self.stop_all_calls = 0

    async def run_batch(self, match_id, accounts, concurrency_limit=None, schedule_id=None):
        self.calls.append((match_id, [a.account_id for a in accounts], concurrency_limit, schedule_id))
        if self.error is not None:
            raise self.error
        return self.result

    def request_stop_all(self):
        self.stop_all_calls += 1
        return []

    def get_batch_status(self, schedule_id):
        return None


def _batch(success, errors, stopped=False):
    return BatchResult(
        schedule_id="s-1",
        match_id="oid-1",
        submitted_count=success + errors,
        processed_count=success + errors,
        success_count=success,
        error_count=errors,
        stopped=stopped,
    )


def _record(oid="oid-1"):
    return ExamRecord(record_id=oid, window_start=RUN_AT, location="Chennai", event_name="B2")


class Harness:
    def __init__(self, tmp_path, *, accounts=None, orchestrator=None, poller_factory=None, run_at=RUN_AT):
        self.repository = ScheduleRepository(str(tmp_path / "schedules.json"), logger=DummyLogger())
        self.repository.save([
            Schedule(schedule_id="s-1", name="Morning B2", run_at=run_at, created_by="100"),
        ])
        self.notifier = FakeNotifier()
        self.accounts = FakeAccountManager(
            [make_account("acc-1"), make_account("acc-2")] if accounts is None else accounts
        )
        self.orchestrator = orchestrator or StubOrchestrator(result=_batch(2, 0))
        self.pollers = []
        self.now = NOW

        def default_factory():
            poller = StubPoller()
            self.pollers.append(poller)
            return poller

        self.scheduler = ExamScheduler(
            self.repository,
            self.accounts,
            self.orchestrator,
            self.notifier,
            poller_factory or default_factory,
            lookahead=120,
            session_expiry=1800,
            max_poll_duration=1800,
            concurrency_limit=2,
            clock=lambda: self.now,
            logger=DummyLogger(),
        )

    async def start(self):
        await self.scheduler.check_and_start_monitoring()
        await asyncio.sleep(0)

    def messages(self):
        return self.notifier.messages_for("100")


@pytest.mark.asyncio
async def test_due_schedule_starts_one_poller(tmp_path):
    harness = Harness(tmp_path)

    await harness.start()
    await harness.start()

    assert len(harness.pollers) == 1
    poller = harness.pollers[0]
    assert poller.target.target_time == RUN_AT
    assert poller.target.stop_on_first_match
    assert poller.target.priority_tags
    schedule = harness.repository.get("s-1")
    assert schedule.status is ScheduleStatus.RUNNING
    assert schedule.monitoring_started
    assert "Monitoring Started" in harness.messages()[0]
    assert harness.scheduler.get_status()["active_sessions"] == 1


@pytest.mark.asyncio
async def test_processable_record_runs_batch_and_completes_schedule(tmp_path):
    harness = Harness(tmp_path)
    await harness.start()
    handlers = harness.pollers[0].handlers

    await handlers.on_found(_record())
    await handlers.on_found(_record())
    await handlers.on_processable(_record())

    assert harness.orchestrator.calls == [("oid-1", ["acc-1", "acc-2"], 2, "s-1")]
    schedule = harness.repository.get("s-1")
    assert schedule.completed
    assert schedule.status is ScheduleStatus.COMPLETED
    assert schedule.last_error is None
    messages = harness.messages()
    assert sum("Exam Found" in message for message in messages) == 1
    assert any("Booking Available" in message for message in messages)
    assert "Schedule completed" in messages[-1]
    assert harness.scheduler.get_status()["active_sessions"] == 0


@pytest.mark.asyncio
async def test_partial_and_stopped_batches_map_to_schedule_status(tmp_path):
    partial = Harness(tmp_path / "partial", orchestrator=StubOrchestrator(result=_batch(1, 1)))
    await partial.start()
    await partial.pollers[0].handlers.on_processable(_record())
    schedule = partial.repository.get("s-1")
    assert schedule.status is ScheduleStatus.PARTIAL
    assert schedule.last_error == "1 of 2 account(s) failed"

    stopped = Harness(tmp_path / "stopped", orchestrator=StubOrchestrator(result=_batch(0, 0, True)))
    await stopped.start()
    await stopped.pollers[0].handlers.on_processable(_record())
    assert stopped.repository.get("s-1").status is ScheduleStatus.STOPPED


@pytest.mark.asyncio
async def test_no_active_accounts_fails_schedule(tmp_path):
    harness = Harness(tmp_path, accounts=[make_account("off", active=False)])
    await harness.start()

    await harness.pollers[0].handlers.on_processable(_record())

    schedule = harness.repository.get("s-1")
    assert schedule.status is ScheduleStatus.FAILED
    assert schedule.last_error == "No active accounts"
    assert harness.orchestrator.calls == []


@pytest.mark.asyncio
async def test_orchestrator_error_fails_schedule_and_notifies(tmp_path):
    harness = Harness(tmp_path, orchestrator=StubOrchestrator(error=RuntimeError("pool gone")))
    await harness.start()

    await harness.pollers[0].handlers.on_processable(_record())

    schedule = harness.repository.get("s-1")
    assert schedule.status is ScheduleStatus.FAILED
    assert schedule.last_error == "Automation failed: pool gone"
    assert "Schedule Error" in harness.messages()[-1]


@pytest.mark.asyncio
async def test_timeout_marks_schedule_failed(tmp_path):
    harness = Harness(tmp_path)
    await harness.start()

    await harness.pollers[0].handlers.on_timeout()

    schedule = harness.repository.get("s-1")
    assert schedule.completed
    assert schedule.last_error == "No exam found within 30 minute monitoring window"
    assert "Schedule Timeout" in harness.messages()[-1]


@pytest.mark.asyncio
async def test_polling_start_failure_leaves_schedule_retryable(tmp_path):
    def failing_factory():
        return StubPoller(fail_with=CaptureExhaustedError("no endpoint"))

    harness = Harness(tmp_path, poller_factory=failing_factory)
    await harness.start()
    await asyncio.sleep(0)

    schedule = harness.repository.get("s-1")
    assert schedule.status is ScheduleStatus.FAILED
    assert not schedule.monitoring_started
    assert schedule.last_error == "Failed to start polling: no endpoint"
    assert harness.scheduler.get_status()["active_sessions"] == 0


@pytest.mark.asyncio
async def test_expired_session_is_cleaned_up(tmp_path):
    harness = Harness(tmp_path)
    await harness.start()

    harness.now = RUN_AT + timedelta(minutes=31)
    await harness.scheduler.cleanup_expired_sessions()

    assert harness.pollers[0].stopped
    schedule = harness.repository.get("s-1")
    assert schedule.completed
    assert schedule.status is ScheduleStatus.FAILED
    assert "Schedule Expired" in harness.messages()[-1]


@pytest.mark.asyncio
async def test_stop_all_monitoring_resets_schedules(tmp_path):
    harness = Harness(tmp_path)
    await harness.start()

    await harness.scheduler.stop_all_monitoring()

    assert harness.pollers[0].destroyed
    assert harness.orchestrator.stop_all_calls == 1
    schedule = harness.repository.get("s-1")
    assert schedule.status is ScheduleStatus.PENDING
    assert not schedule.monitoring_started
    assert "System Shutdown" in harness.messages()[-1]
    assert harness.scheduler.get_status()["active_sessions"] == 0


@pytest.mark.asyncio
async def test_trigger_schedule_starts_monitoring_immediately(tmp_path):
    harness = Harness(tmp_path, run_at=NOW + timedelta(hours=5))
    await harness.start()
    assert harness.pollers == []

    await harness.scheduler.trigger_schedule("s-1")
    await asyncio.sleep(0)

    assert len(harness.pollers) == 1
    with pytest.raises(ValueError):
        await harness.scheduler.trigger_schedule("missing")


@pytest.mark.asyncio
async def test_start_and_stop_loop(tmp_path):
    harness = Harness(tmp_path)
    harness.scheduler.check_interval = 0.01

    harness.scheduler.start()
    assert harness.scheduler.is_running
    await asyncio.sleep(0.03)
    await harness.scheduler.stop()

    assert not harness.scheduler.is_running
    assert len(harness.pollers) == 1
