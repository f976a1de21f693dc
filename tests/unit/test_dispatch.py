import asyncio

import pytest

from bookings.dispatch import DispatchJob, dispatch_bounded


def _jobs(count):
    return [DispatchJob(key=str(i), item=i, index=i, total=count) for i in range(1, count + 1)]


@pytest.mark.asyncio
async def test_dispatch_respects_limit_and_admits_on_completion():
    running = 0
    peak = 0
    started = []

    async def run_job(job):
        nonlocal running, peak
        started.append(job.key)
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.05 if job.item == 1 else 0.01)
        running -= 1
        return job.item * 10

    outcomes = await dispatch_bounded(_jobs(4), run_job=run_job, limit=2)

    assert peak == 2
    assert sorted(outcome.result for outcome in outcomes) == [10, 20, 30, 40]
    # Job 1 is slow, so jobs 3 and 4 finish before it.
    assert [outcome.job.key for outcome in outcomes][-1] == "1"


@pytest.mark.asyncio
async def test_job_errors_are_captured_not_raised():
    async def run_job(job):
        if job.item == 2:
            raise RuntimeError("boom")
        return job.item

    settled = []
    outcomes = await dispatch_bounded(
        _jobs(3), run_job=run_job, limit=3, on_settled=settled.append
    )

    failed = [outcome for outcome in outcomes if not outcome.ok]
    assert len(failed) == 1
    assert str(failed[0].error) == "boom"
    assert len(settled) == 3


@pytest.mark.asyncio
async def test_stop_drops_queued_jobs_but_drains_in_flight():
    stop = {"flag": False}
    finished = []

    async def run_job(job):
        await asyncio.sleep(0.01)
        stop["flag"] = True
        finished.append(job.key)

    outcomes = await dispatch_bounded(
        _jobs(5), run_job=run_job, limit=2, should_stop=lambda: stop["flag"]
    )

    assert sorted(finished) == ["1", "2"]
    assert len(outcomes) == 2


@pytest.mark.asyncio
async def test_cancelling_dispatch_cancels_in_flight_jobs():
    cancelled = []

    async def run_job(job):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(job.key)
            raise

    task = asyncio.create_task(dispatch_bounded(_jobs(3), run_job=run_job, limit=2))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert sorted(cancelled) == ["1", "2"]


@pytest.mark.asyncio
async def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        await dispatch_bounded(_jobs(1), run_job=lambda job: asyncio.sleep(0), limit=0)
