"""Completion-ordered, bounded-concurrency dispatch of per-account jobs."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")


@dataclass
class DispatchJob(Generic[T]):
    """One queued unit of work and its position in the batch."""

    key: str
    item: T
    index: int
    total: int


@dataclass
class JobOutcome(Generic[T]):
    job: DispatchJob[T]
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def dispatch_bounded(
    jobs: Sequence[DispatchJob[T]],
    *,
    run_job: Callable[[DispatchJob[T]], Awaitable[Any]],
    limit: int,
    should_stop: Callable[[], bool] = lambda: False,
    on_settled: Optional[Callable[[JobOutcome[T]], None]] = None,
    logger: Optional[logging.Logger] = None,
) -> List[JobOutcome[T]]:
    """Run ``jobs`` with at most ``limit`` in flight and return their outcomes.

    A new job is admitted as soon as any running one settles. Once
    ``should_stop()`` turns true, queued jobs are dropped and only in-flight
    jobs are awaited. Job exceptions are captured in the outcome and never
    propagate. If the dispatcher itself is cancelled, in-flight jobs are
    cancelled and awaited before the cancellation is re-raised.
    """

    if limit < 1:
        raise ValueError("limit must be at least 1")

    queue: Deque[DispatchJob[T]] = deque(jobs)
    in_flight: Dict[asyncio.Task, DispatchJob[T]] = {}
    outcomes: List[JobOutcome[T]] = []

    try:
        while queue or in_flight:
            if queue and should_stop():
                if logger:
                    logger.warning("Stop requested - %s queued job(s) will not start", len(queue))
                queue.clear()

            while queue and len(in_flight) < limit:
                job = queue.popleft()
                task = asyncio.create_task(run_job(job), name=f"job-{job.key}")
                in_flight[task] = job

            if not in_flight:
                break

            done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                job = in_flight.pop(task)
                try:
                    outcome = JobOutcome(job=job, result=task.result())
                except asyncio.CancelledError as exc:
                    outcome = JobOutcome(job=job, error=exc)
                except Exception as exc:
                    outcome = JobOutcome(job=job, error=exc)
                outcomes.append(outcome)
                if on_settled is not None:
                    on_settled(outcome)
    except asyncio.CancelledError:
        for task in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        raise

    return outcomes
