"""Schedules, booking batches, and the watcher that connects them."""

from .orchestrator import BookingOrchestrator
from .repository import Schedule, ScheduleRepository, ScheduleStatus
from .scheduler import ExamScheduler

__all__ = [
    "BookingOrchestrator",
    "ExamScheduler",
    "Schedule",
    "ScheduleRepository",
    "ScheduleStatus",
]
