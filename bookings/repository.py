"""JSON-file persistence for monitoring schedules."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import pytz


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    STOPPED = "stopped"


def _parse_instant(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = pytz.UTC.localize(moment)
    return moment


def _format_instant(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Schedule:
    """When to start watching for a booking window, and how that went."""

    schedule_id: str
    name: str
    run_at: datetime
    created_by: str
    priority_tags: Tuple[str, ...] = field(default_factory=tuple)
    status: ScheduleStatus = ScheduleStatus.PENDING
    monitoring_started: bool = False
    completed: bool = False
    last_error: Optional[str] = None
    last_run: Optional[datetime] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Schedule":
        return cls(
            schedule_id=str(payload["id"]),
            name=payload.get("name", ""),
            run_at=_parse_instant(payload["run_at"]),
            created_by=str(payload.get("created_by", "")),
            priority_tags=tuple(payload.get("priority_tags") or ()),
            status=ScheduleStatus(payload.get("status", ScheduleStatus.PENDING.value)),
            monitoring_started=bool(payload.get("monitoring_started", False)),
            completed=bool(payload.get("completed", False)),
            last_error=payload.get("last_error"),
            last_run=_parse_instant(payload.get("last_run")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.schedule_id,
            "name": self.name,
            "run_at": _format_instant(self.run_at),
            "created_by": self.created_by,
            "priority_tags": list(self.priority_tags),
            "status": self.status.value,
            "monitoring_started": self.monitoring_started,
            "completed": self.completed,
            "last_error": self.last_error,
            "last_run": _format_instant(self.last_run),
        }


class ScheduleRepository:
    """Read/write schedules to a JSON backing file."""

    def __init__(self, file_path: str, *, logger: Optional[logging.Logger] = None) -> None:
        self._path = Path(file_path)
        self._logger = logger or logging.getLogger('ScheduleRepository')

    # ------------------------------------------------------------------
    # Raw storage
    # ------------------------------------------------------------------
    def load(self) -> List[Schedule]:
        """Load schedules from disk, returning an empty list on failure."""

        try:
            if not self._path.exists():
                self._logger.debug("Schedule file %s does not exist; starting empty", self._path)
                return []
            with self._path.open('r', encoding='utf-8') as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            self._logger.error("Failed to load schedules from %s: %s", self._path, exc)
            return []

        if not isinstance(payload, list):
            self._logger.warning(
                "Invalid schedule format in %s; expected list, received %s",
                self._path,
                type(payload).__name__,
            )
            return []

        schedules: List[Schedule] = []
        for entry in payload:
            try:
                schedules.append(Schedule.from_dict(entry))
            except (KeyError, TypeError, ValueError) as exc:
                self._logger.warning("Skipping malformed schedule %r: %s", entry, exc)
        return schedules

    def save(self, schedules: Iterable[Schedule]) -> None:
        """Persist schedules to disk, ensuring parent directories exist."""

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open('w', encoding='utf-8') as handle:
                json.dump([s.to_dict() for s in schedules], handle, indent=2, ensure_ascii=False)
        except OSError as exc:
            self._logger.error("Failed to save schedules to %s: %s", self._path, exc)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, schedule_id: str) -> Optional[Schedule]:
        for schedule in self.load():
            if schedule.schedule_id == schedule_id:
                return schedule
        return None

    def add(self, schedule: Schedule) -> Schedule:
        schedules = [s for s in self.load() if s.schedule_id != schedule.schedule_id]
        schedules.append(schedule)
        self.save(schedules)
        return schedule

    def find_due_for_monitoring(
        self, now: datetime, lookahead: Union[timedelta, float]
    ) -> List[Schedule]:
        """Schedules whose run time falls in ``[now, now + lookahead]`` and are not yet picked up."""

        if not isinstance(lookahead, timedelta):
            lookahead = timedelta(seconds=lookahead)
        now = _parse_instant(now)
        window_end = now + lookahead
        return [
            schedule
            for schedule in self.load()
            if now <= schedule.run_at <= window_end
            and not schedule.completed
            and schedule.status is not ScheduleStatus.RUNNING
            and not schedule.monitoring_started
        ]

    # ------------------------------------------------------------------
    # Lifecycle updates
    # ------------------------------------------------------------------
    def mark_monitoring_started(self, schedule_id: str) -> Optional[Schedule]:
        return self._update(
            schedule_id,
            status=ScheduleStatus.RUNNING,
            monitoring_started=True,
            last_error=None,
        )

    def mark_completed(
        self,
        schedule_id: str,
        status: Union[ScheduleStatus, str],
        error: Optional[str] = None,
    ) -> Optional[Schedule]:
        return self._update(
            schedule_id,
            status=ScheduleStatus(status),
            completed=True,
            last_error=error,
            last_run=datetime.now(pytz.UTC),
        )

    def mark_failed(self, schedule_id: str, error: str) -> Optional[Schedule]:
        """Record a failure that leaves the schedule eligible for another pickup."""

        return self._update(
            schedule_id,
            status=ScheduleStatus.FAILED,
            monitoring_started=False,
            last_error=error,
            last_run=datetime.now(pytz.UTC),
        )

    def reset_for_trigger(self, schedule_id: str) -> Optional[Schedule]:
        return self._update(
            schedule_id,
            status=ScheduleStatus.PENDING,
            monitoring_started=False,
            last_error=None,
        )

    def reset_interrupted(self, reason: str) -> int:
        """Return in-flight schedules to pending so a restart picks them up again."""

        schedules = self.load()
        count = 0
        updated: List[Schedule] = []
        for schedule in schedules:
            if schedule.monitoring_started and not schedule.completed:
                schedule = replace(
                    schedule,
                    status=ScheduleStatus.PENDING,
                    monitoring_started=False,
                    last_error=reason,
                )
                count += 1
            updated.append(schedule)
        if count:
            self.save(updated)
            self._logger.info("Reset %s interrupted schedule(s) to pending", count)
        return count

    def _update(self, schedule_id: str, **changes: Any) -> Optional[Schedule]:
        schedules = self.load()
        for index, schedule in enumerate(schedules):
            if schedule.schedule_id == schedule_id:
                schedules[index] = replace(schedule, **changes)
                self.save(schedules)
                return schedules[index]
        self._logger.warning("Schedule %s not found", schedule_id)
        return None
