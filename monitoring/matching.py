"""Parsing, time-window matching, and priority ranking for exam finder records."""

from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, List, Mapping, Optional, Sequence

import pytz

from automation.shared.booking_contracts import ExamRecord

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an exam finder timestamp.

    Accepts ISO-8601 strings (with ``Z`` or an explicit offset) and epoch
    milliseconds. Returns ``None`` for anything else.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


def parse_record(entry: Mapping[str, Any]) -> ExamRecord:
    """Build an :class:`ExamRecord` from one raw ``DATA`` entry."""

    oid = entry.get("oid")
    return ExamRecord(
        record_id=str(oid) if oid else None,
        window_start=parse_timestamp(entry.get("bookFromStamp")),
        location=str(entry.get("locationName") or ""),
        event_name=str(entry.get("eventName") or ""),
        window_end=parse_timestamp(entry.get("bookToStamp")),
        raw=dict(entry),
    )


def parse_records(payload: Any) -> Optional[List[ExamRecord]]:
    """Return records from an endpoint payload, or ``None`` if the shape is wrong."""

    if not isinstance(payload, Mapping):
        return None
    data = payload.get("DATA")
    if not isinstance(data, list):
        return None

    records: List[ExamRecord] = []
    for entry in data:
        if not isinstance(entry, Mapping):
            logger.debug("Skipping non-object DATA entry: %r", entry)
            continue
        records.append(parse_record(entry))
    return records


def resolve_timezone(tz: Optional[tzinfo | str]) -> tzinfo:
    if tz is None:
        return pytz.UTC
    if isinstance(tz, str):
        return pytz.timezone(tz)
    return tz


def localize(moment: datetime, tz: tzinfo) -> datetime:
    """Express ``moment`` in ``tz``; naive values are taken to already be in ``tz``."""

    if moment.tzinfo is None:
        if hasattr(tz, "localize"):
            return tz.localize(moment)
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def matches_window(record: ExamRecord, target_time: datetime, tz: tzinfo) -> bool:
    """True when the record's window opens on the target date at the target minute."""

    if record.window_start is None:
        return False
    opens = localize(record.window_start, tz)
    target = localize(target_time, tz)
    return (
        opens.date() == target.date()
        and opens.hour == target.hour
        and opens.minute == target.minute
    )


def filter_matching(
    records: Sequence[ExamRecord], target_time: datetime, tz: tzinfo
) -> List[ExamRecord]:
    return [record for record in records if matches_window(record, target_time, tz)]


def priority_index(location: str, priority_tags: Sequence[str]) -> int:
    """Index of the first tag contained in ``location``; ``len(tags)`` when none match."""

    lowered = (location or "").lower()
    for index, tag in enumerate(priority_tags):
        if tag and tag.lower() in lowered:
            return index
    return len(priority_tags)


def prioritize(records: Sequence[ExamRecord], priority_tags: Sequence[str]) -> List[ExamRecord]:
    """Order records by tag rank; unranked records keep their relative order last."""

    if not priority_tags:
        return list(records)
    return sorted(records, key=lambda record: priority_index(record.location, priority_tags))
