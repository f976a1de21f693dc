from datetime import datetime, timezone

import pytz

from automation.shared.booking_contracts import ExamRecord
from monitoring.matching import (
    filter_matching,
    matches_window,
    parse_records,
    parse_timestamp,
    prioritize,
    priority_index,
    resolve_timezone,
)

KOLKATA = pytz.timezone("Asia/Kolkata")


def _record(oid, location, start):
    return ExamRecord(record_id=oid, window_start=start, location=location)


def test_parse_timestamp_accepts_iso_and_epoch_millis():
    iso = parse_timestamp("2025-03-10T04:30:00Z")
    assert iso == datetime(2025, 3, 10, 4, 30, tzinfo=timezone.utc)

    epoch = parse_timestamp(1741581000000)
    assert epoch == datetime(2025, 3, 10, 4, 30, tzinfo=timezone.utc)

    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp(True) is None


def test_parse_records_rejects_unexpected_shapes():
    assert parse_records([]) is None
    assert parse_records({"DATA": "nope"}) is None
    assert parse_records({"data": []}) is None
    assert parse_records({"DATA": []}) == []


def test_parse_records_builds_records_and_skips_non_objects():
    payload = {
        "DATA": [
            {
                "oid": "abc123",
                "bookFromStamp": "2025-03-10T04:30:00Z",
                "locationName": "Goethe-Institut Chennai",
                "eventName": "B2 Exam",
                "extra": 1,
            },
            "garbage",
            {"oid": None, "bookFromStamp": None},
        ]
    }

    records = parse_records(payload)

    assert len(records) == 2
    first, second = records
    assert first.record_id == "abc123"
    assert first.location == "Goethe-Institut Chennai"
    assert first.raw["extra"] == 1
    assert first.is_processable
    assert second.record_id is None
    assert not second.is_processable


def test_matches_window_compares_date_hour_and_minute_in_timezone():
    target = KOLKATA.localize(datetime(2025, 3, 10, 10, 0))
    # 04:30 UTC is 10:00 in Kolkata
    same_minute = _record("a", "Chennai", datetime(2025, 3, 10, 4, 30, 45, tzinfo=timezone.utc))
    next_minute = _record("b", "Chennai", datetime(2025, 3, 10, 4, 31, tzinfo=timezone.utc))
    next_day = _record("c", "Chennai", datetime(2025, 3, 11, 4, 30, tzinfo=timezone.utc))
    unknown = _record("d", "Chennai", None)

    assert matches_window(same_minute, target, KOLKATA)
    assert not matches_window(next_minute, target, KOLKATA)
    assert not matches_window(next_day, target, KOLKATA)
    assert not matches_window(unknown, target, KOLKATA)


def test_naive_target_is_interpreted_in_configured_timezone():
    record = _record("a", "Chennai", datetime(2025, 3, 10, 4, 30, tzinfo=timezone.utc))

    assert matches_window(record, datetime(2025, 3, 10, 10, 0), KOLKATA)
    assert not matches_window(record, datetime(2025, 3, 10, 10, 0), pytz.UTC)


def test_priority_index_uses_first_contained_tag():
    tags = ("chennai", "bengal", "bangalore")

    assert priority_index("Goethe-Institut CHENNAI", tags) == 0
    assert priority_index("Bangalore centre", tags) == 2
    assert priority_index("Mumbai", tags) == 3
    assert priority_index("", tags) == 3


def test_prioritize_orders_by_tag_and_keeps_unranked_order():
    records = [
        _record("1", "Mumbai", None),
        _record("2", "Bangalore", None),
        _record("3", "Delhi", None),
        _record("4", "Chennai", None),
    ]

    ordered = prioritize(records, ("chennai", "bengal", "bangalore"))

    assert [record.record_id for record in ordered] == ["4", "2", "1", "3"]
    assert prioritize(records, ()) == records


def test_filter_matching_then_prioritize_picks_priority_location_first():
    target = KOLKATA.localize(datetime(2025, 3, 10, 10, 0))
    opens = datetime(2025, 3, 10, 4, 30, tzinfo=timezone.utc)
    records = [
        _record("mumbai", "Mumbai", opens),
        _record("chennai", "Chennai", opens),
        _record("late", "Chennai", datetime(2025, 3, 10, 5, 30, tzinfo=timezone.utc)),
    ]

    matching = filter_matching(records, target, KOLKATA)
    ranked = prioritize(matching, ("chennai",))

    assert [record.record_id for record in ranked] == ["chennai", "mumbai"]


def test_resolve_timezone_defaults_to_utc():
    assert resolve_timezone(None) is pytz.UTC
    assert resolve_timezone("Asia/Kolkata").zone == "Asia/Kolkata"
    assert resolve_timezone(KOLKATA) is KOLKATA
