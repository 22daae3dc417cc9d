import json
from datetime import datetime, timezone

from cafe_cards.domain.scan_history import (
    ScanAction,
    append_scan_entry,
    format_timestamp,
    make_entry,
    parse_scan_history,
    serialize_scan_history,
)


def test_timestamps_use_millisecond_utc_format() -> None:
    moment = datetime(2024, 5, 1, 12, 30, 45, 123456, tzinfo=timezone.utc)
    assert format_timestamp(moment) == "2024-05-01T12:30:45.123Z"
    assert format_timestamp(datetime(2024, 5, 1, 12, 30, 45)) == "2024-05-01T12:30:45.000Z"


def test_empty_or_unreadable_history_starts_fresh() -> None:
    assert parse_scan_history(None) == []
    assert parse_scan_history("") == []
    assert parse_scan_history("{not json") == []
    assert parse_scan_history('{"action": "stamp_added"}') == []


def test_malformed_entries_are_dropped() -> None:
    raw = json.dumps(
        [
            {"timestamp": "2025-01-01T00:00:00.000Z", "action": "stamp_added", "cafeUserId": "cafe", "stampsAdded": 2},
            {"action": "bogus"},
        ]
    )

    entries = parse_scan_history(raw)

    assert len(entries) == 1
    assert entries[0].action is ScanAction.STAMP_ADDED
    assert entries[0].stamps_added == 2


def test_append_keeps_history_newest_last() -> None:
    first = make_entry(ScanAction.STAMP_ADDED, "cafe-1", stamps_added=3)
    second = make_entry(ScanAction.REWARD_REDEEMED, "cafe-1")

    raw = append_scan_entry(None, first)
    raw = append_scan_entry(raw, second)
    decoded = json.loads(raw)

    assert [item["action"] for item in decoded] == ["stamp_added", "reward_redeemed"]
    assert decoded[0]["stampsAdded"] == 3
    assert decoded[0]["cafeUserId"] == "cafe-1"


def test_redemption_entries_omit_stamp_count() -> None:
    entry = make_entry(
        ScanAction.REWARD_REDEEMED,
        "cafe-1",
        moment=datetime(2025, 6, 1, tzinfo=timezone.utc),
    )

    decoded = json.loads(serialize_scan_history([entry]))

    assert decoded == [
        {"timestamp": "2025-06-01T00:00:00.000Z", "action": "reward_redeemed", "cafeUserId": "cafe-1"}
    ]
