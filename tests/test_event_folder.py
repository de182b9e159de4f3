"""
Tests for folding events into account snapshots.
"""

import itertools

import pytest

from daily_points.core.exceptions import StagingDataError
from daily_points.schemas.staging import AccountSnapshot, points_for_streak
from daily_points.services.event_folder import build_tx_records, fold, parse_events

from .conftest import make_event


@pytest.mark.parametrize("streak,points", [(0, 0), (5, 5), (29, 29), (30, 30), (31, 30), (45, 30), (10_000, 30)])
def test_points_are_capped_at_thirty(streak, points):
    assert points_for_streak(streak) == points


def test_fold_accumulates_per_account():
    events = [
        make_event("0xAAA", 10, 3),
        make_event("0xaaa", 40, 2),
        make_event("0xBBB", 1, 1),
    ]

    result = fold(events)

    assert result == {
        "0xaaa": AccountSnapshot(account="0xaaa", points=40, max_streak=40, event_count=2),
        "0xbbb": AccountSnapshot(account="0xbbb", points=1, max_streak=1, event_count=1),
    }


def test_fold_is_order_independent():
    events = [
        make_event("0xaaa", 3, 1),
        make_event("0xbbb", 31, 2),
        make_event("0xaaa", 45, 3),
        make_event("0xccc", 0, 4),
        make_event("0xbbb", 7, 5),
    ]
    expected = fold(events)

    for permutation in itertools.permutations(events):
        assert fold(permutation) == expected


def test_fold_result_is_sorted_by_account():
    events = [make_event("0xccc", 1, 1), make_event("0xaaa", 1, 2), make_event("0xbbb", 1, 3)]
    assert list(fold(events)) == ["0xaaa", "0xbbb", "0xccc"]


def test_fold_of_nothing_is_empty():
    assert fold([]) == {}


def test_zero_streak_event_counts_without_points():
    result = fold([make_event("0xaaa", 0, 1)])
    assert result["0xaaa"].points == 0
    assert result["0xaaa"].event_count == 1


def test_parse_events_rejects_whole_run_on_missing_field():
    rows = [
        {"account": "0xaaa", "streak_length": 1, "block_ordinal": 1, "tx_hash": "0x1", "timestamp": 1},
        {"account": "0xbbb", "block_ordinal": 2, "tx_hash": "0x2", "timestamp": 2},
    ]

    with pytest.raises(StagingDataError) as exc:
        parse_events(rows)

    assert exc.value.details["index"] == 1


def test_parse_events_rejects_negative_streak():
    rows = [{"account": "0xaaa", "streak_length": -1, "block_ordinal": 1, "tx_hash": "0x1", "timestamp": 1}]
    with pytest.raises(StagingDataError):
        parse_events(rows)


def test_tx_records_keep_delivery_order_and_embed_args():
    events = [make_event("0xAAA", 12, 9, tx_hash="0xhash9"), make_event("0xbbb", 50, 4)]

    records = build_tx_records(events)

    assert [r.block_number for r in records] == [9, 4]
    assert records[0].hash == "0xhash9"
    assert records[0].event_name == "DailyCheck"
    assert records[0].created_at.endswith("Z")

    contribution = records[0].contribution()
    assert contribution.account == "0xaaa"
    assert contribution.points == 12
    assert records[1].contribution().points == 30
