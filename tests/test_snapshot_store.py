"""
Tests for the JSON staging store.
"""

import json

import pytest

from daily_points.core.exceptions import StagingDataError
from daily_points.schemas.staging import AccountSnapshot, RawTxRecord
from daily_points.services import snapshot_store
from daily_points.services.event_folder import build_tx_records, fold
from daily_points.services.snapshot_store import SnapshotStore

from .conftest import make_event


def test_snapshots_round_trip(store):
    snapshots = {
        "0xaaa": AccountSnapshot(account="0xaaa", points=35, max_streak=40, event_count=2),
        "0xbbb": AccountSnapshot(account="0xbbb", points=0, max_streak=0, event_count=0),
        "0xccc": AccountSnapshot(account="0xccc", points=2**62, max_streak=2**61, event_count=7),
    }

    store.write_snapshots(snapshots)

    assert store.read_snapshots() == snapshots


def test_tx_records_round_trip(store):
    records = build_tx_records([make_event("0xaaa", 5, 2), make_event("0xbbb", 45, 1)])

    store.write_tx_records(records)

    assert store.read_tx_records() == records


def test_write_creates_nested_directories_and_tolerates_existing(tmp_path):
    target = tmp_path / "a" / "b" / "data.json"

    snapshot_store.write(target, {"x": 1})
    snapshot_store.write(target, {"x": 2})

    assert snapshot_store.read(target) == {"x": 2}


def test_write_fully_replaces_previous_content(store):
    store.write_snapshots(fold([make_event("0xaaa", 1, 1), make_event("0xbbb", 2, 2)]))
    store.write_snapshots(fold([make_event("0xccc", 3, 3)]))

    assert list(store.read_snapshots()) == ["0xccc"]
    leftovers = [p.name for p in store.snapshot_path.parent.iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []


def test_missing_file_is_staging_error(tmp_path):
    store = SnapshotStore(tmp_path / "nope.json", tmp_path / "nope-tx.json")
    with pytest.raises(StagingDataError):
        store.read_snapshots()


def test_invalid_json_is_staging_error(store):
    store.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
    store.snapshot_path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StagingDataError):
        store.read_snapshots()


@pytest.mark.parametrize("entry", [
    {"account": "0xaaa", "points": 1, "max_streak": 1},
    {"account": "0xaaa", "points": 1.5, "max_streak": 1, "event_count": 1},
    {"account": "0xaaa", "points": "1", "max_streak": 1, "event_count": 1},
    {"account": "0xaaa", "points": -1, "max_streak": 1, "event_count": 1},
    {"account": "0xaaa", "points": 1, "max_streak": 1, "event_count": 1, "extra": True},
])
def test_snapshot_schema_violations_fail_fast(store, entry):
    snapshot_store.write(store.snapshot_path, {"0xaaa": entry})
    with pytest.raises(StagingDataError):
        store.read_snapshots()


def test_snapshot_key_must_match_lowercased_account(store):
    snapshot_store.write(store.snapshot_path, {
        "0xAAA": {"account": "0xAAA", "points": 1, "max_streak": 1, "event_count": 1},
    })
    with pytest.raises(StagingDataError):
        store.read_snapshots()


def test_tx_record_missing_field_fails_fast(store):
    record = build_tx_records([make_event("0xaaa", 5, 2)])[0].model_dump()
    del record["args"]
    store.transactions_path.parent.mkdir(parents=True, exist_ok=True)
    store.transactions_path.write_text(json.dumps([record]), encoding="utf-8")

    with pytest.raises(StagingDataError):
        store.read_tx_records()


@pytest.mark.parametrize("created_at", ["yesterday", "", "2023-13-01T00:00:00Z"])
def test_tx_record_bad_timestamp_fails_on_read(store, created_at):
    record = build_tx_records([make_event("0xaaa", 5, 2)])[0].model_dump()
    record["created_at"] = created_at
    snapshot_store.write(store.transactions_path, [record])

    with pytest.raises(StagingDataError) as exc:
        store.read_tx_records()

    assert exc.value.details["errors"][0]["loc"] == (0, "created_at")


def test_tx_record_timestamp_without_zone_is_utc(store):
    record = build_tx_records([make_event("0xaaa", 5, 2)])[0].model_dump()
    record["created_at"] = "2023-11-14T22:13:22"
    snapshot_store.write(store.transactions_path, [record])

    (parsed,) = store.read_tx_records()

    assert parsed.created_at_datetime.utcoffset().total_seconds() == 0


def test_staged_snapshot_file_is_keyed_by_account(store):
    store.write_snapshots(fold([make_event("0xAbC", 45, 1)]))

    raw = json.loads(store.snapshot_path.read_text(encoding="utf-8"))

    assert raw == {"0xabc": {"account": "0xabc", "points": 30, "max_streak": 45, "event_count": 1}}


@pytest.mark.parametrize("args,points", [
    (["0xAAA", 12, 1700000000], 12),
    (["0xAAA", "44"], 30),
    (["0xAAA", "0x1e"], 30),
    (["0xAAA", {"type": "BigNumber", "hex": "0x07"}], 7),
    ({"caller": "0xAAA", "streak": 3}, 3),
])
def test_contribution_parses_arg_shapes(args, points):
    record = RawTxRecord(
        hash="0x1", event_name="DailyCheck", block_number=1,
        args=json.dumps(args), created_at="2024-01-01T00:00:00.000Z",
    )

    contribution = record.contribution()

    assert contribution.account == "0xaaa"
    assert contribution.points == points


@pytest.mark.parametrize("args", [
    "not json",
    json.dumps(["0xaaa"]),
    json.dumps([None, 3]),
    json.dumps(["0xaaa", -3]),
    json.dumps(["0xaaa", "abc"]),
    json.dumps(["0xaaa", True]),
    json.dumps(42),
])
def test_malformed_args_are_rejected(args):
    record = RawTxRecord(
        hash="0x1", event_name="DailyCheck", block_number=1,
        args=args, created_at="2024-01-01T00:00:00Z",
    )
    with pytest.raises(StagingDataError):
        record.contribution()
