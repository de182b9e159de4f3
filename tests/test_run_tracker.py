"""
Tests for run bookkeeping.
"""

from daily_points.cli import _record
from daily_points.models import RunKind, RunStatus
from daily_points.services.ledger_reconciler import LedgerReconciler, reconcile_daily_points
from daily_points.services.run_tracker import RunTracker
from daily_points.services.types import Committed, RolledBack, SyncStats

from .conftest import make_event, seed, stage_events


async def test_records_committed_reconciliation(context, database, store):
    await seed(database, {"0xaaa": 10}, [("0xaaa", 10, "daily")])
    stage_events(store, [make_event("0xaaa", 4, 1)])
    result = await reconcile_daily_points(context)
    tracker = RunTracker(database)

    run = await tracker.record(RunKind.DAILY_POINTS, result, batch_size=250, pacing_ms=3000)

    assert run.id is not None
    assert run.status == RunStatus.COMMITTED.value
    assert run.is_committed
    assert run.points_removed == 10
    assert run.points_reapplied == 4
    assert run.ledger_rows_inserted == 1
    assert run.failed_stage is None


async def test_records_rolled_back_run_and_lists_newest_first(database):
    tracker = RunTracker(database)
    ok = Committed(stats=SyncStats(transactions_synced=3, total_batches=1))
    failed = RolledBack(failed_stage="started", reason="Staged file not found", code="STAGING_DATA_ERROR")

    await tracker.record(RunKind.TRANSACTIONS, ok, batch_size=250, pacing_ms=3000)
    await tracker.record(RunKind.DAILY_POINTS, failed, batch_size=100, pacing_ms=0, triggered_by="test")

    runs = await tracker.recent_runs()

    assert [run.kind for run in runs] == [RunKind.DAILY_POINTS.value, RunKind.TRANSACTIONS.value]
    assert runs[0].status == RunStatus.ROLLED_BACK.value
    assert runs[0].error_code == "STAGING_DATA_ERROR"
    assert runs[0].triggered_by == "test"
    assert runs[1].transactions_synced == 3


async def test_rolled_back_run_keeps_applied_counters_at_zero(context, database, store, monkeypatch):
    await seed(database, {"0xaaa": 10}, [("0xaaa", 10, "daily")])
    stage_events(store, [make_event("0xaaa", 4, 1)])

    async def drops_everything(self, session, batch):
        return None

    monkeypatch.setattr(LedgerReconciler, "insert_ledger_entries", drops_everything)
    result = await reconcile_daily_points(context)
    assert isinstance(result, RolledBack)
    assert result.stats.points_removed == 10

    tracker = RunTracker(database)
    await tracker.record(RunKind.DAILY_POINTS, result, batch_size=250, pacing_ms=3000)
    (run,) = await tracker.recent_runs()

    assert run.status == RunStatus.ROLLED_BACK.value
    assert run.failed_stage == "contributions_reapplied"
    assert run.points_removed == 0
    assert run.points_reapplied == 0
    assert run.ledger_rows_purged == 0
    assert run.accounts_affected == 0
    assert run.total_batches == 3


async def test_context_trigger_is_recorded(context, database):
    context.triggered_by = "scheduler"
    result = Committed(stats=SyncStats(transactions_synced=1, total_batches=1))

    await _record(context, RunKind.TRANSACTIONS, result)

    (run,) = await RunTracker(database).recent_runs()
    assert run.triggered_by == "scheduler"
    assert run.batch_size == 250
    assert run.pacing_ms == 3000


async def test_record_failure_is_logged_not_raised(context, database):
    await database.drop_tables()
    result = Committed(stats=SyncStats(transactions_synced=1, total_batches=1))

    await _record(context, RunKind.TRANSACTIONS, result)
