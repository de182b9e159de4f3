"""
Run bookkeeping: one row per finished sync or reconciliation run.

Rows are written in their own transaction after the run has ended, so a
rolled back run still leaves a trace for operators.
"""

from datetime import datetime, timezone
from typing import List

import structlog
from sqlalchemy import select

from daily_points.core.database import Database
from daily_points.models import ReconciliationRun, RunKind, RunStatus
from daily_points.services.types import (
    Committed,
    ReconcileStats,
    RunResult,
    SyncStats,
)


logger = structlog.get_logger(__name__)


class RunTracker:
    """Persists and lists run outcomes."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = logger.bind(service="run_tracker")

    async def record(
        self,
        kind: RunKind,
        result: RunResult,
        batch_size: int,
        pacing_ms: int,
        triggered_by: str = "cli",
    ) -> ReconciliationRun:
        stats = result.stats
        run = ReconciliationRun(
            kind=kind.value,
            status=RunStatus.COMMITTED.value if isinstance(result, Committed) else RunStatus.ROLLED_BACK.value,
            batch_size=batch_size,
            pacing_ms=pacing_ms,
            triggered_by=triggered_by,
            completed_at=datetime.now(timezone.utc),
        )

        if not isinstance(result, Committed):
            run.failed_stage = result.failed_stage
            run.error_code = result.code
            run.error_message = result.reason

        if stats is not None:
            if stats.started_at:
                run.started_at = stats.started_at
            run.duration_seconds = stats.duration_seconds
            run.total_batches = stats.total_batches

        # A rolled back run applied nothing, so its counters stay at zero
        if isinstance(result, Committed):
            self._copy_counters(run, stats)

        async with self.database.session() as session:
            session.add(run)

        self.logger.info("Run recorded", run_id=run.id, kind=run.kind, status=run.status)
        return run

    @staticmethod
    def _copy_counters(run: ReconciliationRun, stats) -> None:
        if isinstance(stats, ReconcileStats):
            run.accounts_affected = stats.accounts_affected
            run.points_removed = stats.points_removed
            run.points_reapplied = stats.points_reapplied
            run.ledger_rows_purged = stats.ledger_rows_purged
            run.ledger_rows_inserted = stats.ledger_rows_inserted
            run.clamped_accounts = stats.clamped_accounts
        elif isinstance(stats, SyncStats):
            run.transactions_synced = stats.transactions_synced

    async def recent_runs(self, limit: int = 10) -> List[ReconciliationRun]:
        async with self.database.session() as session:
            result = await session.execute(
                select(ReconciliationRun)
                .order_by(ReconciliationRun.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
