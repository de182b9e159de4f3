"""
Daily points ledger reconciliation.

Replaces every ``daily`` contribution in the shared account aggregates with the
freshly staged one inside a single database transaction:

1. remove the current daily sum from each affected account (batched, verified)
2. delete all daily ledger rows
3. add the staged snapshot points back to each account (batched, verified)
4. insert one daily ledger row per staged raw record (batched)
5. check the rebuilt ledger against the staged input, then commit

Any failure rolls the whole transaction back and is reported as a
``RolledBack`` value; only relative deltas are ever applied to totals, so
writers of other categories are never overwritten.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Sequence, Tuple

import structlog
from sqlalchemy import bindparam, case, delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from daily_points.core.exceptions import (
    DailyPointsException,
    DatabaseError,
    DriftDetectedError,
    StagingDataError,
    VerificationMismatchError,
)
from daily_points.models import AccountAggregate, LedgerEntry, PointCategory
from daily_points.schemas.staging import (
    AccountSnapshot,
    DailyContribution,
    contributions_from_records,
)
from daily_points.services.types import (
    Committed,
    ReconcileContext,
    ReconcileStage,
    ReconcileStats,
    RolledBack,
    RunResult,
)
from daily_points.utils.batching import for_each_batch


logger = structlog.get_logger(__name__)

aggregates = AccountAggregate.__table__
ledger = LedgerEntry.__table__

DAILY = PointCategory.DAILY.value

# (total_points before removal, current daily sum)
Backup = Dict[str, Tuple[int, int]]


def _daily_sum():
    """Correlated daily ledger sum for the aggregate row being read or updated."""
    return (
        select(func.coalesce(func.sum(ledger.c.points), 0))
        .where(ledger.c.account == aggregates.c.account, ledger.c.category == DAILY)
        .scalar_subquery()
    )


class LedgerReconciler:
    """Runs one daily points reconciliation against the store."""

    def __init__(self, context: ReconcileContext):
        self.context = context
        self.stats = ReconcileStats()
        self.stage = ReconcileStage.STARTED
        self.stages: List[str] = []
        self.logger = logger.bind(service="ledger_reconciler")

    def _enter(self, stage: ReconcileStage) -> None:
        self.stage = stage
        if stage.value not in self.stages:
            self.stages.append(stage.value)
            self.logger.info("Reconciliation stage reached", stage=stage.value)

    async def run(self) -> RunResult:
        """Execute the run and report its outcome; never leaves partial state behind."""
        self.stats.started_at = datetime.now(timezone.utc)
        self._enter(ReconcileStage.STARTED)

        try:
            snapshots, contributions = self.load_staged()

            async with self.context.database.transaction() as session:
                await self._reconcile(session, snapshots, contributions)

        except DailyPointsException as e:
            return self._rolled_back(e)
        except (SQLAlchemyError, OSError) as e:
            return self._rolled_back(
                DatabaseError(str(e), {"error_type": type(e).__name__})
            )

        self._finish_timing()
        self._enter(ReconcileStage.COMMITTED)
        self.logger.info("Daily points reconciliation committed", **self.stats.as_dict())
        return Committed(stats=self.stats, stages=tuple(self.stages))

    def load_staged(self) -> Tuple[Dict[str, AccountSnapshot], List[DailyContribution]]:
        """
        Read both staged files and cross-check them before touching the store.

        The per-account sum of points recomputed from raw records must equal the
        staged snapshot points, otherwise the aggregate totals could not match
        the ledger after the run.
        """
        snapshots = self.context.store.read_snapshots()
        records = self.context.store.read_tx_records()
        contributions = contributions_from_records(records)

        recomputed: Dict[str, int] = defaultdict(int)
        for contribution in contributions:
            recomputed[contribution.account] += contribution.points

        mismatches = {}
        for account in sorted(set(recomputed) | set(snapshots)):
            staged = snapshots[account].points if account in snapshots else 0
            if recomputed.get(account, 0) != staged:
                mismatches[account] = {"snapshot": staged, "records": recomputed.get(account, 0)}

        if mismatches:
            raise StagingDataError(
                f"Staged snapshot disagrees with raw records for {len(mismatches)} account(s)",
                {"mismatches": dict(list(mismatches.items())[:20])}
            )

        self.stats.snapshot_accounts = len(snapshots)
        self.logger.info(
            "Staged data loaded",
            accounts=len(snapshots),
            records=len(contributions)
        )
        return snapshots, contributions

    async def _reconcile(
        self,
        session: AsyncSession,
        snapshots: Mapping[str, AccountSnapshot],
        contributions: Sequence[DailyContribution],
    ) -> None:
        batch_size = self.context.batch_size
        pacing = self.context.pacing_seconds
        sleep = self.context.sleep

        affected = await self.discover_affected_accounts(session)
        self.stats.accounts_affected = len(affected)
        self.logger.info("Removing daily points from aggregates", accounts=len(affected))

        async def remove(batch: List[str]) -> None:
            await self._remove_batch(session, batch)

        self.stats.total_batches += await for_each_batch(
            affected, batch_size, remove, pacing, sleep, label="remove"
        )

        self.stats.ledger_rows_purged = await self.purge_category(session)
        self._enter(ReconcileStage.CATEGORY_PURGED)

        async def reapply(batch: List[AccountSnapshot]) -> None:
            await self._reapply_batch(session, batch)

        self.stats.total_batches += await for_each_batch(
            list(snapshots.values()), batch_size, reapply, pacing, sleep, label="reapply"
        )
        self._enter(ReconcileStage.CONTRIBUTIONS_REAPPLIED)

        async def insert_rows(batch: List[DailyContribution]) -> None:
            await self.insert_ledger_entries(session, batch)

        self.stats.total_batches += await for_each_batch(
            list(contributions), batch_size, insert_rows, pacing, sleep, label="insert"
        )

        await self.verify_rebuilt_ledger(session, snapshots, len(contributions))
        self._enter(ReconcileStage.REAPPLY_VERIFIED)

    # Removal

    async def discover_affected_accounts(self, session: AsyncSession) -> List[str]:
        """Distinct accounts that currently hold at least one daily ledger entry."""
        result = await session.execute(
            select(ledger.c.account)
            .where(ledger.c.category == DAILY)
            .distinct()
            .order_by(ledger.c.account)
        )
        return list(result.scalars().all())

    async def _remove_batch(self, session: AsyncSession, batch: List[str]) -> None:
        backup = await self.take_backup(session, batch)
        self._enter(ReconcileStage.BACKUP_TAKEN)

        orphans = sorted(set(batch) - set(backup))
        if orphans:
            self.stats.orphan_accounts += len(orphans)
            self.logger.warning(
                "Daily ledger rows without an aggregate row",
                accounts=orphans[:20],
                count=len(orphans)
            )

        self._check_drift(backup)

        updated = await self.remove_contributions(session, batch)
        self._enter(ReconcileStage.CONTRIBUTIONS_REMOVED)

        await self.verify_removal(session, batch, backup, updated)
        self._enter(ReconcileStage.REMOVAL_VERIFIED)

        self.logger.info("Removed daily points for batch", batch_size=len(batch), updated=updated)

    async def take_backup(self, session: AsyncSession, batch: List[str]) -> Backup:
        """Current totals and daily sums of the batch, read inside the transaction."""
        result = await session.execute(
            select(aggregates.c.account, aggregates.c.total_points, _daily_sum().label("daily_sum"))
            .where(aggregates.c.account.in_(batch))
        )
        return {row.account: (int(row.total_points), int(row.daily_sum)) for row in result}

    def _check_drift(self, backup: Backup) -> None:
        """Accounts whose daily sum exceeds their total cannot be reduced exactly."""
        drift = {
            account: daily_sum - total
            for account, (total, daily_sum) in backup.items()
            if daily_sum > total
        }
        if not drift:
            return

        if self.context.settings.strict_removal:
            self.logger.error("Aggregate drift detected", drift=drift)
            raise DriftDetectedError(drift)

        self.stats.clamped_accounts += len(drift)
        self.logger.warning(
            "Clamping aggregates at zero while removing daily points",
            drift=drift
        )

    async def remove_contributions(self, session: AsyncSession, batch: List[str]) -> int:
        """
        Subtract each account's daily sum from its total, floored at zero.

        Only rows that hold points and a positive daily sum are targeted, so every
        updated row is expected to decrease. Returns the driver's row count.
        """
        daily_sum = _daily_sum()
        remaining = aggregates.c.total_points - daily_sum

        result = await session.execute(
            update(aggregates)
            .where(
                aggregates.c.account.in_(batch),
                aggregates.c.total_points > 0,
                daily_sum > 0,
            )
            .values(total_points=case((remaining < 0, 0), else_=remaining))
        )
        return result.rowcount

    async def verify_removal(
        self,
        session: AsyncSession,
        batch: List[str],
        backup: Backup,
        updated: int,
    ) -> None:
        after = await self._read_totals(session, batch)

        changed = [
            account
            for account, (old_total, _) in backup.items()
            if account in after and old_total - after[account] > 0
        ]
        if len(changed) != updated:
            raise VerificationMismatchError(
                "removal_row_count",
                "Removal check failed: updated row count differs from changed rows",
                {"updated": updated, "changed": len(changed), "batch_size": len(batch)}
            )

        wrong = {}
        for account, (old_total, daily_sum) in backup.items():
            expected = max(0, old_total - daily_sum)
            if after.get(account) != expected:
                wrong[account] = {"expected": expected, "actual": after.get(account)}

        if wrong:
            raise VerificationMismatchError(
                "removal_values",
                f"Removal check failed for {len(wrong)} account(s)",
                {"failed": dict(list(wrong.items())[:20])}
            )

        self.stats.points_removed += sum(backup[account][0] - after[account] for account in changed)

    async def purge_category(self, session: AsyncSession) -> int:
        """Delete every daily ledger row; the daily category belongs to this job alone."""
        self.logger.info("Deleting all daily ledger rows")
        result = await session.execute(delete(ledger).where(ledger.c.category == DAILY))
        self.logger.info("Daily ledger rows deleted", rows=result.rowcount)
        return result.rowcount

    # Reapply

    async def _reapply_batch(self, session: AsyncSession, batch: List[AccountSnapshot]) -> None:
        accounts = [snapshot.account for snapshot in batch]
        before = await self._read_totals(session, accounts)

        missing = [account for account in accounts if account not in before]
        if missing:
            await session.execute(
                insert(aggregates),
                [{"account": account, "total_points": 0} for account in missing]
            )
            before.update({account: 0 for account in missing})
            self.stats.aggregates_created += len(missing)
            self.logger.info("Created missing aggregate rows", count=len(missing))

        await self.reapply_contributions(session, batch)
        self._enter(ReconcileStage.CONTRIBUTIONS_REAPPLIED)

        await self.verify_reapply(session, batch, before)

        self.stats.points_reapplied += sum(snapshot.points for snapshot in batch)
        self.logger.info("Updated points for batch", batch_size=len(batch))

    async def reapply_contributions(self, session: AsyncSession, batch: List[AccountSnapshot]) -> None:
        """Add staged points to each total with one set-based update keyed by account."""
        await session.execute(
            update(aggregates)
            .where(aggregates.c.account == bindparam("b_account"))
            .values(total_points=aggregates.c.total_points + bindparam("b_points")),
            [{"b_account": snapshot.account, "b_points": snapshot.points} for snapshot in batch]
        )

    async def verify_reapply(
        self,
        session: AsyncSession,
        batch: List[AccountSnapshot],
        before: Mapping[str, int],
    ) -> None:
        after = await self._read_totals(session, [snapshot.account for snapshot in batch])

        failed = []
        for snapshot in batch:
            expected = before[snapshot.account] + snapshot.points
            actual = after.get(snapshot.account)
            if actual != expected:
                failed.append({"account": snapshot.account, "expected": expected, "actual": actual})

        if failed:
            self.logger.error("Failed updates", failed=failed[:20])
            raise VerificationMismatchError(
                "reapply_values",
                "Points update validation failed",
                {"failed": failed[:20], "count": len(failed)}
            )

    async def insert_ledger_entries(self, session: AsyncSession, batch: List[DailyContribution]) -> None:
        """One daily ledger row per staged raw record."""
        await session.execute(
            insert(ledger),
            [
                {"account": contribution.account, "points": contribution.points, "category": DAILY}
                for contribution in batch
            ]
        )
        self.stats.ledger_rows_inserted += len(batch)
        self.logger.info("Inserted daily ledger rows", batch_size=len(batch))

    async def verify_rebuilt_ledger(
        self,
        session: AsyncSession,
        snapshots: Mapping[str, AccountSnapshot],
        expected_rows: int,
    ) -> None:
        """The rebuilt daily ledger must hold every record and match the staged points."""
        result = await session.execute(
            select(ledger.c.account, func.count(), func.sum(ledger.c.points))
            .where(ledger.c.category == DAILY)
            .group_by(ledger.c.account)
        )
        rows = result.all()

        row_count = sum(int(count) for _, count, _ in rows)
        if row_count != expected_rows:
            raise VerificationMismatchError(
                "ledger_row_count",
                "Daily ledger row count differs from staged records",
                {"expected": expected_rows, "actual": row_count}
            )

        sums = {account: int(total) for account, _, total in rows}
        wrong = {}
        for account in set(sums) | set(snapshots):
            expected = snapshots[account].points if account in snapshots else 0
            if sums.get(account, 0) != expected:
                wrong[account] = {"expected": expected, "actual": sums.get(account, 0)}

        if wrong:
            raise VerificationMismatchError(
                "ledger_sums",
                f"Daily ledger sums differ from snapshot for {len(wrong)} account(s)",
                {"failed": dict(list(wrong.items())[:20])}
            )

    # Helpers

    async def _read_totals(self, session: AsyncSession, accounts: Sequence[str]) -> Dict[str, int]:
        result = await session.execute(
            select(aggregates.c.account, aggregates.c.total_points)
            .where(aggregates.c.account.in_(list(accounts)))
        )
        return {row.account: int(row.total_points) for row in result}

    def _finish_timing(self) -> None:
        if self.stats.started_at:
            elapsed = datetime.now(timezone.utc) - self.stats.started_at
            self.stats.duration_seconds = elapsed.total_seconds()

    def _rolled_back(self, error: DailyPointsException) -> RolledBack:
        failed_stage = self.stage
        self._finish_timing()
        self._enter(ReconcileStage.ROLLED_BACK)

        self.logger.error(
            "Daily points reconciliation rolled back",
            failed_stage=failed_stage.value,
            code=error.code,
            error=error.message,
            details=error.details
        )
        return RolledBack(
            failed_stage=failed_stage.value,
            reason=error.message,
            code=error.code,
            details=error.details,
            stats=self.stats,
            stages=tuple(self.stages),
        )


async def reconcile_daily_points(context: ReconcileContext) -> RunResult:
    """Run one reconciliation with a fresh reconciler."""
    return await LedgerReconciler(context).run()
