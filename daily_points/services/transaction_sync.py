"""
Reloads the raw transaction audit table from the staged records.
"""

from datetime import datetime, timezone
from typing import List

import structlog
from sqlalchemy import delete, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from daily_points.core.exceptions import DailyPointsException, DatabaseError
from daily_points.models import Transaction
from daily_points.schemas.staging import RawTxRecord
from daily_points.services.types import (
    Committed,
    ReconcileContext,
    RolledBack,
    RunResult,
    SyncStage,
    SyncStats,
)
from daily_points.utils.batching import for_each_batch


logger = structlog.get_logger(__name__)

transactions = Transaction.__table__


class TransactionSync:
    """Replaces the whole transactions table with the staged raw records in one transaction."""

    def __init__(self, context: ReconcileContext):
        self.context = context
        self.stats = SyncStats()
        self.stage = SyncStage.STARTED
        self.stages: List[str] = [SyncStage.STARTED.value]
        self.logger = logger.bind(service="transaction_sync")

    def _enter(self, stage: SyncStage) -> None:
        self.stage = stage
        self.stages.append(stage.value)

    async def run(self) -> RunResult:
        self.stats.started_at = datetime.now(timezone.utc)

        try:
            records = self.context.store.read_tx_records()
            self.stats.records_staged = len(records)
            self.logger.info("Total transactions count", count=len(records))

            async with self.context.database.transaction() as session:
                await self._sync(session, records)

        except DailyPointsException as e:
            return self._rolled_back(e)
        except (SQLAlchemyError, OSError) as e:
            return self._rolled_back(DatabaseError(str(e), {"error_type": type(e).__name__}))

        self._finish_timing()
        self._enter(SyncStage.COMMITTED)
        self.logger.info("Transactions synced", **self.stats.as_dict())
        return Committed(stats=self.stats, stages=tuple(self.stages))

    async def _sync(self, session: AsyncSession, records: List[RawTxRecord]) -> None:
        self.logger.info("Clearing transactions table")
        result = await session.execute(delete(transactions))
        self.stats.rows_cleared = result.rowcount
        self._enter(SyncStage.TABLE_CLEARED)

        async def insert_batch(batch: List[RawTxRecord]) -> None:
            await session.execute(
                insert(transactions),
                [
                    {
                        "hash": record.hash,
                        "event_name": record.event_name,
                        "block_number": record.block_number,
                        "args": record.args,
                        "created_at": record.created_at_datetime,
                    }
                    for record in batch
                ]
            )
            self.stats.transactions_synced += len(batch)
            self.logger.info("Inserted transactions batch", batch_size=len(batch))

        self.stats.total_batches = await for_each_batch(
            records,
            self.context.batch_size,
            insert_batch,
            self.context.pacing_seconds,
            self.context.sleep,
            label="transactions",
        )
        self._enter(SyncStage.RECORDS_INSERTED)

    def _finish_timing(self) -> None:
        if self.stats.started_at:
            elapsed = datetime.now(timezone.utc) - self.stats.started_at
            self.stats.duration_seconds = elapsed.total_seconds()

    def _rolled_back(self, error: DailyPointsException) -> RolledBack:
        failed_stage = self.stage
        self._finish_timing()
        self._enter(SyncStage.ROLLED_BACK)
        self.logger.error(
            "Transaction sync rolled back",
            failed_stage=failed_stage.value,
            code=error.code,
            error=error.message
        )
        return RolledBack(
            failed_stage=failed_stage.value,
            reason=error.message,
            code=error.code,
            details=error.details,
            stats=self.stats,
            stages=tuple(self.stages),
        )


async def sync_transactions(context: ReconcileContext) -> RunResult:
    """Run one transaction table sync."""
    return await TransactionSync(context).run()
