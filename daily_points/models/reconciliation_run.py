"""
Run tracking models for auditing every sync and reconciliation attempt.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, Float, Index

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunKind(str, Enum):
    """Which job produced the run."""
    TRANSACTIONS = "transactions"
    DAILY_POINTS = "daily_points"


class RunStatus(str, Enum):
    """Final outcome of a run."""
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class ReconciliationRun(Base):
    """
    One row per finished run. Written after the run's own transaction has ended,
    so rolled back runs are recorded as well.
    """
    __tablename__ = "reconciliation_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    kind = Column(String(20), nullable=False, comment="Job that produced this run")
    status = Column(String(20), nullable=False, comment="committed or rolled_back")

    # Failure details
    failed_stage = Column(String(40), nullable=True, comment="Stage the run was in when it failed")
    error_code = Column(String(40), nullable=True, comment="Error code of the failure")
    error_message = Column(Text, nullable=True, comment="Error message of the failure")

    # Statistics
    accounts_affected = Column(Integer, nullable=False, default=0, comment="Accounts whose daily points were removed")
    points_removed = Column(BigInteger, nullable=False, default=0, comment="Daily points removed from aggregates")
    points_reapplied = Column(BigInteger, nullable=False, default=0, comment="Daily points added back to aggregates")
    ledger_rows_purged = Column(Integer, nullable=False, default=0, comment="Daily ledger rows deleted")
    ledger_rows_inserted = Column(Integer, nullable=False, default=0, comment="Daily ledger rows inserted")
    transactions_synced = Column(Integer, nullable=False, default=0, comment="Raw transactions written")
    clamped_accounts = Column(Integer, nullable=False, default=0, comment="Accounts floored at zero during removal")

    # Processing details
    batch_size = Column(Integer, nullable=False, default=250, comment="Batch size used")
    pacing_ms = Column(Integer, nullable=False, default=3000, comment="Pause between batches in milliseconds")
    total_batches = Column(Integer, nullable=False, default=0, comment="Batches executed")
    duration_seconds = Column(Float, nullable=True, comment="Wall time of the run")

    triggered_by = Column(String(50), nullable=False, default="cli", comment="What triggered this run")

    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<ReconciliationRun(id={self.id}, kind={self.kind}, status={self.status})>"

    @property
    def is_committed(self) -> bool:
        return self.status == RunStatus.COMMITTED.value


Index('idx_reconciliation_runs_kind_started', ReconciliationRun.kind, ReconciliationRun.started_at)
