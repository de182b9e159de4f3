"""
Types shared by the sync and reconciliation services.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from daily_points.core.config import Settings
from daily_points.core.database import Database
from daily_points.services.snapshot_store import SnapshotStore


class ReconcileStage(str, Enum):
    """States a daily points reconciliation run moves through."""
    STARTED = "started"
    BACKUP_TAKEN = "backup_taken"
    CONTRIBUTIONS_REMOVED = "contributions_removed"
    REMOVAL_VERIFIED = "removal_verified"
    CATEGORY_PURGED = "category_purged"
    CONTRIBUTIONS_REAPPLIED = "contributions_reapplied"
    REAPPLY_VERIFIED = "reapply_verified"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class SyncStage(str, Enum):
    """States a transaction table sync moves through."""
    STARTED = "started"
    TABLE_CLEARED = "table_cleared"
    RECORDS_INSERTED = "records_inserted"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class ReconcileStats:
    """Counters collected during one reconciliation run."""
    accounts_affected: int = 0
    orphan_accounts: int = 0
    clamped_accounts: int = 0
    points_removed: int = 0
    ledger_rows_purged: int = 0
    snapshot_accounts: int = 0
    aggregates_created: int = 0
    points_reapplied: int = 0
    ledger_rows_inserted: int = 0
    total_batches: int = 0
    started_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        return data


@dataclass
class SyncStats:
    """Counters collected during one transaction table sync."""
    records_staged: int = 0
    rows_cleared: int = 0
    transactions_synced: int = 0
    total_batches: int = 0
    started_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        return data


Stats = Union[ReconcileStats, SyncStats]


@dataclass(frozen=True)
class Committed:
    """The run's transaction was committed."""
    stats: Stats
    stages: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class RolledBack:
    """The run failed and its transaction was rolled back; the store is unchanged."""
    failed_stage: str
    reason: str
    code: str
    details: Dict[str, Any] = field(default_factory=dict)
    stats: Optional[Stats] = None
    stages: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return False


RunResult = Union[Committed, RolledBack]

Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class ReconcileContext:
    """Everything one run needs, built once at the run boundary."""
    settings: Settings
    database: Database
    store: SnapshotStore
    sleep: Sleeper = asyncio.sleep
    triggered_by: str = "cli"

    @property
    def batch_size(self) -> int:
        return self.settings.reconcile_batch_size

    @property
    def pacing_seconds(self) -> float:
        return self.settings.pacing_seconds
