"""
Aggregation run: decoded events -> per-account snapshots and raw records on disk.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import structlog

from daily_points.schemas.staging import DailyCheckEvent
from daily_points.services.event_folder import build_tx_records, fold
from daily_points.services.snapshot_store import SnapshotStore


logger = structlog.get_logger(__name__)


@dataclass
class AggregationSummary:
    events: int
    accounts: int
    points: int
    snapshot_path: Path
    transactions_path: Path


def aggregate_events(events: Sequence[DailyCheckEvent], store: SnapshotStore) -> AggregationSummary:
    """Stage the raw records and the folded snapshots of ``events``."""
    logger.info("Generating txs records", events=len(events))
    records = build_tx_records(events)
    transactions_path = store.write_tx_records(records)

    logger.info("Calculating users points")
    snapshots = fold(events)
    snapshot_path = store.write_snapshots(snapshots)

    return AggregationSummary(
        events=len(events),
        accounts=len(snapshots),
        points=sum(snapshot.points for snapshot in snapshots.values()),
        snapshot_path=snapshot_path,
        transactions_path=transactions_path,
    )
