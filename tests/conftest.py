"""
Shared fixtures: an in-memory database, a temporary staging store and event builders.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple

import pytest
from sqlalchemy import insert, select

from daily_points.core.config import get_settings
from daily_points.core.database import Database
from daily_points.models import AccountAggregate, LedgerEntry
from daily_points.schemas.staging import DailyCheckEvent
from daily_points.services.event_folder import build_tx_records, fold
from daily_points.services.snapshot_store import SnapshotStore
from daily_points.services.types import ReconcileContext


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every requested pause."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_event(account: str, streak: int, block: int, tx_hash: str = None, ts: int = 1_700_000_000) -> DailyCheckEvent:
    return DailyCheckEvent(
        account=account,
        streak_length=streak,
        block_ordinal=block,
        tx_hash=tx_hash or f"0xtx{block:06d}",
        timestamp=datetime.fromtimestamp(ts + block, tz=timezone.utc),
    )


def stage_events(store: SnapshotStore, events: Iterable[DailyCheckEvent]) -> None:
    events = list(events)
    store.write_tx_records(build_tx_records(events))
    store.write_snapshots(fold(events))


async def seed(
    database: Database,
    aggregates: Dict[str, int],
    entries: Iterable[Tuple[str, int, str]],
) -> None:
    async with database.session() as session:
        if aggregates:
            await session.execute(
                insert(AccountAggregate.__table__),
                [{"account": account, "total_points": total} for account, total in aggregates.items()]
            )
        rows = [{"account": a, "points": p, "category": c} for a, p, c in entries]
        if rows:
            await session.execute(insert(LedgerEntry.__table__), rows)


async def dump_store(database: Database):
    """Every column of both tables, ordered by key."""
    async with database.session() as session:
        aggregates = (await session.execute(
            select(AccountAggregate.__table__).order_by(AccountAggregate.account)
        )).all()
        ledger = (await session.execute(
            select(LedgerEntry.__table__).order_by(LedgerEntry.id)
        )).all()
    return [tuple(row) for row in aggregates], [tuple(row) for row in ledger]


async def business_state(database: Database):
    """Totals plus the multiset of ledger contributions, ignoring ids and timestamps."""
    async with database.session() as session:
        totals = dict((await session.execute(
            select(AccountAggregate.account, AccountAggregate.total_points)
        )).all())
        entries = sorted(tuple(row) for row in (await session.execute(
            select(LedgerEntry.account, LedgerEntry.points, LedgerEntry.category)
        )).all())
    return totals, entries


async def ledger_sums(database: Database) -> Dict[str, int]:
    _, entries = await business_state(database)
    sums: Dict[str, int] = {}
    for account, points, _ in entries:
        sums[account] = sums.get(account, 0) + points
    return sums


@pytest.fixture
async def database():
    db = Database("sqlite+aiosqlite://")
    await db.init()
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def settings(tmp_path):
    return get_settings(
        database_url="sqlite+aiosqlite://",
        staging_dir=str(tmp_path / "scripts-data"),
        reconcile_batch_size=250,
        reconcile_pacing_ms=3000,
    )


@pytest.fixture
def store(settings):
    return SnapshotStore.from_settings(settings)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def context(settings, database, store, sleeper):
    return ReconcileContext(settings=settings, database=database, store=store, sleep=sleeper)
