"""
Command line entry points for staging and reconciling daily points.
"""

import asyncio
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from daily_points.core.config import Settings, get_settings
from daily_points.core.database import Database
from daily_points.core.exceptions import DailyPointsException
from daily_points.core.logging import get_logger, setup_logging
from daily_points.models import RunKind
from daily_points.services.aggregation import aggregate_events
from daily_points.services.event_source import load_events
from daily_points.services.ledger_reconciler import reconcile_daily_points
from daily_points.services.run_tracker import RunTracker
from daily_points.services.snapshot_store import SnapshotStore
from daily_points.services.transaction_sync import sync_transactions
from daily_points.services.types import ReconcileContext, RolledBack, RunResult

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Daily points staging and reconciliation commands")


@app.callback()
def main(
    ctx: typer.Context,
    database_url: Optional[str] = typer.Option(None, help="Override DATABASE_URL"),
    staging_dir: Optional[str] = typer.Option(None, help="Directory holding the staged JSON files"),
    log_format: Optional[str] = typer.Option(None, help="json or console"),
):
    overrides: Dict[str, Any] = {}
    if database_url:
        overrides["database_url"] = database_url
    if staging_dir:
        overrides["staging_dir"] = staging_dir
    if log_format:
        overrides["log_format"] = log_format
    ctx.obj = overrides


def _settings(ctx: typer.Context, **extra: Any) -> Settings:
    overrides = dict(ctx.obj or {})
    overrides.update({key: value for key, value in extra.items() if value is not None})
    settings = get_settings(**overrides)
    setup_logging(settings)
    return settings


def _context(settings: Settings, database: Database) -> ReconcileContext:
    return ReconcileContext(
        settings=settings,
        database=database,
        store=SnapshotStore.from_settings(settings),
    )


async def _record(context: ReconcileContext, kind: RunKind, result: RunResult) -> None:
    """Store the run outcome; a store failure is logged and the run's own report still follows."""
    tracker = RunTracker(context.database)
    try:
        await tracker.record(
            kind,
            result,
            batch_size=context.batch_size,
            pacing_ms=context.settings.reconcile_pacing_ms,
            triggered_by=context.triggered_by,
        )
    except (DailyPointsException, SQLAlchemyError, OSError) as e:
        logger.error("Failed to record run", kind=kind.value, error=str(e), error_type=type(e).__name__)


def _report(title: str, result: RunResult) -> bool:
    if isinstance(result, RolledBack):
        console.print(f"❌ {title} rolled back at stage '{result.failed_stage}': {result.reason}")
        if result.details:
            console.print(result.details)
        return False

    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key, value in result.stats.as_dict().items():
        table.add_row(key, str(value))
    console.print(table)
    console.print(f"✅ {title} committed")
    return True


@app.command("init-db")
def init_db(ctx: typer.Context):
    """Create all tables."""
    settings = _settings(ctx)

    async def _init():
        database = Database.from_settings(settings)
        await database.init()
        try:
            await database.create_tables()
        finally:
            await database.close()

    asyncio.run(_init())
    console.print("✅ Database initialized successfully!")


@app.command("reset-db")
def reset_db(ctx: typer.Context):
    """Drop all tables."""
    confirm = typer.confirm("Are you sure you want to drop all tables?")
    if not confirm:
        console.print("❌ Operation cancelled")
        return

    settings = _settings(ctx)

    async def _reset():
        database = Database.from_settings(settings)
        await database.init()
        try:
            await database.drop_tables()
        finally:
            await database.close()

    asyncio.run(_reset())
    console.print("🗑️ All tables dropped!")


@app.command()
def health(ctx: typer.Context):
    """Check database connectivity."""
    settings = _settings(ctx)

    async def _health() -> bool:
        database = Database.from_settings(settings)
        await database.init()
        try:
            return await database.health_check()
        finally:
            await database.close()

    if asyncio.run(_health()):
        console.print("✅ Database is healthy!")
    else:
        console.print("❌ Database health check failed!")
        raise typer.Exit(code=1)


@app.command()
def aggregate(
    ctx: typer.Context,
    events_file: str = typer.Argument(..., help="JSON array of decoded DailyCheck events"),
):
    """Fold decoded events and stage snapshots and raw records."""
    settings = _settings(ctx)
    store = SnapshotStore.from_settings(settings)

    try:
        events = load_events(events_file)
        summary = aggregate_events(events, store)
    except DailyPointsException as e:
        console.print(f"❌ Aggregation failed: {e.message}")
        raise typer.Exit(code=1)

    console.print(f"✅ Txs recorded: {summary.events} -> {summary.transactions_path}")
    console.print(
        f"✅ Points recorded: {summary.accounts} accounts, {summary.points} points -> {summary.snapshot_path}"
    )


@app.command("sync-transactions")
def sync_transactions_command(
    ctx: typer.Context,
    batch_size: Optional[int] = typer.Option(None, help="Records per insert batch"),
    pacing_ms: Optional[int] = typer.Option(None, help="Pause between full batches"),
):
    """Reload the transactions table from the staged raw records."""
    settings = _settings(ctx, reconcile_batch_size=batch_size, reconcile_pacing_ms=pacing_ms)

    async def _sync() -> RunResult:
        database = Database.from_settings(settings)
        await database.init()
        try:
            context = _context(settings, database)
            result = await sync_transactions(context)
            await _record(context, RunKind.TRANSACTIONS, result)
            return result
        finally:
            await database.close()

    if not _report("Transactions sync", asyncio.run(_sync())):
        raise typer.Exit(code=1)


@app.command()
def reconcile(
    ctx: typer.Context,
    batch_size: Optional[int] = typer.Option(None, help="Accounts or records per batch"),
    pacing_ms: Optional[int] = typer.Option(None, help="Pause between full batches"),
    strict_removal: Optional[bool] = typer.Option(
        None, "--strict-removal/--clamp-removal", help="Fail instead of flooring totals at zero"
    ),
):
    """Replace all daily ledger contributions with the staged ones."""
    settings = _settings(
        ctx,
        reconcile_batch_size=batch_size,
        reconcile_pacing_ms=pacing_ms,
        strict_removal=strict_removal,
    )

    async def _reconcile() -> RunResult:
        database = Database.from_settings(settings)
        await database.init()
        try:
            context = _context(settings, database)
            result = await reconcile_daily_points(context)
            await _record(context, RunKind.DAILY_POINTS, result)
            return result
        finally:
            await database.close()

    if not _report("Daily points reconciliation", asyncio.run(_reconcile())):
        raise typer.Exit(code=1)


@app.command("sync-db")
def sync_db(
    ctx: typer.Context,
    batch_size: Optional[int] = typer.Option(None, help="Accounts or records per batch"),
    pacing_ms: Optional[int] = typer.Option(None, help="Pause between full batches"),
):
    """Sync the transactions table, then reconcile daily points."""
    settings = _settings(ctx, reconcile_batch_size=batch_size, reconcile_pacing_ms=pacing_ms)

    async def _run() -> bool:
        database = Database.from_settings(settings)
        await database.init()
        try:
            context = _context(settings, database)

            console.print("--------> Reading txs data and syncing with db...")
            tx_result = await sync_transactions(context)
            await _record(context, RunKind.TRANSACTIONS, tx_result)
            if not _report("Transactions sync", tx_result):
                return False

            console.print("--------> Syncing users points...")
            points_result = await reconcile_daily_points(context)
            await _record(context, RunKind.DAILY_POINTS, points_result)
            return _report("Daily points reconciliation", points_result)
        finally:
            await database.close()

    if not asyncio.run(_run()):
        raise typer.Exit(code=1)


@app.command()
def status(
    ctx: typer.Context,
    limit: int = typer.Option(10, help="Number of runs to show"),
):
    """Show recent runs and the staged files."""
    settings = _settings(ctx)

    async def _status():
        database = Database.from_settings(settings)
        await database.init()
        try:
            return await RunTracker(database).recent_runs(limit)
        finally:
            await database.close()

    runs = asyncio.run(_status())

    table = Table(title="Recent runs")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Failed stage")
    table.add_column("Rows inserted")
    table.add_column("Started")
    for run in runs:
        inserted = run.ledger_rows_inserted if run.kind == RunKind.DAILY_POINTS.value else run.transactions_synced
        table.add_row(
            str(run.id),
            run.kind,
            "[green]committed[/green]" if run.is_committed else "[red]rolled back[/red]",
            run.failed_stage or "-",
            str(inserted),
            str(run.started_at),
        )
    console.print(table)

    for path in (settings.snapshot_path, settings.transactions_path):
        state = f"{path.stat().st_size} bytes" if path.exists() else "missing"
        console.print(f"Staged file {path}: {state}")


if __name__ == "__main__":
    app()
