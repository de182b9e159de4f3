"""
Folds decoded daily-check events into per-account point snapshots.
"""

from typing import Any, Dict, Iterable, List, Mapping

from pydantic import ValidationError as PydanticValidationError

from daily_points.core.exceptions import StagingDataError
from daily_points.schemas.staging import (
    AccountSnapshot,
    DailyCheckEvent,
    RawTxRecord,
    points_for_streak,
)


def fold(events: Iterable[DailyCheckEvent]) -> Dict[str, AccountSnapshot]:
    """
    Compute the point snapshot of every account seen in ``events``.

    The result depends only on the multiset of events, never on their order,
    and is keyed (and sorted) by lowercased account.
    """
    totals: Dict[str, Dict[str, int]] = {}

    for event in events:
        account = event.account.lower()
        current = totals.setdefault(account, {"points": 0, "max_streak": 0, "event_count": 0})
        current["points"] += points_for_streak(event.streak_length)
        current["event_count"] += 1
        current["max_streak"] = max(current["max_streak"], event.streak_length)

    return {
        account: AccountSnapshot(account=account, **values)
        for account, values in sorted(totals.items())
    }


def parse_events(rows: Iterable[Mapping[str, Any]]) -> List[DailyCheckEvent]:
    """Validate raw decoded rows; any malformed row rejects the whole batch."""
    events = []
    for index, row in enumerate(rows):
        try:
            events.append(DailyCheckEvent.model_validate(row))
        except PydanticValidationError as e:
            raise StagingDataError(
                f"Malformed event at position {index}",
                {"index": index, "errors": e.errors(include_url=False)}
            ) from e
    return events


def build_tx_records(events: Iterable[DailyCheckEvent]) -> List[RawTxRecord]:
    """One audit record per event, in the order the events were delivered."""
    return [RawTxRecord.from_event(event) for event in events]
