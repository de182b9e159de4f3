"""
Typed records exchanged between the aggregation and reconciliation stages.
"""

from .staging import (
    DAILY_POINTS_CAP,
    DAILY_CHECK_EVENT,
    AccountSnapshot,
    DailyCheckEvent,
    DailyContribution,
    RawTxRecord,
    contributions_from_records,
    points_for_streak,
)

__all__ = [
    "DAILY_POINTS_CAP",
    "DAILY_CHECK_EVENT",
    "AccountSnapshot",
    "DailyCheckEvent",
    "DailyContribution",
    "RawTxRecord",
    "contributions_from_records",
    "points_for_streak",
]
