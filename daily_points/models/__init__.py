"""
Database models for the daily points reconciler.

Contains the shared account aggregate, the category-tagged ledger,
the raw transaction audit table and run bookkeeping.
"""

from .base import Base, BaseModel, TimestampMixin
from .account import AccountAggregate
from .ledger import LedgerEntry, PointCategory
from .transaction import Transaction
from .reconciliation_run import ReconciliationRun, RunKind, RunStatus

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "AccountAggregate",
    "LedgerEntry",
    "PointCategory",
    "Transaction",
    "ReconciliationRun",
    "RunKind",
    "RunStatus",
]
