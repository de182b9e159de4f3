"""
Ledger entry model - category-tagged point contributions.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel


class PointCategory(str, Enum):
    """How the points of a ledger entry were earned."""

    DAILY = "daily"
    QUEST = "quest"
    REFERRAL = "referral"
    MANUAL = "manual"


class LedgerEntry(BaseModel):
    """One contribution of points to an account."""

    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )

    account: Mapped[str] = mapped_column(
        String(64),
        comment="Lowercased account address"
    )

    points: Mapped[int] = mapped_column(
        BigInteger,
        comment="Points contributed by this entry"
    )

    category: Mapped[str] = mapped_column(
        String(32),
        comment="Point category (daily, quest, ...)"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        comment="When the entry was written"
    )

    __table_args__ = (
        Index("idx_ledger_account_category", "account", "category"),
        Index("idx_ledger_category", "category"),
    )
