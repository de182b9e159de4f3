"""
Account aggregate model - the per-account point total read by other systems.
"""

from sqlalchemy import BigInteger, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class AccountAggregate(BaseModel, TimestampMixin):
    """
    Stored total of all ledger contributions for one account.

    Several writers share this row; each one only ever applies relative deltas
    for the categories it owns.
    """

    __tablename__ = "account_aggregates"

    account: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Lowercased account address"
    )

    total_points: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Sum of ledger points across all categories"
    )

    __table_args__ = (
        CheckConstraint("total_points >= 0", name="total_points_non_negative"),
    )
