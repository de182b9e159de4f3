"""
Raw transaction model - audit trail of every source event.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel


class Transaction(BaseModel):
    """Verbatim copy of a staged raw transaction record."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )

    hash: Mapped[str] = mapped_column(
        String(80),
        comment="Transaction hash"
    )

    event_name: Mapped[str] = mapped_column(
        String(64),
        comment="Decoded event name"
    )

    block_number: Mapped[int] = mapped_column(
        BigInteger,
        comment="Block the event was emitted in"
    )

    args: Mapped[str] = mapped_column(
        Text,
        comment="JSON-encoded event arguments"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        comment="Event timestamp"
    )

    __table_args__ = (
        Index("idx_transactions_hash", "hash"),
        Index("idx_transactions_block", "block_number"),
    )
