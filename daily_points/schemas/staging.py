"""
Pydantic schemas for decoded events and staged hand-off records.
"""

import json
from datetime import datetime, timezone
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator

from daily_points.core.exceptions import StagingDataError


DAILY_POINTS_CAP = 30
DAILY_CHECK_EVENT = "DailyCheck"


def points_for_streak(streak: int) -> int:
    """Points earned by one daily check: the streak length, capped."""
    return min(streak, DAILY_POINTS_CAP)


class DailyCheckEvent(BaseModel):
    """A decoded DailyCheck(caller, streak, timestamp) log entry."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    account: str = Field(min_length=1)
    streak_length: int = Field(ge=0)
    block_ordinal: int = Field(ge=0)
    tx_hash: str = Field(min_length=1)
    timestamp: datetime
    event_name: str = DAILY_CHECK_EVENT

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class AccountSnapshot(BaseModel):
    """Recomputed-from-scratch point summary of one account."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    account: StrictStr
    points: StrictInt = Field(ge=0)
    max_streak: StrictInt = Field(ge=0)
    event_count: StrictInt = Field(ge=0)


class DailyContribution(BaseModel):
    """Points one raw record contributes to the ledger."""

    model_config = ConfigDict(frozen=True)

    account: str
    streak: int
    points: int
    tx_hash: str


class RawTxRecord(BaseModel):
    """One source event, staged verbatim for the audit table and ledger replay."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    hash: StrictStr = Field(min_length=1)
    event_name: StrictStr
    block_number: StrictInt = Field(ge=0)
    args: StrictStr
    created_at: StrictStr

    @classmethod
    def from_event(cls, event: DailyCheckEvent) -> "RawTxRecord":
        timestamp = int(event.timestamp.timestamp())
        return cls(
            hash=event.tx_hash,
            event_name=event.event_name,
            block_number=event.block_ordinal,
            args=json.dumps([event.account, event.streak_length, timestamp]),
            created_at=event.timestamp.isoformat().replace("+00:00", "Z"),
        )

    @field_validator("created_at")
    @classmethod
    def check_created_at(cls, v: str) -> str:
        _parse_timestamp(v)
        return v

    @property
    def created_at_datetime(self) -> datetime:
        return _parse_timestamp(self.created_at)

    def contribution(self) -> DailyContribution:
        """
        Recompute the ledger contribution from the embedded arguments.

        Accepts a positional array ``[caller, streak, ...]`` or a keyed object
        ``{"caller": ..., "streak": ...}``; numbers may be plain integers, decimal
        or hex strings, or ethers BigNumber objects.
        """
        try:
            args = json.loads(self.args)
        except json.JSONDecodeError as e:
            raise StagingDataError(
                f"Record {self.hash} has unparsable args",
                {"hash": self.hash, "error": str(e)}
            ) from e

        if isinstance(args, dict):
            caller = args.get("caller")
            raw_streak = args.get("streak")
        elif isinstance(args, list) and len(args) >= 2:
            caller, raw_streak = args[0], args[1]
        else:
            raise StagingDataError(
                f"Record {self.hash} args must hold caller and streak",
                {"hash": self.hash, "args": self.args}
            )

        if not isinstance(caller, str) or not caller:
            raise StagingDataError(f"Record {self.hash} has no caller", {"hash": self.hash})

        streak = _parse_uint(raw_streak, self.hash)
        return DailyContribution(
            account=caller.lower(),
            streak=streak,
            points=points_for_streak(streak),
            tx_hash=self.hash,
        )


def _parse_timestamp(value: str) -> datetime:
    """ISO-8601 timestamp with an optional trailing Z; naive values are UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_uint(value: Any, tx_hash: str) -> int:
    if isinstance(value, dict) and value.get("type") == "BigNumber":
        value = value.get("hex")

    if isinstance(value, bool):
        parsed = None
    elif isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = int(value, 16) if value.lower().startswith("0x") else int(value)
        except ValueError:
            parsed = None
    else:
        parsed = None

    if parsed is None or parsed < 0:
        raise StagingDataError(
            f"Record {tx_hash} has an invalid streak value",
            {"hash": tx_hash, "streak": value}
        )
    return parsed


def contributions_from_records(records: List[RawTxRecord]) -> List[DailyContribution]:
    """Parse every staged record, failing on the first malformed one."""
    return [record.contribution() for record in records]
