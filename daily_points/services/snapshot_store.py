"""
Durable JSON staging between the aggregation and reconciliation stages.

Every write replaces the target file as a whole (write to a temporary sibling,
then rename), so a re-run never leaves a merge of old and new data behind.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Union

import structlog
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from daily_points.core.config import Settings
from daily_points.core.exceptions import StagingDataError
from daily_points.schemas.staging import AccountSnapshot, RawTxRecord


logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]

_snapshots_adapter = TypeAdapter(Dict[str, AccountSnapshot])
_records_adapter = TypeAdapter(List[RawTxRecord])


def write(path: PathLike, data: Any) -> Path:
    """Serialize ``data`` to ``path``, creating parent directories as needed."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    return target


def read(path: PathLike) -> Any:
    """Load the JSON document stored at ``path``."""
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError as e:
        raise StagingDataError(f"Staged file not found: {source}", {"path": str(source)}) from e
    except json.JSONDecodeError as e:
        raise StagingDataError(
            f"Staged file is not valid JSON: {source}",
            {"path": str(source), "error": str(e)}
        ) from e


class SnapshotStore:
    """Reads and writes the two staged files of a pipeline run."""

    def __init__(self, snapshot_path: PathLike, transactions_path: PathLike):
        self.snapshot_path = Path(snapshot_path)
        self.transactions_path = Path(transactions_path)
        self.logger = logger.bind(service="snapshot_store")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SnapshotStore":
        return cls(settings.snapshot_path, settings.transactions_path)

    def write_snapshots(self, snapshots: Mapping[str, AccountSnapshot]) -> Path:
        payload = {account: snapshot.model_dump() for account, snapshot in snapshots.items()}
        path = write(self.snapshot_path, payload)
        self.logger.info("Snapshots staged", path=str(path), accounts=len(payload))
        return path

    def read_snapshots(self) -> Dict[str, AccountSnapshot]:
        data = read(self.snapshot_path)
        try:
            snapshots = _snapshots_adapter.validate_python(data)
        except PydanticValidationError as e:
            raise StagingDataError(
                f"Staged snapshots do not match the schema: {self.snapshot_path}",
                {"path": str(self.snapshot_path), "errors": e.errors(include_url=False)}
            ) from e

        for key, snapshot in snapshots.items():
            if key != snapshot.account or key != key.lower():
                raise StagingDataError(
                    "Snapshot key must be the lowercased account it describes",
                    {"key": key, "account": snapshot.account}
                )
        return snapshots

    def write_tx_records(self, records: Sequence[RawTxRecord]) -> Path:
        payload = [record.model_dump() for record in records]
        path = write(self.transactions_path, payload)
        self.logger.info("Transactions staged", path=str(path), records=len(payload))
        return path

    def read_tx_records(self) -> List[RawTxRecord]:
        data = read(self.transactions_path)
        try:
            return _records_adapter.validate_python(data)
        except PydanticValidationError as e:
            raise StagingDataError(
                f"Staged transactions do not match the schema: {self.transactions_path}",
                {"path": str(self.transactions_path), "errors": e.errors(include_url=False)}
            ) from e
