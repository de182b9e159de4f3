"""
Loads already-decoded DailyCheck events exported by the chain log reader.
"""

from pathlib import Path
from typing import Any, List, Union

import structlog

from daily_points.core.exceptions import StagingDataError
from daily_points.schemas.staging import DailyCheckEvent
from daily_points.services import snapshot_store
from daily_points.services.event_folder import parse_events


logger = structlog.get_logger(__name__)


def load_events(path: Union[str, Path]) -> List[DailyCheckEvent]:
    """
    Read a JSON array of decoded events and return them newest block first.

    Each element needs ``account``, ``streak_length``, ``block_ordinal``,
    ``tx_hash`` and ``timestamp`` (ISO-8601 or unix seconds).
    """
    data: Any = snapshot_store.read(path)
    if not isinstance(data, list):
        raise StagingDataError(
            "Event export must be a JSON array",
            {"path": str(path), "type": type(data).__name__}
        )

    events = parse_events(data)
    events.sort(key=lambda event: event.block_ordinal, reverse=True)

    logger.info("Events loaded", path=str(path), events=len(events))
    return events
