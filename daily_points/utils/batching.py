"""
Chunked iteration with a pause between chunks.
"""

import asyncio
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence, TypeVar

import structlog


T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]

logger = structlog.get_logger(__name__)


def chunked(items: Sequence[T], batch_size: int) -> Iterator[List[T]]:
    """Yield contiguous slices of at most batch_size items, in input order."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    for start in range(0, len(items), batch_size):
        yield list(items[start:start + batch_size])


async def for_each_batch(
    items: Sequence[T],
    batch_size: int,
    action: Callable[[List[T]], Awaitable[None]],
    pacing_seconds: float = 0.0,
    sleep: Optional[Sleeper] = None,
    label: str = "batch",
) -> int:
    """
    Await ``action`` once per slice of ``items``.

    A full-size batch that is followed by another batch is followed by a pause of
    ``pacing_seconds``; the final batch is never paced. Exceptions raised by
    ``action`` propagate unchanged and stop the iteration.

    Returns:
        Number of batches executed
    """
    sleep = sleep or asyncio.sleep
    total = (len(items) + batch_size - 1) // batch_size if batch_size > 0 else 0

    executed = 0
    for index, batch in enumerate(chunked(items, batch_size)):
        await action(batch)
        executed += 1

        is_last = index == total - 1
        if len(batch) == batch_size and not is_last and pacing_seconds > 0:
            logger.info(
                "Pausing before next batch",
                label=label,
                batch_index=f"{index + 1}/{total}",
                seconds=pacing_seconds
            )
            await sleep(pacing_seconds)

    return executed
