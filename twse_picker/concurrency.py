"""
Bounded-concurrency mapping for fetch stages.

A fixed pool of workers pulls item indices from a shared cursor and writes
each result into a preallocated slot, so output order always matches input
order. A failing item resolves to None and never cancels its siblings.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[Optional[R]]],
    *,
    pace_seconds: float = 0.0,
    label: str = "batch",
) -> List[Optional[R]]:
    """
    Apply an async worker to every item with at most `limit` in flight.

    Args:
        items: Work items, processed in claim order
        limit: Number of concurrent workers (clamped to at least 1)
        worker: Coroutine function called as worker(item, index)
        pace_seconds: Delay each worker takes after finishing an item
        label: Name used in log messages

    Returns:
        Results aligned with `items`; None where the worker failed
    """
    results: List[Optional[R]] = [None] * len(items)
    cursor = 0

    def claim() -> Optional[int]:
        nonlocal cursor
        if cursor >= len(items):
            return None
        index = cursor
        cursor += 1
        return index

    async def runner() -> None:
        while True:
            index = claim()
            if index is None:
                return
            try:
                results[index] = await worker(items[index], index)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"{label}: item {index} failed: {e}")
                results[index] = None
            if pace_seconds > 0:
                await asyncio.sleep(pace_seconds)

    workers = max(1, min(limit, len(items))) if items else 0
    await asyncio.gather(*(runner() for _ in range(workers)))
    return results
