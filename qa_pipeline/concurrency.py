"""
Bounded asyncio worker pool.

A fixed number of worker tasks consume a shared queue of (index, item) pairs
until it is drained. Workers poll an optional stop event before claiming each
item; stopping never interrupts work already in flight.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def pool_size(requested: int, item_count: int, cap: Optional[int] = None) -> int:
    """Number of workers to start: at least 1, never more than there are items."""
    size = max(1, requested)
    if cap is not None:
        size = min(size, max(1, cap))
    return max(1, min(size, item_count))


async def run_worker_pool(
    items: Sequence[T],
    worker: Callable[[int, T], Awaitable[None]],
    concurrency: int,
    stop_event: Optional[asyncio.Event] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> int:
    """
    Run ``worker(index, item)`` over ``items`` with exactly ``concurrency`` consumers.

    Workers are responsible for handling their own per-item failures; an
    exception escaping a worker propagates to the caller. ``stop_event`` is
    the pool's own fail-fast flag, ``cancel_event`` the caller's cancellation
    signal; either one stops further claims.

    Returns:
        Number of items that were claimed by a worker.
    """
    if not items:
        return 0

    queue: asyncio.Queue = asyncio.Queue()
    for index, item in enumerate(items):
        queue.put_nowait((index, item))

    claimed = 0

    async def consume(worker_id: int) -> None:
        nonlocal claimed
        while True:
            if stop_event is not None and stop_event.is_set():
                logger.debug(f"Worker {worker_id} stopping: stop requested")
                return
            if cancel_event is not None and cancel_event.is_set():
                logger.debug(f"Worker {worker_id} stopping: run cancelled")
                return
            try:
                index, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            claimed += 1
            await worker(index, item)

    size = max(1, min(concurrency, len(items)))
    await asyncio.gather(*(consume(worker_id) for worker_id in range(size)))
    return claimed
