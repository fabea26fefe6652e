# backend/bharatcrm/utils/concurrency.py
"""
Bounded fan-out for Graph API scans.

A fixed number of workers claim one item at a time from a shared index, so at
most `concurrency` requests are in flight and results keep the input order.
"""

import asyncio
from typing import Awaitable, Callable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 6


async def run_with_concurrency(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[R]:
    """
    Run `worker` over `items` with at most `concurrency` coroutines alive.

    The first worker exception cancels the remaining workers and propagates to
    the caller; callers that want per-item isolation catch inside the worker.
    """
    results: List[R] = [None] * len(items)  # type: ignore[list-item]
    next_index = 0

    async def runner() -> None:
        nonlocal next_index
        while next_index < len(items):
            # claim before awaiting; the event loop cannot switch between these lines
            current = next_index
            next_index += 1
            results[current] = await worker(items[current])

    tasks = [
        asyncio.create_task(runner())
        for _ in range(max(1, min(concurrency, len(items) or 1)))
    ]
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)

    for t in pending:
        t.cancel()
    if pending:
        # wait for cancelled workers to unwind before the caller moves on
        await asyncio.wait(pending)

    for t in done:
        error = t.exception()
        if error is not None:
            raise error
    return results
