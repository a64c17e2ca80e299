from __future__ import annotations

import asyncio
from collections.abc import Iterator

from .cancellation import CancellationToken, sleep


class WorkloadError(RuntimeError):
    """Fault injected by a simulated workload."""


def numbered_items(count: int, *, fail_on: int = 0) -> Iterator[int]:
    """Yield ``1..count``, raising instead of yielding ``fail_on``.

    >>> list(numbered_items(3))
    [1, 2, 3]
    >>> items = numbered_items(3, fail_on=2)
    >>> next(items)
    1
    >>> next(items)
    Traceback (most recent call last):
    ...
    workchannel.workloads.WorkloadError: Boom from item 2
    """

    for number in range(1, count + 1):
        if number == fail_on:
            raise WorkloadError(f"Boom from item {number}")
        yield number


async def simulate_async_io(duration: float, token: CancellationToken | None = None) -> float:
    """Cancellable asyncio-friendly sleep standing in for per-item work."""

    if token is None:
        await asyncio.sleep(duration)
    else:
        await sleep(duration, token)
    return duration


__all__ = ["WorkloadError", "numbered_items", "simulate_async_io"]
