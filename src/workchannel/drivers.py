"""Producer and consumer loops around :class:`BoundedWorkQueue`.

The producer always closes the queue before it returns or raises, so a
consumer never waits forever on an open, empty channel. Faults raised while
generating items travel to the consumer through ``close(fault)`` instead of
escaping on the producer side.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, TypeVar

from .cancellation import CancellationSource, CancellationToken, sleep
from .channel import BoundedWorkQueue
from .config import ChannelConfig
from .errors import ChannelClosed, OperationCancelled
from .workloads import numbered_items

T = TypeVar("T")

ItemSource = Iterable[T] | AsyncIterable[T]
Handler = Callable[[T], Awaitable[None] | None]

_LOGGER = logging.getLogger("workchannel.drivers")


async def _iterate(items: ItemSource[T]) -> AsyncIterator[T]:
    if isinstance(items, AsyncIterable):
        async for item in items:
            yield item
    else:
        for item in items:
            yield item


async def produce(
    queue: BoundedWorkQueue[T],
    items: ItemSource[T],
    *,
    token: CancellationToken | None = None,
    delay: float = 0.0,
    on_item: Callable[[T], None] | None = None,
) -> int:
    """Feed *items* into *queue* and close it; return the number enqueued.

    ``delay`` seconds of simulated work precede each item. A failure raised by
    *items* or *on_item* closes the queue with that fault and is not re-raised.
    :class:`OperationCancelled` closes the queue with the cancellation and
    propagates. Cancelling the producer task closes the queue with an
    :class:`OperationCancelled` fault so the consumer sees a cut-short stream
    as :class:`UpstreamFault`, not as a clean end.
    """

    produced = 0
    try:
        async with aclosing(_iterate(items)) as stream:
            async for item in stream:
                if delay > 0:
                    await sleep(delay, token)
                await queue.enqueue(item, token)
                produced += 1
                if on_item is not None:
                    on_item(item)
    except OperationCancelled as exc:
        _LOGGER.debug("producer for %s cancelled after %d items", queue.name, produced)
        queue.close(exc)
        raise
    except ChannelClosed:
        raise
    except Exception as exc:
        _LOGGER.warning(
            "producer for %s failed after %d items: %s: %s",
            queue.name,
            produced,
            type(exc).__name__,
            exc,
        )
        queue.close(exc)
    except asyncio.CancelledError:
        queue.close(OperationCancelled("producer task cancelled"))
        raise
    finally:
        queue.close()
    _LOGGER.debug("producer for %s finished with %d items", queue.name, produced)
    return produced


async def consume(
    queue: BoundedWorkQueue[T],
    handler: Handler[T] | None = None,
    *,
    token: CancellationToken | None = None,
    delay: float = 0.0,
) -> int:
    """Drain *queue* until end-of-stream; return the number of items handled.

    *handler* may be a plain function or a coroutine function.
    :class:`UpstreamFault` and :class:`OperationCancelled` propagate.
    """

    consumed = 0
    async with aclosing(queue.iterate(token)) as stream:
        async for item in stream:
            if delay > 0:
                await sleep(delay, token)
            if handler is not None:
                outcome = handler(item)
                if inspect.isawaitable(outcome):
                    await outcome
            consumed += 1
    _LOGGER.debug("consumer for %s drained %d items", queue.name, consumed)
    return consumed


@dataclass(slots=True)
class ChannelReport:
    name: str
    capacity: int
    items: int
    produced: int
    consumed: int
    high_water_mark: int
    elapsed_ms: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "capacity": self.capacity,
            "items": self.items,
            "produced": self.produced,
            "consumed": self.consumed,
            "high_water_mark": self.high_water_mark,
            "elapsed_ms": self.elapsed_ms,
        }


async def run_channel(
    config: ChannelConfig | None = None,
    *,
    token: CancellationToken | None = None,
    on_produced: Callable[[int], None] | None = None,
    on_consumed: Handler[int] | None = None,
    name: str = "channel",
) -> ChannelReport:
    """Run one producer and one consumer over a fresh queue until both finish.

    The first meaningful failure is re-raised once both sides stopped: a
    consumer-side fault wins over the cancellation it triggers on the
    producer, otherwise the producer's failure is reported first.
    """

    config = config or ChannelConfig()
    queue: BoundedWorkQueue[int] = BoundedWorkQueue(config.capacity, name=name)
    parents = (token,) if token is not None else ()
    started = time.perf_counter()

    with CancellationSource(*parents) as run_source:

        async def _consumer() -> int:
            try:
                return await consume(
                    queue,
                    on_consumed,
                    token=run_source.token,
                    delay=config.consumer_delay,
                )
            except Exception:
                # Unblock a producer parked on a full buffer.
                run_source.cancel("consumer stopped")
                raise

        produced, consumed = await asyncio.gather(
            produce(
                queue,
                numbered_items(config.items, fail_on=config.fail_on),
                token=run_source.token,
                delay=config.producer_delay,
                on_item=on_produced,
            ),
            _consumer(),
            return_exceptions=True,
        )

    elapsed_ms = (time.perf_counter() - started) * 1000
    for outcome in (consumed, produced):
        if isinstance(outcome, BaseException) and not isinstance(outcome, OperationCancelled):
            raise outcome
    for outcome in (produced, consumed):
        if isinstance(outcome, BaseException):
            raise outcome

    return ChannelReport(
        name=name,
        capacity=config.capacity,
        items=config.items,
        produced=produced,
        consumed=consumed,
        high_water_mark=queue.high_water_mark,
        elapsed_ms=elapsed_ms,
    )


__all__ = ["ChannelReport", "consume", "produce", "run_channel"]
