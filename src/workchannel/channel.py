from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import suppress
from functools import partial
from typing import Any, Generic, TypeVar

from .cancellation import CancellationToken, resolve_waiter
from .errors import ChannelClosed, UpstreamFault
from .events import ChannelEvent, EventKind

T = TypeVar("T")

DEFAULT_CAPACITY = 5

_LOGGER = logging.getLogger("workchannel.channel")


class BoundedWorkQueue(Generic[T]):
    """Fixed-capacity FIFO channel between a producer and a consumer.

    ``enqueue`` suspends while the buffer is full and ``dequeue`` suspends
    while it is empty and open. Both take an optional
    :class:`~workchannel.cancellation.CancellationToken`; a token that fires
    while a call is suspended wakes it and raises
    :class:`~workchannel.errors.OperationCancelled`.

    The buffer is owned by the event loop thread. Every mutation happens
    between two ``await`` points, which is the only mutual exclusion the
    structure relies on; do not share an instance across event loops.

    ``None`` marks the end of the stream, so it cannot be enqueued.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, *, name: str = "channel") -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._name = name
        self._buffer: deque[T] = deque()
        # Parked coroutines waiting for an item / for free space.
        self._getters: deque[asyncio.Future[None]] = deque()
        self._putters: deque[asyncio.Future[None]] = deque()
        self._closed = False
        self._fault: BaseException | None = None
        self._high_water = 0
        self._listeners: list[Callable[[ChannelEvent], None]] = []

    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def fault(self) -> BaseException | None:
        return self._fault

    @property
    def drained(self) -> bool:
        """True once the channel is closed and every item was dequeued."""

        return self._closed and not self._buffer

    @property
    def high_water_mark(self) -> int:
        """Largest number of items ever resident at once."""

        return self._high_water

    def qsize(self) -> int:
        return len(self._buffer)

    def empty(self) -> bool:
        return not self._buffer

    def full(self) -> bool:
        return len(self._buffer) >= self._capacity

    # ------------------------------------------------------------------

    async def enqueue(self, item: T, token: CancellationToken | None = None) -> None:
        """Store *item*, suspending while the buffer is at capacity.

        Raises :class:`ChannelClosed` once :meth:`close` has been called and
        :class:`OperationCancelled` if *token* fires first.
        """

        if item is None:
            raise TypeError("None is reserved as the end-of-stream marker")
        token = token if token is not None else CancellationToken.none()
        while True:
            if self._closed:
                raise ChannelClosed(self._name)
            token.raise_if_cancelled()
            if len(self._buffer) < self._capacity:
                break
            await self._park(self._putters, token)
        self._store(item)

    def try_enqueue(self, item: T) -> bool:
        """Store *item* without waiting; return ``False`` when full."""

        if item is None:
            raise TypeError("None is reserved as the end-of-stream marker")
        if self._closed:
            raise ChannelClosed(self._name)
        if len(self._buffer) >= self._capacity:
            return False
        self._store(item)
        return True

    async def dequeue(self, token: CancellationToken | None = None) -> T | None:
        """Return the next item, or ``None`` once closed and drained.

        Buffered items are always delivered before a fault passed to
        :meth:`close` surfaces as :class:`UpstreamFault`.
        """

        token = token if token is not None else CancellationToken.none()
        while True:
            token.raise_if_cancelled()
            if self._buffer:
                return self._take()
            if self._closed:
                return self._end_of_stream()
            await self._park(self._getters, token)

    def try_dequeue(self) -> T | None:
        """Return the next item without waiting.

        ``None`` means either "empty right now" or "drained"; check
        :attr:`drained` to tell them apart.
        """

        if self._buffer:
            return self._take()
        if self._closed:
            return self._end_of_stream()
        return None

    def close(self, fault: BaseException | None = None) -> bool:
        """Mark the stream complete, optionally carrying a terminal fault.

        Only the first call has an effect; it returns ``True``. Later calls
        are no-ops and return ``False``.
        """

        if self._closed:
            return False
        self._closed = True
        self._fault = fault
        # Wake everybody: consumers observe closed+empty, producers fail.
        for waiters in (self._getters, self._putters):
            while waiters:
                resolve_waiter(waiters.popleft())
        if fault is None:
            _LOGGER.debug("channel %s closed with %d buffered", self._name, len(self._buffer))
            self._emit("closed")
        else:
            _LOGGER.info(
                "channel %s closed with fault %s: %s",
                self._name,
                type(fault).__name__,
                fault,
            )
            self._emit("faulted", fault)
        return True

    # ------------------------------------------------------------------

    def __aiter__(self) -> AsyncIterator[T]:
        return self.iterate()

    async def iterate(self, token: CancellationToken | None = None) -> AsyncIterator[T]:
        """Yield items until the channel is closed and drained."""

        while True:
            item = await self.dequeue(token)
            if item is None:
                return
            yield item

    # ------------------------------------------------------------------

    def add_listener(self, listener: Callable[[ChannelEvent], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[ChannelEvent], None]) -> None:
        with suppress(ValueError):
            self._listeners.remove(listener)

    # ------------------------------------------------------------------

    def _store(self, item: T) -> None:
        self._buffer.append(item)
        self._high_water = max(self._high_water, len(self._buffer))
        self._wake_next(self._getters)
        self._emit("enqueued", item)

    def _take(self) -> T:
        item = self._buffer.popleft()
        self._wake_next(self._putters)
        self._emit("dequeued", item)
        return item

    def _end_of_stream(self) -> None:
        if self._fault is not None:
            raise UpstreamFault(self._fault) from self._fault
        return None

    async def _park(
        self,
        waiters: deque[asyncio.Future[None]],
        token: CancellationToken,
    ) -> None:
        waiter = asyncio.get_running_loop().create_future()
        waiters.append(waiter)
        unregister = token.register(partial(resolve_waiter, waiter))
        try:
            await waiter
        except asyncio.CancelledError:
            waiter.cancel()
            with suppress(ValueError):
                waiters.remove(waiter)
            if not waiter.cancelled():
                # We were woken before the task got cancelled; hand it on.
                self._wake_next(waiters)
            raise
        finally:
            unregister()
        with suppress(ValueError):
            waiters.remove(waiter)
        if token.cancelled:
            self._wake_next(waiters)

    @staticmethod
    def _wake_next(waiters: deque[asyncio.Future[None]]) -> None:
        while waiters:
            waiter = waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return

    def _emit(self, kind: EventKind, item: Any = None) -> None:
        if not self._listeners:
            return
        event = ChannelEvent(kind=kind, channel=self._name, depth=len(self._buffer), item=item)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # Buffer already mutated; observers cannot undo it.
                _LOGGER.exception("listener failed on %s event for channel %s", kind, self._name)

    def __repr__(self) -> str:  # pragma: no cover - convenience
        state = "closed" if self._closed else "open"
        return (
            f"BoundedWorkQueue(name={self._name!r}, capacity={self._capacity}, "
            f"size={len(self._buffer)}, {state})"
        )


__all__ = ["BoundedWorkQueue", "DEFAULT_CAPACITY"]
