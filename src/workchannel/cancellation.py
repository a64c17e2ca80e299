"""Cooperative cancellation for coroutines blocked on a work channel.

A :class:`CancellationSource` owns a one-shot flag; the read-only
:class:`CancellationToken` it exposes is passed explicitly to every blocking
call. Blocking calls register a wakeup callback on the token instead of
polling, so a cancelled token unblocks them on the next loop iteration.

>>> import asyncio
>>> source = CancellationSource()
>>> source.token.cancelled
False
>>> source.cancel("shutdown")
>>> source.token.cancelled, source.token.reason
(True, 'shutdown')
>>> asyncio.run(sleep(10, source.token))
Traceback (most recent call last):
...
workchannel.errors.OperationCancelled: operation cancelled: shutdown
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from functools import partial
from typing import Any

from .errors import OperationCancelled

Callback = Callable[[], None]


def resolve_waiter(waiter: asyncio.Future[Any]) -> None:
    """Complete *waiter* with ``None`` unless something already settled it."""

    if not waiter.done():
        waiter.set_result(None)


class CancellationToken:
    """Read-only view of a :class:`CancellationSource`."""

    __slots__ = ("_source",)

    def __init__(self, source: CancellationSource) -> None:
        self._source = source

    @classmethod
    def none(cls) -> CancellationToken:
        """Return a token that is never cancelled."""

        return _NEVER.token

    @property
    def cancelled(self) -> bool:
        return self._source._cancelled

    @property
    def reason(self) -> str | None:
        return self._source._reason

    def raise_if_cancelled(self) -> None:
        if self._source._cancelled:
            raise OperationCancelled(self._source._reason)

    def register(self, callback: Callback) -> Callback:
        """Run *callback* once the token fires and return an unregister hook.

        Registering on a token that already fired runs the callback
        immediately.
        """

        return self._source._register(callback)

    async def wait(self) -> None:
        """Suspend until the token fires."""

        if self.cancelled:
            return
        waiter = asyncio.get_running_loop().create_future()
        unregister = self.register(partial(resolve_waiter, waiter))
        try:
            await waiter
        finally:
            unregister()

    def __repr__(self) -> str:  # pragma: no cover - convenience
        return f"CancellationToken(cancelled={self.cancelled!r})"


class CancellationSource:
    """Owner of a one-shot cancellation flag.

    Passing parent tokens links the source: it is cancelled as soon as any
    parent is. Use it as a context manager to detach from parents and drop a
    pending :meth:`cancel_after` timer on exit.
    """

    def __init__(self, *parents: CancellationToken) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callback] = []
        self._timer: asyncio.TimerHandle | None = None
        self.token = CancellationToken(self)
        self._links: list[Callback] = []
        for parent in parents:
            link = partial(self._cancel_from, parent)
            self._links.append(parent.register(link))

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str | None = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        self._drop_timer()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def cancel_after(self, delay: float) -> None:
        """Cancel on the running event loop once *delay* seconds elapse."""

        if delay < 0:
            raise ValueError("delay must be non-negative")
        if self._cancelled:
            return
        self._drop_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self.cancel, "timeout")

    def close(self) -> None:
        self._drop_timer()
        links, self._links = self._links, []
        for unregister in links:
            unregister()

    def __enter__(self) -> CancellationSource:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    # ------------------------------------------------------------------

    def _cancel_from(self, parent: CancellationToken) -> None:
        self.cancel(parent.reason)

    def _register(self, callback: Callback) -> Callback:
        if self._cancelled:
            callback()
            return _noop
        self._callbacks.append(callback)

        def _unregister() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                # Already fired or unregistered.
                return

        return _unregister

    def _drop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __repr__(self) -> str:  # pragma: no cover - convenience
        return f"CancellationSource(cancelled={self._cancelled!r})"


def _noop() -> None:
    return None


async def sleep(delay: float, token: CancellationToken | None = None) -> None:
    """Sleep for *delay* seconds unless *token* fires first.

    Raises :class:`~workchannel.errors.OperationCancelled` when the token is
    already cancelled or fires while sleeping.
    """

    if token is None:
        await asyncio.sleep(delay)
        return
    token.raise_if_cancelled()
    if delay <= 0:
        await asyncio.sleep(0)
        token.raise_if_cancelled()
        return
    loop = asyncio.get_running_loop()
    waiter = loop.create_future()
    timer = loop.call_later(delay, resolve_waiter, waiter)
    unregister = token.register(partial(resolve_waiter, waiter))
    try:
        await waiter
    finally:
        timer.cancel()
        unregister()
    token.raise_if_cancelled()


_NEVER = CancellationSource()


__all__ = [
    "CancellationSource",
    "CancellationToken",
    "resolve_waiter",
    "sleep",
]
