from __future__ import annotations


class ChannelError(Exception):
    """Base class for failures reported by work channels."""


class OperationCancelled(ChannelError):
    """A blocking call observed its cancellation token firing.

    Unlike :class:`asyncio.CancelledError` this is an ordinary exception: the
    caller asked for cooperative cancellation and is expected to stop its loop
    and propagate upward.
    """

    def __init__(self, reason: str | None = None) -> None:
        message = "operation cancelled"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.reason = reason


class ChannelClosed(ChannelError):
    """Raised when a producer writes to a channel that was already closed."""

    def __init__(self, channel: str) -> None:
        super().__init__(f"channel '{channel}' is closed")
        self.channel = channel


class UpstreamFault(ChannelError):
    """The producer closed the channel with a fault.

    Consumers see this only after every buffered item has been delivered.
    """

    def __init__(self, inner: BaseException) -> None:
        super().__init__(f"upstream fault: {type(inner).__name__}: {inner}")
        self.inner = inner


__all__ = [
    "ChannelError",
    "OperationCancelled",
    "ChannelClosed",
    "UpstreamFault",
]
