"""Bounded asyncio work channels with cooperative cancellation.

`workchannel` connects one producer coroutine to one consumer coroutine
through a fixed-capacity FIFO buffer. Producers are suspended while the buffer
is full, consumers while it is empty, and both wake promptly when their
cancellation token fires. See individual modules for details.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from .cancellation import CancellationSource, CancellationToken, sleep
from .channel import DEFAULT_CAPACITY, BoundedWorkQueue
from .config import ChannelConfig, DemoSettings
from .drivers import ChannelReport, consume, produce, run_channel
from .errors import ChannelClosed, ChannelError, OperationCancelled, UpstreamFault
from .events import ChannelEvent, observe_channel
from .workloads import WorkloadError, numbered_items, simulate_async_io

__all__ = [
    "BoundedWorkQueue",
    "DEFAULT_CAPACITY",
    "CancellationSource",
    "CancellationToken",
    "ChannelConfig",
    "DemoSettings",
    "ChannelReport",
    "ChannelEvent",
    "ChannelError",
    "ChannelClosed",
    "OperationCancelled",
    "UpstreamFault",
    "WorkloadError",
    "consume",
    "numbered_items",
    "observe_channel",
    "produce",
    "run_channel",
    "simulate_async_io",
    "sleep",
]

try:
    __version__ = version("workchannel")
except PackageNotFoundError:  # pragma: no cover - during local dev
    __version__ = "0.0.0"
