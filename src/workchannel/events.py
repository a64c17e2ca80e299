from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from .channel import BoundedWorkQueue

EventKind = Literal["enqueued", "dequeued", "closed", "faulted"]


@dataclass(frozen=True, slots=True)
class ChannelEvent:
    kind: EventKind
    channel: str
    depth: int
    item: Any = None

    def as_dict(self) -> dict[str, Any]:
        """Represent the event as plain data for logging or testing."""

        return {
            "kind": self.kind,
            "channel": self.channel,
            "depth": self.depth,
            "item": self.item,
        }


@contextmanager
def observe_channel(
    queue: BoundedWorkQueue[Any],
    *,
    logger: logging.Logger | None = None,
    level: int = logging.DEBUG,
) -> Iterator[None]:
    """Context manager that logs channel events during its scope."""

    active_logger = logger or logging.getLogger("workchannel.channel")

    def _listener(event: ChannelEvent) -> None:
        active_logger.log(
            level,
            "channel=%s event=%s depth=%s item=%r",
            event.channel,
            event.kind,
            event.depth,
            event.item,
        )

    queue.add_listener(_listener)
    try:
        yield
    finally:
        queue.remove_listener(_listener)


__all__ = ["ChannelEvent", "EventKind", "observe_channel"]
