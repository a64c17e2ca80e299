from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass


def _parse_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


def _require_non_negative(owner: object, *names: str) -> None:
    for name in names:
        value = getattr(owner, name)
        if value < 0:
            raise ValueError(f"{name} must be non-negative, got {value}")


@dataclass(slots=True)
class ChannelConfig:
    """Knobs for a single producer/consumer run over a bounded channel.

    Delays are per item and expressed in milliseconds. ``fail_on`` injects a
    producer fault at that item number; ``0`` disables it.
    """

    capacity: int = 5
    items: int = 20
    producer_delay_ms: int = 50
    consumer_delay_ms: int = 150
    fail_on: int = 0

    def __post_init__(self) -> None:
        _require_non_negative(
            self, "capacity", "items", "producer_delay_ms", "consumer_delay_ms", "fail_on"
        )
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")

    @property
    def producer_delay(self) -> float:
        return self.producer_delay_ms / 1000

    @property
    def consumer_delay(self) -> float:
        return self.consumer_delay_ms / 1000

    def replace(self, **overrides: int) -> ChannelConfig:
        return dataclasses.replace(self, **overrides)

    @classmethod
    def from_env(cls) -> ChannelConfig:
        """Load overrides from environment variables.

        Supported variables (all optional, non-negative integers):

        ``WORKCHANNEL_CAPACITY``
            Buffer capacity; values below ``1`` are ignored.
        ``WORKCHANNEL_ITEMS``
            Number of items the producer generates.
        ``WORKCHANNEL_PRODUCER_DELAY_MS`` / ``WORKCHANNEL_CONSUMER_DELAY_MS``
            Simulated per-item work on each side.
        ``WORKCHANNEL_FAIL_ON``
            Item number at which the producer raises.

        Malformed or negative values fall back to the defaults.
        """

        env = os.environ
        defaults = cls()

        capacity = _parse_int(env.get("WORKCHANNEL_CAPACITY"))
        if capacity is not None and capacity < 1:
            capacity = None
        items = _parse_int(env.get("WORKCHANNEL_ITEMS"))
        producer_delay = _parse_int(env.get("WORKCHANNEL_PRODUCER_DELAY_MS"))
        consumer_delay = _parse_int(env.get("WORKCHANNEL_CONSUMER_DELAY_MS"))
        fail_on = _parse_int(env.get("WORKCHANNEL_FAIL_ON"))

        return cls(
            capacity=capacity if capacity is not None else defaults.capacity,
            items=items if items is not None else defaults.items,
            producer_delay_ms=(
                producer_delay if producer_delay is not None else defaults.producer_delay_ms
            ),
            consumer_delay_ms=(
                consumer_delay if consumer_delay is not None else defaults.consumer_delay_ms
            ),
            fail_on=fail_on if fail_on is not None else defaults.fail_on,
        )


@dataclass(slots=True)
class DemoSettings:
    """Settings shared by every demo command."""

    iterations: int = 5
    delay_ms: int = 150
    verbose: bool = False

    def __post_init__(self) -> None:
        _require_non_negative(self, "iterations", "delay_ms")

    @property
    def delay(self) -> float:
        return self.delay_ms / 1000

    @classmethod
    def from_env(cls) -> DemoSettings:
        """Load ``WORKCHANNEL_ITERATIONS``, ``WORKCHANNEL_DELAY_MS`` and
        ``WORKCHANNEL_VERBOSE``, ignoring malformed values."""

        env = os.environ
        iterations = _parse_int(env.get("WORKCHANNEL_ITERATIONS"))
        delay_ms = _parse_int(env.get("WORKCHANNEL_DELAY_MS"))
        verbose = _parse_bool(env.get("WORKCHANNEL_VERBOSE"))
        defaults = cls()
        return cls(
            iterations=iterations if iterations is not None else defaults.iterations,
            delay_ms=delay_ms if delay_ms is not None else defaults.delay_ms,
            verbose=verbose if verbose is not None else defaults.verbose,
        )


__all__ = ["ChannelConfig", "DemoSettings"]
