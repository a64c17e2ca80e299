from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from workchannel.cancellation import CancellationSource, CancellationToken, sleep
from workchannel.config import ChannelConfig, DemoSettings
from workchannel.drivers import ChannelReport, run_channel
from workchannel.errors import OperationCancelled
from workchannel.workloads import WorkloadError

Emit = Callable[[str], None]
TaskStatus = Literal["completed", "faulted", "cancelled"]

DEMOS: tuple[tuple[str, str], ...] = (
    ("list", "This list"),
    ("await-basics", "Which thread runs a coroutine before and after each await"),
    ("task-whenall", "Concurrent tasks, aggregated failures, cancellation propagation"),
    ("channel", "Bounded channel producer/consumer, backpressure, cancellation"),
)


def _silent(_: str) -> None:
    return None


# ----------------------------------------------------------------------
# await-basics


@dataclass(slots=True)
class StepRecord:
    step: int
    thread_before: str
    thread_after: str
    elapsed_ms: float


async def run_await_basics(
    settings: DemoSettings,
    *,
    token: CancellationToken | None = None,
    emit: Emit = _silent,
) -> list[StepRecord]:
    """Await ``settings.iterations`` delays, recording the thread around each.

    Coroutines resume on the event loop thread, so both columns match.
    """

    records: list[StepRecord] = []
    for step in range(1, settings.iterations + 1):
        before = threading.current_thread().name
        emit(f"Step {step}: before await (thread {before})")
        started = time.perf_counter()
        await sleep(settings.delay, token)
        after = threading.current_thread().name
        emit(f"Step {step}: after await  (thread {after})")
        records.append(
            StepRecord(
                step=step,
                thread_before=before,
                thread_after=after,
                elapsed_ms=(time.perf_counter() - started) * 1000,
            )
        )
    return records


# ----------------------------------------------------------------------
# task-whenall


@dataclass(slots=True)
class TaskOutcome:
    task: int
    status: TaskStatus
    error: str = ""


@dataclass(slots=True)
class WhenAllReport:
    outcomes: list[TaskOutcome]
    elapsed_ms: float
    error: BaseException | None = field(default=None)

    @property
    def status(self) -> TaskStatus:
        if isinstance(self.error, OperationCancelled):
            return "cancelled"
        if self.error is not None:
            return "faulted"
        return "completed"

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "elapsed_ms": self.elapsed_ms,
            "error": _describe(self.error) if self.error is not None else "",
            "outcomes": [
                {"task": outcome.task, "status": outcome.status, "error": outcome.error}
                for outcome in self.outcomes
            ],
        }


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


async def _whenall_work(task_id: int, delay: float, fail_on: int, token: CancellationToken) -> None:
    await sleep(delay, token)
    if task_id == fail_on:
        raise WorkloadError(f"Boom from task {task_id}")
    await sleep(delay, token)


def _outcome(task_id: int, task: asyncio.Task[None]) -> TaskOutcome:
    if task.cancelled():
        return TaskOutcome(task=task_id, status="cancelled")
    exc = task.exception()
    if exc is None:
        return TaskOutcome(task=task_id, status="completed")
    if isinstance(exc, OperationCancelled):
        return TaskOutcome(task=task_id, status="cancelled", error=_describe(exc))
    return TaskOutcome(task=task_id, status="faulted", error=_describe(exc))


async def run_task_whenall(
    settings: DemoSettings,
    *,
    fail_on: int = 0,
    cancel_after_ms: int = 0,
    token: CancellationToken | None = None,
    emit: Emit = _silent,
) -> WhenAllReport:
    """Start ``settings.iterations`` tasks and wait for every one of them.

    Task *fail_on* raises halfway through. With ``cancel_after_ms`` set, all
    tasks share a token cancelled after that delay. Faults are aggregated
    into an :class:`ExceptionGroup`; when nothing faulted but some task was
    cancelled, the report carries that :class:`OperationCancelled` instead.
    """

    if fail_on < 0 or cancel_after_ms < 0:
        raise ValueError("fail_on and cancel_after_ms must be non-negative")
    parents = (token,) if token is not None else ()
    started = time.perf_counter()
    with CancellationSource(*parents) as source:
        if cancel_after_ms > 0:
            source.cancel_after(cancel_after_ms / 1000)
            emit("Cancellation scheduled.")
        tasks = [
            asyncio.create_task(
                _whenall_work(task_id, settings.delay, fail_on, source.token),
                name=f"whenall-{task_id}",
            )
            for task_id in range(1, settings.iterations + 1)
        ]
        if tasks:
            try:
                await asyncio.wait(tasks)
            except asyncio.CancelledError:
                for task in tasks:
                    task.cancel()
                raise
    elapsed_ms = (time.perf_counter() - started) * 1000

    outcomes = [_outcome(task_id, task) for task_id, task in enumerate(tasks, start=1)]
    faults: list[Exception] = []
    cancellations: list[OperationCancelled] = []
    for task in tasks:
        if task.cancelled():
            continue
        exc = task.exception()
        if isinstance(exc, OperationCancelled):
            cancellations.append(exc)
        elif isinstance(exc, Exception):
            faults.append(exc)

    error: BaseException | None = None
    if faults:
        error = ExceptionGroup("task-whenall failed", faults)
        emit(f"Caught {_describe(error)}")
    elif cancellations:
        error = cancellations[0]
        emit("Caught OperationCancelled from the task set.")
    else:
        emit("All tasks completed successfully.")
    return WhenAllReport(outcomes=outcomes, elapsed_ms=elapsed_ms, error=error)


# ----------------------------------------------------------------------
# channel


async def run_channel_demo(
    config: ChannelConfig,
    *,
    token: CancellationToken | None = None,
    emit: Emit = _silent,
) -> ChannelReport:
    """Run a producer/consumer pair, narrating every item moved."""

    def _produced(item: int) -> None:
        emit(f"Produced {item}")

    def _consumed(item: int) -> None:
        emit(f"Consumed {item}")

    return await run_channel(
        config,
        token=token,
        on_produced=_produced,
        on_consumed=_consumed,
    )


# ----------------------------------------------------------------------


def format_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Render rows as a simple fixed-width table."""

    if not rows:
        return "No results available"
    widths = [len(header) for header in headers]
    for row in rows:
        for idx, value in enumerate(row):
            widths[idx] = max(widths[idx], len(value))
    border = " ".join("-" * width for width in widths)
    lines = [border]
    lines.append(" ".join(header.ljust(widths[idx]) for idx, header in enumerate(headers)))
    lines.append(border)
    for row in rows:
        lines.append(" ".join(value.ljust(widths[idx]) for idx, value in enumerate(row)))
    lines.append(border)
    return "\n".join(lines)


__all__ = [
    "DEMOS",
    "StepRecord",
    "TaskOutcome",
    "WhenAllReport",
    "format_table",
    "run_await_basics",
    "run_channel_demo",
    "run_task_whenall",
]
