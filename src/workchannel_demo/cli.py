from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from collections.abc import Callable
from typing import Any

from workchannel.cancellation import CancellationSource, CancellationToken
from workchannel.config import ChannelConfig, DemoSettings
from workchannel.errors import OperationCancelled, UpstreamFault

from .engine import (
    DEMOS,
    format_table,
    run_await_basics,
    run_channel_demo,
    run_task_whenall,
)

EXIT_OK = 0
EXIT_FAULT = 1
EXIT_CANCELLED = 2


def _non_negative_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return value


def _positive_int(raw: str) -> int:
    value = _non_negative_int(raw)
    if value == 0:
        raise argparse.ArgumentTypeError("expected a positive integer")
    return value


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the demo CLI.

    Defaults come from :meth:`ChannelConfig.from_env` and
    :meth:`DemoSettings.from_env`.
    """

    channel_defaults = ChannelConfig.from_env()
    demo_defaults = DemoSettings.from_env()

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--verbose",
        action=argparse.BooleanOptionalAction,
        default=demo_defaults.verbose,
        help="Log channel and driver activity at DEBUG level",
    )
    common.add_argument(
        "--json",
        action="store_true",
        help="Emit JSON instead of narration and a formatted table",
    )

    timing = argparse.ArgumentParser(add_help=False)
    timing.add_argument(
        "--iterations",
        type=_non_negative_int,
        default=demo_defaults.iterations,
        help="Number of steps or tasks",
    )
    timing.add_argument(
        "--delay-ms",
        type=_non_negative_int,
        default=demo_defaults.delay_ms,
        help="Delay awaited per step or task phase",
    )

    parser = argparse.ArgumentParser(
        prog="workchannel-demo",
        description="Async producer/consumer and task coordination demos.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", parents=[common], help="List available demos")

    sub.add_parser(
        "await-basics",
        parents=[common, timing],
        help="Show which thread runs a coroutine around each await",
    )

    whenall = sub.add_parser(
        "task-whenall",
        parents=[common, timing],
        help="Run tasks concurrently and report failures and cancellation",
    )
    whenall.add_argument(
        "--fail-on",
        type=_non_negative_int,
        default=0,
        help="Task number that raises (0 disables)",
    )
    whenall.add_argument(
        "--cancel-after-ms",
        type=_non_negative_int,
        default=0,
        help="Cancel every task after this delay (0 disables)",
    )

    channel = sub.add_parser(
        "channel",
        parents=[common],
        help="Producer/consumer over a bounded channel",
    )
    channel.add_argument("--capacity", type=_positive_int, default=channel_defaults.capacity)
    channel.add_argument("--items", type=_non_negative_int, default=channel_defaults.items)
    channel.add_argument(
        "--producer-delay-ms",
        type=_non_negative_int,
        default=channel_defaults.producer_delay_ms,
    )
    channel.add_argument(
        "--consumer-delay-ms",
        type=_non_negative_int,
        default=channel_defaults.consumer_delay_ms,
    )
    channel.add_argument(
        "--fail-on",
        type=_non_negative_int,
        default=channel_defaults.fail_on,
        help="Item number at which the producer raises (0 disables)",
    )
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _narrator(args: argparse.Namespace) -> Callable[[str], None]:
    if args.json:
        return lambda _line: None
    return print


def _print_settings(title: str, values: dict[str, Any]) -> None:
    print(f"== {title}")
    for key, value in values.items():
        print(f"{key}: {value}")


def _report_error(exc: BaseException) -> None:
    print(f"error: {type(exc).__name__}: {exc}", file=sys.stderr)


def cmd_list(args: argparse.Namespace) -> int:
    if args.json:
        payload = {"demos": [{"command": name, "summary": text} for name, text in DEMOS]}
        print(json.dumps(payload, indent=2))
    else:
        print(format_table(("command", "what it shows"), DEMOS))
    return EXIT_OK


async def cmd_await_basics(args: argparse.Namespace, token: CancellationToken) -> int:
    settings = DemoSettings(iterations=args.iterations, delay_ms=args.delay_ms)
    if not args.json:
        _print_settings(
            "await-basics",
            {"Iterations": settings.iterations, "DelayMs": settings.delay_ms},
        )
    try:
        records = await run_await_basics(settings, token=token, emit=_narrator(args))
    except OperationCancelled as exc:
        _report_error(exc)
        return EXIT_CANCELLED
    if args.json:
        payload = {
            "command": "await-basics",
            "steps": [
                {
                    "step": record.step,
                    "thread_before": record.thread_before,
                    "thread_after": record.thread_after,
                    "elapsed_ms": record.elapsed_ms,
                }
                for record in records
            ],
        }
        print(json.dumps(payload, indent=2))
    else:
        print("Done.")
    return EXIT_OK


async def cmd_task_whenall(args: argparse.Namespace, token: CancellationToken) -> int:
    settings = DemoSettings(iterations=args.iterations, delay_ms=args.delay_ms)
    if not args.json:
        _print_settings(
            "task-whenall",
            {
                "Iterations": settings.iterations,
                "DelayMs": settings.delay_ms,
                "FailOn": args.fail_on,
                "CancelAfterMs": args.cancel_after_ms,
            },
        )
    report = await run_task_whenall(
        settings,
        fail_on=args.fail_on,
        cancel_after_ms=args.cancel_after_ms,
        token=token,
        emit=_narrator(args),
    )
    if args.json:
        print(json.dumps({"command": "task-whenall", **report.as_dict()}, indent=2))
    else:
        rows = [(str(o.task), o.status, o.error) for o in report.outcomes]
        print(format_table(("task", "status", "error"), rows))
        print(f"elapsed: {report.elapsed_ms:.1f} ms")
    if report.error is None:
        return EXIT_OK
    if isinstance(report.error, ExceptionGroup):
        for inner in report.error.exceptions:
            _report_error(inner)
    else:
        _report_error(report.error)
    return EXIT_CANCELLED if report.status == "cancelled" else EXIT_FAULT


async def cmd_channel(args: argparse.Namespace, token: CancellationToken) -> int:
    config = ChannelConfig(
        capacity=args.capacity,
        items=args.items,
        producer_delay_ms=args.producer_delay_ms,
        consumer_delay_ms=args.consumer_delay_ms,
        fail_on=args.fail_on,
    )
    if not args.json:
        _print_settings(
            "channel",
            {
                "Capacity": config.capacity,
                "Items": config.items,
                "ProducerDelayMs": config.producer_delay_ms,
                "ConsumerDelayMs": config.consumer_delay_ms,
            },
        )
    try:
        report = await run_channel_demo(config, token=token, emit=_narrator(args))
    except OperationCancelled as exc:
        _report_error(exc)
        return EXIT_CANCELLED
    except UpstreamFault as exc:
        _report_error(exc)
        return EXIT_FAULT
    if args.json:
        print(json.dumps({"command": "channel", "report": report.as_dict()}, indent=2))
    else:
        row = (
            str(report.capacity),
            str(report.produced),
            str(report.consumed),
            str(report.high_water_mark),
            f"{report.elapsed_ms:.1f}",
        )
        print(format_table(("capacity", "produced", "consumed", "high_water", "elapsed_ms"), [row]))
        print("Done.")
    return EXIT_OK


_ASYNC_COMMANDS = {
    "await-basics": cmd_await_basics,
    "task-whenall": cmd_task_whenall,
    "channel": cmd_channel,
}


def _install_interrupt(source: CancellationSource) -> Callable[[], None]:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, source.cancel, "interrupted")
    except (NotImplementedError, RuntimeError):
        # Windows loops and non-main threads cannot install signal handlers.
        return lambda: None
    return lambda: loop.remove_signal_handler(signal.SIGINT)


async def _run_async(args: argparse.Namespace) -> int:
    command = _ASYNC_COMMANDS[args.command]
    with CancellationSource() as source:
        uninstall = _install_interrupt(source)
        try:
            return await command(args, source.token)
        finally:
            uninstall()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point used by the ``workchannel-demo`` script."""

    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    if args.command == "list":
        return cmd_list(args)
    return asyncio.run(_run_async(args))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
