"""
main.py — taskagenda diagnostic CLI

Usage:
    python -m taskagenda demo                         # three echo tasks: 0, 500, 1000 ms
    python -m taskagenda demo --delay-ms 250 250 900  # same-delay tasks share a group
    python -m taskagenda snapshot                     # empty scheduler with active settings
    python -m taskagenda demo --log-level DEBUG
    python -m taskagenda demo --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from typing import Any, Optional, Sequence

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from taskagenda.exceptions import ConfigError

console = Console()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="taskagenda",
        description="taskagenda — single-timer in-memory delayed task scheduler",
    )
    parser.add_argument(
        "subcommand",
        choices=["demo", "snapshot"],
        help="'demo' — schedule echo tasks and watch them drain. "
             "'snapshot' — print the scheduler state and exit.",
    )
    parser.add_argument(
        "--delay-ms",
        type=int,
        nargs="+",
        default=[0, 500, 1000],
        help="Delays (ms) for the demo tasks (default: 0 500 1000)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for the demo tasks before giving up (default: 30)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $TASKAGENDA_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config and set up logging. Returns (settings, log).

    Exits with code 1 after printing a clear message if the config is invalid.
    """
    from taskagenda.config.settings import load_settings
    from taskagenda.observability.logger import get_logger, setup_logging_from_settings

    load_dotenv()
    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        print(f"\n❌  {exc}\n", file=sys.stderr)
        sys.exit(1)

    if args.log_level:
        settings.logging = settings.logging.model_copy(update={"level": args.log_level})
    setup_logging_from_settings(settings)
    return settings, get_logger("taskagenda.main")


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────

def render_snapshot(snapshot: dict[str, Any], title: str = "Scheduler") -> None:
    """Print a Scheduler.to_snapshot() dict as a task table plus a tracker panel."""
    tasks = snapshot["task_list"]["tasks"]
    timeline = snapshot["task_list"]["timeline"]
    group_of = {task_id: i for i, group in enumerate(timeline) for task_id in group}
    tracked = set(snapshot["next_task_ids"])

    table = Table(title=f"  {title}", box=box.ROUNDED, border_style="dim", show_lines=False)
    table.add_column("Group", no_wrap=True, justify="right")
    table.add_column("Id", style="cyan bold", no_wrap=True)
    table.add_column("Name", no_wrap=True)
    table.add_column("Executes at (UTC)", no_wrap=True)
    table.add_column("Payload")

    for task_id, info in sorted(tasks.items(), key=lambda kv: group_of.get(kv[0], -1)):
        marker = "[green]●[/] " if task_id in tracked else ""
        table.add_row(
            str(group_of.get(task_id, "-")),
            f"{marker}{task_id}",
            info["name"] or "[dim]unset[/]",
            info["execution_time"],
            f"{info['payload_function']}({', '.join(info['payload_arguments'])})",
        )

    if tasks:
        console.print(table)
    else:
        console.print(f"[dim]{title}: no pending tasks.[/]")

    stats = snapshot["stats"]
    timer = snapshot["active_timer"]
    console.print(
        Panel(
            f"next execution: {snapshot['next_execution_time'] or '—'}\n"
            f"active timer:   {timer or '—'}\n"
            f"runs: {stats['total_runs']} "
            f"(ok {stats['successful_runs']}, failed {stats['failed_runs']}) · "
            f"timer arms: {stats['timer_arms']}",
            title="Tracker",
            border_style="dim",
        )
    )


# ─────────────────────────────────────────────────────────────────────────────
# Subcommands
# ─────────────────────────────────────────────────────────────────────────────

async def run_demo(delays_ms: Sequence[int], timeout_s: float) -> int:
    from taskagenda.scheduler.scheduler import get_scheduler
    from taskagenda.scheduler.task import Task

    scheduler = get_scheduler()
    started = time.monotonic()

    def echo(label: str) -> None:
        console.print(f"[green]✓[/] {label} ran at +{time.monotonic() - started:.3f}s")

    tasks = []
    for i, delay in enumerate(delays_ms):
        task = Task.create_with_execution_delay_ms(delay, echo, f"task-{i} ({delay} ms)")
        task.name = f"task-{i}"
        tasks.append(task)
    scheduler.add_tasks(*tasks)
    render_snapshot(scheduler.to_snapshot(), title="After add_tasks")

    deadline = time.monotonic() + timeout_s
    while scheduler.task_count() > 0:
        if time.monotonic() > deadline:
            console.print(f"[red]Timed out with {scheduler.task_count()} task(s) pending.[/]")
            return 1
        await asyncio.sleep(0.05)

    render_snapshot(scheduler.to_snapshot(), title="Drained")
    return 0


def run_snapshot() -> int:
    from taskagenda.scheduler.scheduler import get_scheduler

    render_snapshot(get_scheduler().to_snapshot())
    return 0


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    _settings, log = bootstrap(args)
    log.info("cli.start", subcommand=args.subcommand)

    if any(d < 0 for d in args.delay_ms):
        console.print("[red]--delay-ms values must be >= 0[/]")
        return 2

    if args.subcommand == "demo":
        return await run_demo(args.delay_ms, args.timeout)
    return run_snapshot()


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))
