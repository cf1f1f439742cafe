"""Command line entry point for tasktimer."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .clients import HeartbeatSender, LongPollingClient
from .config import LongPollingConfig, SimulatedTaskConfig, TaskTimerConfig
from .config_loader import load_config
from .log_format import configure_logging
from .timing import Clock, FixedClock, Timer, TimerError, TimerTask
from .timing.clock import from_millis


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="tasktimer helper CLI")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level for tasktimer loggers (default: WARNING)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit log records as JSON lines",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    simulate = sub.add_parser(
        "simulate",
        help="Replay the configured tasks on a virtual clock",
    )
    simulate.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to the YAML configuration file",
    )
    simulate.add_argument(
        "--ticks",
        type=int,
        default=None,
        help="Milliseconds to simulate (default: simulation.duration)",
    )
    simulate.add_argument(
        "--step",
        type=int,
        default=None,
        help="Advance the clock in steps of this many milliseconds",
    )

    poll = sub.add_parser(
        "poll",
        help="Long-poll the configured URL and print received messages",
    )
    poll.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to the YAML configuration file",
    )
    poll.add_argument(
        "--duration",
        type=float,
        default=60.0,
        help="How many seconds to poll for (default: 60)",
    )

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, json_output=args.log_json)

    try:
        if args.command == "simulate":
            return _command_simulate(args)
        if args.command == "poll":
            return _command_poll(args)
    except (TimerError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    parser.error("unknown command")
    return 1


class RecordingTask(TimerTask):
    """Append one entry to ``firings`` per run."""

    def __init__(
        self,
        name: str,
        clock: Clock,
        firings: List[Dict[str, Any]],
        cancel_after: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.name = name
        self.runs = 0
        self._clock = clock
        self._firings = firings
        self._cancel_after = cancel_after

    def run(self) -> None:
        self.runs += 1
        self._firings.append(
            {
                "task": self.name,
                "run": self.runs,
                "at": self._clock.now().isoformat(),
                "scheduled": from_millis(self.scheduled_execution_time()).isoformat(),
            }
        )
        if self._cancel_after is not None and self.runs >= self._cancel_after:
            self.cancel()


def run_simulation(
    config: TaskTimerConfig, ticks: Optional[int] = None, step: Optional[int] = None
) -> Dict[str, Any]:
    """Replay ``config.simulation`` and return a JSON serialisable report."""

    simulation = config.simulation
    clock = Clock.fixed(simulation.start)
    timer = Timer.create_null(clock)
    firings: List[Dict[str, Any]] = []

    tasks = [RecordingTask(item.name, clock, firings, item.cancel_after) for item in simulation.tasks]
    for task, item in zip(tasks, simulation.tasks):
        _schedule(timer, task, item)

    if simulation.heartbeat:
        heartbeat = HeartbeatSender(
            timer,
            lambda message: firings.append({"task": message, "at": clock.now().isoformat()}),
            _millis(config.heartbeat.interval),
        )
        heartbeat.start()

    total = ticks if ticks is not None else _millis(simulation.duration)
    if step is None:
        step = _millis(simulation.step) if simulation.step is not None else total
    if step <= 0:
        raise ValueError("step must be positive")
    _advance(timer, clock, total, step)

    return {
        "start": simulation.start.isoformat(),
        "end": clock.now().isoformat(),
        "firings": firings,
        "tasks": [
            {
                "name": task.name,
                "state": task.state.value,
                "runs": task.runs,
                "next_execution_time": from_millis(task.next_execution_time).isoformat(),
            }
            for task in tasks
        ],
    }


def _schedule(timer: Timer, task: RecordingTask, item: SimulatedTaskConfig) -> None:
    delay = _millis(item.delay)
    period = _millis(item.period)
    if item.fixed_rate:
        timer.schedule_at_fixed_rate(task, delay, period)
    else:
        timer.schedule(task, delay, period)


def _advance(timer: Timer, clock: FixedClock, total: int, step: int) -> None:
    elapsed = 0
    while elapsed < total:
        ticks = min(step, total - elapsed)
        timer.simulate_task_execution(ticks=ticks)
        elapsed += ticks


def _millis(value: timedelta) -> int:
    return int(round(value.total_seconds() * 1000))


def _command_simulate(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    report = run_simulation(config, ticks=args.ticks, step=args.step)
    print(json.dumps(report, indent=2, ensure_ascii=False))
    return 0


def _command_poll(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    if config.polling is None:
        raise ValueError("configuration has no polling section")
    try:
        asyncio.run(_poll_for(config.polling, max(0.0, args.duration)))
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        print("Interrupted", file=sys.stderr)
    return 0


async def _poll_for(polling: LongPollingConfig, duration: float) -> None:
    client = LongPollingClient.create(
        polling,
        on_message=lambda message: print(message, flush=True),
        on_error=lambda exc: print(f"poll failed: {exc}", file=sys.stderr),
    )
    async with client:
        await client.connect(polling.url)
        await asyncio.sleep(duration)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
