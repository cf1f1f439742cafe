"""Configuration schema for tasktimer.

The dataclasses below describe the timing knobs of the heartbeat sender and
the long-polling client, plus a deterministic simulation scenario that the
command line can replay on a virtual clock.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

from tasktimer.timing.clock import DEFAULT_FIXED_INSTANT


@dataclass(slots=True)
class HeartbeatConfig:
    """Keep-alive cadence; a zero interval disables heartbeats."""

    interval: timedelta = timedelta(seconds=30)


@dataclass(slots=True)
class LongPollingConfig:
    """Endpoint and timing for the long-polling client."""

    url: str
    wait: timedelta = timedelta(seconds=90)
    retry: timedelta = timedelta(seconds=1)
    request_timeout: float = 5.0


@dataclass(slots=True)
class SimulatedTaskConfig:
    """A named task replayed by ``tasktimer simulate``.

    ``period`` of zero schedules a one-shot task.  ``fixed_rate`` selects the
    fixed-rate policy for periodic tasks instead of fixed delay.
    """

    name: str
    delay: timedelta
    period: timedelta = timedelta(0)
    fixed_rate: bool = False
    cancel_after: Optional[int] = None


@dataclass(slots=True)
class SimulationConfig:
    """Virtual clock scenario.

    ``heartbeat`` adds a heartbeat sender using the configured interval to
    the replayed tasks.
    """

    start: datetime = DEFAULT_FIXED_INSTANT
    duration: timedelta = timedelta(seconds=1)
    step: Optional[timedelta] = None
    heartbeat: bool = False
    tasks: Sequence[SimulatedTaskConfig] = field(default_factory=tuple)


@dataclass(slots=True)
class TaskTimerConfig:
    """Top-level configuration bundle."""

    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    polling: Optional[LongPollingConfig] = None
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
