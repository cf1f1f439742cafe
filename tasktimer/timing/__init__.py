"""Clocks and the task timer."""

from .clock import Clock, FixedClock
from .timer import (
    CallbackTask,
    FixedDelay,
    FixedRate,
    OneShot,
    Period,
    TaskState,
    TaskStateError,
    Timer,
    TimerError,
    TimerTask,
    sleep,
)

__all__ = [
    "CallbackTask",
    "Clock",
    "FixedClock",
    "FixedDelay",
    "FixedRate",
    "OneShot",
    "Period",
    "TaskState",
    "TaskStateError",
    "Timer",
    "TimerError",
    "TimerTask",
    "sleep",
]
