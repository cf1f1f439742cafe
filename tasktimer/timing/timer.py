"""Single-threaded scheduling of one-shot and periodic tasks.

A :class:`Timer` keeps its tasks in a queue ordered by the next execution
time and runs a "peek, decide, act" loop: cancelled heads are dropped, due
heads are fired (and re-armed when periodic) and otherwise one wait is armed
for the head through the environment's delay primitive.  The primitive is
anything with an :meth:`asyncio.AbstractEventLoop.call_later` compatible
method, so a real timer runs on an asyncio event loop while
:meth:`Timer.create_null` uses a stub that never fires on its own and is
driven with :meth:`Timer.simulate_task_execution` instead.
"""
from __future__ import annotations

import asyncio
import bisect
import enum
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Protocol, Tuple, Union

from tasktimer.timing.clock import Clock, FixedClock, to_millis

logger = logging.getLogger(__name__)


class TimerError(RuntimeError):
    """Generic timer usage error."""


class TaskStateError(TimerError):
    """Raised when a task is scheduled outside of the ``created`` state."""


class TaskState(str, enum.Enum):
    """Lifecycle of a :class:`TimerTask`; only the owning timer advances it."""

    CREATED = "created"
    SCHEDULED = "scheduled"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class OneShot:
    """Run once, then leave the queue."""

    millis: float = 0

    @property
    def is_periodic(self) -> bool:
        """Always ``False``."""

        return False

    def next_execution_time(self, scheduled: float, now: float) -> float:
        """Never called; one-shot tasks leave the queue when they fire."""

        raise TimerError("one-shot tasks are never re-armed")

    def scheduled_execution_time(self, next_execution_time: float) -> float:
        """Return ``next_execution_time`` unchanged; nothing was re-armed."""

        return next_execution_time


@dataclass(frozen=True, slots=True)
class FixedDelay:
    """Measure the next run from the actual firing instant; delays accumulate."""

    millis: float

    def __post_init__(self) -> None:
        if self.millis <= 0:
            raise ValueError("period must be positive")

    @property
    def is_periodic(self) -> bool:
        """Always ``True``; fixed-delay tasks stay queued until cancelled."""

        return True

    def next_execution_time(self, scheduled: float, now: float) -> float:
        """Return ``now`` plus the period; ``scheduled`` is ignored."""

        return now + self.millis

    def scheduled_execution_time(self, next_execution_time: float) -> float:
        return next_execution_time - self.millis


@dataclass(frozen=True, slots=True)
class FixedRate:
    """Measure the next run from the previously scheduled instant; no drift."""

    millis: float

    def __post_init__(self) -> None:
        if self.millis <= 0:
            raise ValueError("period must be positive")

    @property
    def is_periodic(self) -> bool:
        """Always ``True``; fixed-rate tasks stay queued until cancelled."""

        return True

    def next_execution_time(self, scheduled: float, now: float) -> float:
        """Return the instant of the next run after the one due at ``scheduled``."""

        return scheduled + self.millis

    def scheduled_execution_time(self, next_execution_time: float) -> float:
        return next_execution_time - self.millis


Period = Union[OneShot, FixedDelay, FixedRate]
ONE_SHOT = OneShot()

DelayOrTime = Union[int, float, datetime]


class WaitHandle(Protocol):
    def cancel(self) -> None:
        ...


class DelayPrimitive(Protocol):
    """Run ``callback`` once after ``delay`` seconds."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> WaitHandle:
        ...


class TimerTask:
    """A unit of work that a :class:`Timer` can schedule.

    Subclasses implement :meth:`run` and must call ``super().__init__()``.
    Scheduling metadata is owned by the timer; the task only reads it.
    """

    def __init__(self) -> None:
        self._state = TaskState.CREATED
        self._next_execution_time: float = 0
        self._period: Period = ONE_SHOT
        self._sequence = 0

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def next_execution_time(self) -> float:
        """Absolute instant, in epoch milliseconds, of the next run."""

        return self._next_execution_time

    @property
    def period(self) -> Period:
        return self._period

    def run(self) -> None:
        raise NotImplementedError

    def cancel(self) -> bool:
        """Cancel the task.

        Returns ``True`` if the task was waiting for a one-time run or is
        periodic, ``False`` if it already ran once, was never scheduled or
        was already cancelled.  The queue entry is left in place and dropped
        lazily by the timer.
        """

        if self._state is TaskState.EXECUTED:
            return False
        was_scheduled = self._state is TaskState.SCHEDULED
        self._state = TaskState.CANCELLED
        return was_scheduled

    def scheduled_execution_time(self) -> float:
        """Return the instant the most recent actual run was scheduled for.

        A task body can compare it with the clock to skip late work::

            def run(self):
                if clock.millis() - self.scheduled_execution_time() >= MAX_TARDINESS:
                    return
        """

        return self._period.scheduled_execution_time(self._next_execution_time)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(state={self._state.value}, "
            f"next_execution_time={self._next_execution_time}, period={self._period})"
        )


class CallbackTask(TimerTask):
    """Adapt a plain callable to :class:`TimerTask`."""

    def __init__(self, callback: Callable[[], Any], name: Optional[str] = None) -> None:
        super().__init__()
        self._callback = callback
        self.name = name or getattr(callback, "__name__", "task")

    def run(self) -> None:
        self._callback()


class _StubHandle:
    __slots__ = ("cancelled",)

    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class CallLaterStub:
    """Delay primitive that records the requested waits but never fires."""

    def __init__(self) -> None:
        self.last_delay: Optional[float] = None
        self._handle: Optional[_StubHandle] = None

    @property
    def is_waiting(self) -> bool:
        return self._handle is not None and not self._handle.cancelled

    def call_later(self, delay: float, callback: Callable[[], Any]) -> WaitHandle:
        self.last_delay = delay
        self._handle = _StubHandle()
        return self._handle


class Timer:
    """Schedule :class:`TimerTask` objects for one-time or repeated runs."""

    @classmethod
    def create(cls, loop: Optional[asyncio.AbstractEventLoop] = None) -> "Timer":
        """Return a timer on the system clock and ``loop`` (default: running loop)."""

        return cls(Clock.system(), loop or asyncio.get_running_loop())

    @classmethod
    def create_null(cls, clock: Optional[FixedClock] = None) -> "Timer":
        """Return a timer for tests that only moves through simulation."""

        return cls(clock or Clock.fixed(), CallLaterStub())

    def __init__(self, clock: Clock, delays: DelayPrimitive) -> None:
        self._clock = clock
        self._delays = delays
        self._queue: List[TimerTask] = []
        self._sequence = itertools.count()
        self._wait: Optional[WaitHandle] = None
        self._running = False

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def queue(self) -> Tuple[TimerTask, ...]:
        return tuple(self._queue)

    # ------------------------------------------------------------------
    # Public API
    def schedule(self, task: TimerTask, delay_or_time: DelayOrTime, period: float = 0) -> None:
        """Schedule ``task`` after a delay in milliseconds or at a datetime.

        A non-zero ``period`` repeats the task with fixed delay: each run is
        scheduled ``period`` milliseconds after the previous actual run.
        """

        if period < 0:
            raise ValueError("period must not be negative")
        self._do_schedule(task, delay_or_time, FixedDelay(period) if period else ONE_SHOT)

    def schedule_at_fixed_rate(
        self, task: TimerTask, delay_or_time: DelayOrTime, period: float
    ) -> None:
        """Schedule ``task`` for repeated runs every ``period`` milliseconds,
        measured from the first scheduled run."""

        if period <= 0:
            raise ValueError("period must be positive")
        self._do_schedule(task, delay_or_time, FixedRate(period))

    def cancel(self) -> None:
        """Cancel and evict every queued task."""

        for task in self._queue:
            task.cancel()
        self._queue.clear()
        self._disarm()

    def purge(self) -> int:
        """Remove cancelled tasks from the queue and return how many were removed."""

        remaining = [task for task in self._queue if task.state is not TaskState.CANCELLED]
        removed = len(self._queue) - len(remaining)
        self._queue = remaining
        return removed

    def simulate_task_execution(self, ticks: Union[int, float, timedelta] = 1000) -> None:
        """Advance the fixed clock by ``ticks`` milliseconds and fire due tasks."""

        if not isinstance(self._clock, FixedClock):
            raise TimerError("simulation requires a fixed clock")
        self._clock.advance(ticks)
        self._run_main_loop()

    # ------------------------------------------------------------------
    # Internal helpers
    def _do_schedule(self, task: TimerTask, delay_or_time: DelayOrTime, period: Period) -> None:
        if task.state is not TaskState.CREATED:
            raise TaskStateError(f"task already {task.state.value}: {task!r}")
        if isinstance(delay_or_time, datetime):
            next_execution_time: float = to_millis(delay_or_time)
        else:
            if delay_or_time < 0:
                raise ValueError("delay must not be negative")
            next_execution_time = self._clock.millis() + delay_or_time

        task._next_execution_time = next_execution_time
        task._period = period
        task._state = TaskState.SCHEDULED
        self._enqueue(task)
        # A task body that schedules only enqueues; the running loop re-peeks.
        if self._queue[0] is task and not self._running:
            self._run_main_loop()

    def _enqueue(self, task: TimerTask) -> None:
        task._sequence = next(self._sequence)
        bisect.insort(self._queue, task, key=_queue_key)

    def _run_main_loop(self) -> None:
        self._running = True
        try:
            while self._queue:
                task = self._queue[0]
                if task.state is TaskState.CANCELLED:
                    self._queue.pop(0)
                    continue

                now = self._clock.millis()
                execution_time = task._next_execution_time
                if execution_time > now:
                    self._arm(execution_time - now)
                    return

                self._queue.pop(0)
                if task._period.is_periodic:
                    task._next_execution_time = task._period.next_execution_time(
                        execution_time, now
                    )
                    self._enqueue(task)
                else:
                    task._state = TaskState.EXECUTED
                self._fire(task)
            self._disarm()
        finally:
            self._running = False

    @staticmethod
    def _fire(task: TimerTask) -> None:
        try:
            task.run()
        except Exception:  # noqa: BLE001
            logger.exception("timer task %r raised", task, extra={"event": "task_failed"})

    def _arm(self, delay_millis: float) -> None:
        self._disarm()
        self._wait = self._delays.call_later(delay_millis / 1000, self._run_main_loop)

    def _disarm(self) -> None:
        if self._wait is not None:
            self._wait.cancel()
            self._wait = None


def _queue_key(task: TimerTask) -> Tuple[float, int]:
    return (task._next_execution_time, task._sequence)


async def sleep(millis: float) -> None:
    """Suspend the calling coroutine for ``millis`` milliseconds."""

    await asyncio.sleep(millis / 1000)


__all__ = [
    "CallLaterStub",
    "CallbackTask",
    "DelayPrimitive",
    "FixedDelay",
    "FixedRate",
    "ONE_SHOT",
    "OneShot",
    "Period",
    "TaskState",
    "TaskStateError",
    "Timer",
    "TimerError",
    "TimerTask",
    "sleep",
]
