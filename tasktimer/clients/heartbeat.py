"""Periodic keep-alive messages for message-based connections."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from tasktimer.timing.timer import Timer, TimerTask

logger = logging.getLogger(__name__)

HEARTBEAT_TYPE = "heartbeat"

Send = Callable[[str], None]


class HeartbeatTask(TimerTask):
    """Send one heartbeat message per run."""

    def __init__(self, send: Send) -> None:
        super().__init__()
        self._send = send

    def run(self) -> None:
        self._send(HEARTBEAT_TYPE)


class HeartbeatSender:
    """Re-arm a heartbeat on a fixed interval while a connection is open.

    Call :meth:`start` once the connection is open and :meth:`stop` when it
    closes.  A non-positive interval disables heartbeats.  The timer may be
    shared; :meth:`stop` only cancels the heartbeat task.
    """

    @classmethod
    def create_null(cls, send: Send, interval_millis: float = 30_000) -> "HeartbeatSender":
        return cls(Timer.create_null(), send, interval_millis)

    def __init__(self, timer: Timer, send: Send, interval_millis: float = 30_000) -> None:
        self._timer = timer
        self._send = send
        self._interval = interval_millis
        self._task: Optional[HeartbeatTask] = None

    @property
    def interval_millis(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._interval <= 0 or self._task is not None:
            return
        self._task = HeartbeatTask(self._send)
        self._timer.schedule_at_fixed_rate(self._task, self._interval, self._interval)
        logger.debug("heartbeat started every %sms", self._interval)

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._timer.purge()
        self._task = None
        logger.debug("heartbeat stopped")

    def simulate_heartbeat(self) -> None:
        """Advance a null timer by one interval."""

        self._timer.simulate_task_execution(ticks=self._interval)


__all__ = ["HEARTBEAT_TYPE", "HeartbeatSender", "HeartbeatTask"]
