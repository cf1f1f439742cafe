"""Time sources used by :class:`tasktimer.timing.timer.Timer`."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Union

DEFAULT_FIXED_INSTANT = datetime(2024, 2, 21, 19, 16, tzinfo=timezone.utc)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)

Offset = Union[int, float, timedelta]


def to_millis(instant: datetime) -> int:
    """Convert ``instant`` to whole milliseconds since the Unix epoch.

    Naive datetimes are interpreted as UTC.
    """

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return (instant - _EPOCH) // _MILLISECOND


def from_millis(millis: float) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)


class Clock:
    """Provide access to the current instant.

    A plain :class:`Clock` reads the system time.  Use :meth:`fixed` or
    :meth:`offset` for a :class:`FixedClock` that only moves when advanced
    explicitly.
    """

    @staticmethod
    def system() -> "Clock":
        return Clock()

    @staticmethod
    def fixed(instant: Union[datetime, int, float, None] = None) -> "FixedClock":
        """Return a clock pinned to ``instant`` (a datetime or epoch millis)."""

        if instant is None:
            instant = DEFAULT_FIXED_INSTANT
        if isinstance(instant, datetime):
            return FixedClock(to_millis(instant))
        return FixedClock(int(instant))

    @staticmethod
    def offset(clock: "Clock", offset_millis: Offset) -> "FixedClock":
        """Return a fixed clock pinned at ``clock``'s instant plus an offset."""

        return FixedClock(clock.millis() + _offset_to_millis(offset_millis))

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def millis(self) -> int:
        return to_millis(self.now())


class FixedClock(Clock):
    """A virtual clock whose instant changes only through :meth:`advance`."""

    def __init__(self, millis: int) -> None:
        self._millis = millis

    def now(self) -> datetime:
        return from_millis(self._millis)

    def millis(self) -> int:
        return self._millis

    def advance(self, offset: Offset) -> None:
        """Move the clock forward by milliseconds or a :class:`timedelta`."""

        self._millis += _offset_to_millis(offset)

    def __repr__(self) -> str:
        return f"FixedClock({self.now().isoformat()})"


def _offset_to_millis(offset: Offset) -> int:
    if isinstance(offset, timedelta):
        return offset // _MILLISECOND
    if isinstance(offset, (int, float)):
        return int(offset)
    raise TypeError(f"unsupported clock offset: {offset!r}")


__all__ = ["Clock", "DEFAULT_FIXED_INSTANT", "FixedClock", "from_millis", "to_millis"]
