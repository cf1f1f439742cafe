"""Utilities to load :mod:`tasktimer.config` structures from YAML files."""
from __future__ import annotations

import datetime as _dt
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .config import (
    HeartbeatConfig,
    LongPollingConfig,
    SimulatedTaskConfig,
    SimulationConfig,
    TaskTimerConfig,
)
from .timing.clock import DEFAULT_FIXED_INSTANT

_DURATION_UNITS = {
    "ms": _dt.timedelta(milliseconds=1),
    "s": _dt.timedelta(seconds=1),
    "m": _dt.timedelta(minutes=1),
    "h": _dt.timedelta(hours=1),
    "d": _dt.timedelta(days=1),
}


def load_config(path: Path) -> TaskTimerConfig:
    """Load a configuration file into :class:`TaskTimerConfig`.

    Durations accept human friendly values such as ``"250ms"``, ``"30s"`` or
    ``"5m"``; bare numbers are seconds.  Sections omitted in the YAML file
    fall back to the defaults declared in :mod:`tasktimer.config`.
    """

    return parse_config(_load_yaml(path))


def parse_config(raw: Mapping[str, Any]) -> TaskTimerConfig:
    heartbeat_section = raw.get("heartbeat") or {}
    heartbeat = HeartbeatConfig(
        interval=parse_duration(heartbeat_section.get("interval", "30s")),
    )

    polling = None
    if raw.get("polling"):
        polling_section = raw["polling"]
        polling = LongPollingConfig(
            url=str(polling_section["url"]),
            wait=parse_duration(polling_section.get("wait", "90s")),
            retry=parse_duration(polling_section.get("retry", "1s")),
            request_timeout=float(polling_section.get("request_timeout", 5.0)),
        )

    simulation_section = raw.get("simulation") or {}
    tasks = [
        SimulatedTaskConfig(
            name=str(item["name"]),
            delay=parse_duration(item.get("delay", 0)),
            period=parse_duration(item.get("period", 0)),
            fixed_rate=bool(item.get("fixed_rate", False)),
            cancel_after=_optional_int(item.get("cancel_after")),
        )
        for item in simulation_section.get("tasks", [])
    ]
    step = simulation_section.get("step")
    simulation = SimulationConfig(
        start=_parse_instant(simulation_section.get("start", DEFAULT_FIXED_INSTANT)),
        duration=parse_duration(simulation_section.get("duration", "1s")),
        step=parse_duration(step) if step is not None else None,
        heartbeat=bool(simulation_section.get("heartbeat", False)),
        tasks=tuple(tasks),
    )

    return TaskTimerConfig(heartbeat=heartbeat, polling=polling, simulation=simulation)


def _load_yaml(path: Path) -> Mapping[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError("configuration root must be a mapping")
    return data


def parse_duration(value: Any) -> _dt.timedelta:
    if isinstance(value, _dt.timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"unsupported duration value: {value!r}")
    if isinstance(value, (int, float)):
        return _dt.timedelta(seconds=float(value))
    if not isinstance(value, str):
        raise ValueError(f"unsupported duration value: {value!r}")
    value = value.strip()
    if value.isdigit():
        return _dt.timedelta(seconds=int(value))
    unit = "ms" if value.lower().endswith("ms") else value[-1:].lower()
    if unit not in _DURATION_UNITS:
        raise ValueError(f"unknown duration unit: {value}")
    try:
        amount = float(value[: -len(unit)])
    except ValueError as exc:
        raise ValueError(f"invalid duration: {value}") from exc
    return _DURATION_UNITS[unit] * amount


def _parse_instant(value: Any) -> _dt.datetime:
    if isinstance(value, _dt.datetime):
        instant = value
    elif isinstance(value, str):
        instant = _dt.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"unsupported instant value: {value!r}")
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=_dt.timezone.utc)
    return instant


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)
