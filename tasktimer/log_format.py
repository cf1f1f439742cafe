"""Logging helpers.

Library modules only create ``logging.getLogger(__name__)`` loggers; the
command line installs handlers through :func:`configure_logging`.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Union

_EXTRA_FIELDS = ("url", "event")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                base[key] = value

        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(base, ensure_ascii=True, sort_keys=True)


def configure_logging(level: Union[int, str] = logging.INFO, *, json_output: bool = False) -> None:
    """Send ``tasktimer`` log records to stderr."""

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger("tasktimer")
    root.handlers[:] = [handler]
    root.setLevel(level.upper() if isinstance(level, str) else level)
