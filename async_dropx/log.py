"""Utilities for logging cleanup events.

Events are logged to the `async_dropx.events` logger. Skipped cleanups are logged as
warnings, failed detached cleanups as errors, everything else on the debug level.

To see the logs without configuring `logging` yourself, use :func:`enable_default_logger`::

    from async_dropx.log import enable_default_logger

    enable_default_logger(log_file="async-dropx.log")
"""
from datetime import datetime
import json
import logging
from typing import Any, Dict, Optional, Type

import attr

from async_dropx import events
from async_dropx.utils import get_local_timezone, short_repr

logger = logging.getLogger("async_dropx.events")

event_type_to_string: Dict[Type[events.Event], str] = {
    events.CleanupScheduled: "Cleanup scheduled",
    events.CleanupReleased: "Cleanup released to the caller",
    events.CleanupSkipped: "Cleanup skipped",
    events.CleanupFinished: "Cleanup finished",
    events.CleanupFailed: "Cleanup failed",
    events.CleanupCancelled: "Cleanup cancelled",
}

event_type_to_level: Dict[Type[events.Event], int] = {
    events.CleanupSkipped: logging.WARNING,
    events.CleanupFailed: logging.ERROR,
}


class _DropxDatetimeFormatter(logging.Formatter):
    """Custom log Formatter that formats datetime with milliseconds and the UTC offset."""

    def formatTime(self, record: logging.LogRecord, datefmt=None):
        """Format datetime; example: `2021-06-11T14:55:43.156+0200`."""
        dt = datetime.fromtimestamp(record.created, tz=get_local_timezone())
        millis = f"{(dt.microsecond // 1000):03d}"
        return dt.strftime(f"%Y-%m-%dT%H:%M:%S.{millis}%z")


def enable_default_logger(
    format_: str = "[%(asctime)s %(levelname)s %(name)s] %(message)s",
    log_file: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """Enable the default logger that logs messages to stderr with level `level` and higher.

    If `log_file` is specified, the logger with output messages with level DEBUG and
    higher to the specified file.
    """
    logger = logging.getLogger("async_dropx")
    logger.setLevel(logging.DEBUG)
    formatter = _DropxDatetimeFormatter(fmt=format_)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(filename=log_file, mode="w", encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)
        logger.debug("Logging to %s", log_file)


def _event_fields(event: events.Event) -> Dict[str, Any]:
    return {
        name: value
        for name, value in attr.asdict(event, recurse=False).items()
        if name not in ("exc_info", "timestamp")
    }


def log_event(event: events.Event, level: Optional[int] = None) -> None:
    """Log an event in human-readable format."""

    if level is None:
        level = event_type_to_level.get(type(event), logging.DEBUG)

    if not logger.isEnabledFor(level):
        return

    msg = event_type_to_string.get(type(event), type(event).__name__)
    fields = _event_fields(event)
    info = "; ".join(f"{name} = {short_repr(value)}" for name, value in fields.items())
    if info:
        msg += "; " + info
    logger.log(level, msg, exc_info=event.exc_info)


def log_event_json(event: events.Event) -> None:
    """Log an event as a tag with attributes in JSON format."""

    info = {name: str(value) for name, value in _event_fields(event).items()}
    logger.debug("%s %s", type(event).__name__, json.dumps(info) if info else "")
