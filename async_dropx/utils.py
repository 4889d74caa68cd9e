"""Utility functions and classes used within async_dropx."""
from datetime import datetime, timezone, tzinfo
import functools
import logging
from typing import Any, Optional


def get_local_timezone() -> Optional[tzinfo]:
    return datetime.now(timezone.utc).astimezone().tzinfo


class _AddDropId(logging.LoggerAdapter):
    """A LoggerAdapter that adds the value of the `drop_id` keyword param to logged messages."""

    def __init__(self, logger, fmt):
        super().__init__(logger, extra={})
        self.format = fmt

    def process(self, msg, kwargs):
        drop_id = kwargs.get("drop_id")
        if drop_id is not None:
            msg = self.format.format(drop_id=drop_id, msg=msg)
            del kwargs["drop_id"]
        return msg, kwargs


@functools.lru_cache(None)
def get_logger(name: str, fmt="[Drop {drop_id}] {msg}"):
    """Get named logger instance.

    May be used as replacement for `logging.getLogger()`. The difference is, that
    the returned loggers accept `drop_id` keyword argument and include it in the
    formated message. The optional `fmt` parameter specifies how the log message
    and the drop_id should be formatted together.
    """
    logger = logging.getLogger(name)
    return _AddDropId(logger, fmt=fmt)


def short_repr(obj: Any, max_len: int = 200) -> str:
    """Return `repr(obj)` cut down to `max_len` characters.

    Never raises: resources are described while they are being torn down,
    and a broken `__repr__` must not stop that.
    """
    try:
        text = repr(obj)
    except Exception:
        text = f"<{type(obj).__name__} object at {id(obj):#x}>"
    if len(text) > max_len:
        text = text[: max_len - 3] + "..."
    return text


def strtobool(val):
    """Convert a string representation of truth to true (1) or false (0).

    True values are 'y', 'yes', 't', 'true', 'on', and '1'; false values
    are 'n', 'no', 'f', 'false', 'off', and '0'.  Raises ValueError if
    'val' is anything else.

    Copied verbatim from `distutils` because of deprecation thereof.
    (c) Python Software Foundation, available through the GPL-compatible, PSFL v2.
    """
    val = val.lower()
    if val in ("y", "yes", "t", "true", "on", "1"):
        return 1
    elif val in ("n", "no", "f", "false", "off", "0"):
        return 0
    else:
        raise ValueError("invalid truth value %r" % (val,))
