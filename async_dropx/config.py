from dataclasses import dataclass, field
from functools import partial
import os

from async_dropx.utils import strtobool

RUNTIME_FAMILIES = ("asyncio", "thread", "none")


class InvalidConfiguration(Exception):
    def __init__(self, key: str, value: str, allowed: str):
        self._key = key
        self._value = value
        self._allowed = allowed

    def __str__(self):
        return (
            f"Invalid value {self._value!r} for {self._key}. "
            f"Allowed values: {self._allowed}."
        )


def _env_flag(key: str, default: str) -> bool:
    value = os.getenv(key, default)
    try:
        return bool(strtobool(value))
    except ValueError:
        raise InvalidConfiguration(key=key, value=value, allowed="a boolean flag")


@dataclass
class DropConfig:
    """
    Selection of the execution context family used to run detached cleanups.
    Attributes:
        runtime: Name of the runtime family: `asyncio` (the running loop of the thread
            that tears the resource down), `thread` (a private loop in a daemon thread)
            or `none` (detection disabled, every teardown is skipped).
            Uses ASYNC_DROPX_RUNTIME environment variable, `asyncio` if not set.
        thread_autostart: Whether the `thread` runtime starts its loop on first use.
            Uses ASYNC_DROPX_THREAD_AUTOSTART environment variable, enabled if not set.
    """

    runtime: str = field(default_factory=partial(os.getenv, "ASYNC_DROPX_RUNTIME", "asyncio"))
    thread_autostart: bool = field(
        default_factory=partial(_env_flag, "ASYNC_DROPX_THREAD_AUTOSTART", "true")
    )

    def __post_init__(self):
        self.runtime = self.runtime.strip().lower()
        if self.runtime not in RUNTIME_FAMILIES:
            raise InvalidConfiguration(
                key="ASYNC_DROPX_RUNTIME", value=self.runtime, allowed=", ".join(RUNTIME_FAMILIES)
            )
