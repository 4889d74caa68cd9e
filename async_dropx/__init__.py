"""Asynchronous cleanup of resources, scheduled when their owner goes out of scope."""
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import toml

from async_dropx.capability import AsyncDrop, is_async_droppable
from async_dropx.config import DropConfig, InvalidConfiguration
from async_dropx.event_emitter import add_event_consumer, remove_event_consumer
from async_dropx.exceptions import (
    AsyncDropError,
    CleanupCancelled,
    CleanupCreationFailed,
    CleanupPanicked,
    EnqueueFailed,
    NoExecutionContext,
    ResourceReleased,
)
from async_dropx.runtime import (
    AsyncioRuntime,
    NullRuntime,
    Runtime,
    ThreadRuntime,
    configure,
    get_runtime,
    join_pending,
)
from async_dropx.wrapper import AsyncDropx


def get_version() -> str:
    """
    :return: the version of the async-dropx library package
    """
    pyproject_path = Path(__file__).parents[1] / "pyproject.toml"
    if pyproject_path.exists():
        with open(pyproject_path) as f:
            pyproject = toml.loads(f.read())

        return pyproject["tool"]["poetry"]["version"]

    try:
        return version("async-dropx")
    except PackageNotFoundError:
        return "0.0.0"


__version__: str = get_version()
__all__ = [
    "AsyncDrop",
    "AsyncDropx",
    "is_async_droppable",
    "DropConfig",
    "InvalidConfiguration",
    "add_event_consumer",
    "remove_event_consumer",
    "AsyncDropError",
    "CleanupCancelled",
    "CleanupCreationFailed",
    "CleanupPanicked",
    "EnqueueFailed",
    "NoExecutionContext",
    "ResourceReleased",
    "AsyncioRuntime",
    "NullRuntime",
    "Runtime",
    "ThreadRuntime",
    "configure",
    "get_runtime",
    "join_pending",
]
