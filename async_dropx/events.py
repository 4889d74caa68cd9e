"""Objects representing events in the lifecycle of a wrapped resource.

Every time a wrapper hands over (or fails to hand over) the cleanup of its resource,
and every time a detached cleanup ends, an event is emitted. Emitted events are logged
and passed to all event consumers registered with
:func:`async_dropx.event_emitter.add_event_consumer`.

Events should be consumed in a strict `read_only` mode: event objects are shared between
all event consumers.

Events inheritance tree
-----------------------

Only leaf events are ever emitted, :class:`Event` and :class:`DropEvent` are abstract::

    Event
        DropEvent
            CleanupScheduled
            CleanupReleased
            CleanupSkipped
            CleanupFinished
            CleanupFailed
            CleanupCancelled
"""

import abc
from datetime import datetime
from types import TracebackType
from typing import List, Optional, Tuple, Type

import attr

from async_dropx.exceptions import AsyncDropError

ExcInfo = Tuple[Type[BaseException], BaseException, Optional[TracebackType]]


#   ABSTRACT EVENTS
@attr.s(frozen=True, repr=False)
class Event(abc.ABC):
    """An abstract base class for all types of events."""

    exc_info: Optional[ExcInfo] = attr.ib(default=None, kw_only=True)
    """Tuple containing exception info as returned by `sys.exc_info()`, if applicable."""

    timestamp: datetime = attr.ib(factory=datetime.now, init=False)
    """Event creation time"""

    def __str__(self) -> str:
        """Mimics Python's default `repr` format, but excludes the fields `exc_info` and `timestamp` from it.

        If `exc_info` is not `None`, its underlying exception is included in the result string
        under the key `exception`.
        """
        fields: Tuple[attr.Attribute] = attr.fields(self.__class__)  # type: ignore
        field_reprs: List[str] = []

        for field in fields:
            field_value = getattr(self, field.name)

            if field.name == "exc_info":
                if field_value:
                    field_reprs.append(f"exception={repr(field_value[1])}")
            elif field.name == "timestamp":
                continue
            else:
                field_reprs.append(f"{field.name}={repr(field_value)}")

        return f"{self.__class__.__name__}({', '.join(field_reprs)})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def exception(self) -> Optional[BaseException]:
        """Exception associated with this event or `None`"""
        if self.exc_info:
            return self.exc_info[1]
        return None


@attr.s(auto_attribs=True, repr=False)
class DropEvent(Event, abc.ABC):
    drop_id: str
    """Id of the :class:`~async_dropx.AsyncDropx` that owned the resource."""

    resource: str
    """Short `repr` of the resource. The resource itself is never kept by events."""


#   LEAF EVENTS
@attr.s(auto_attribs=True, repr=False)
class CleanupScheduled(DropEvent):
    """The cleanup was enqueued on an execution context and will run detached."""

    runtime: str


class CleanupReleased(DropEvent):
    """The cleanup was handed to the caller by :meth:`~async_dropx.AsyncDropx.release`."""


@attr.s(auto_attribs=True, repr=False)
class CleanupSkipped(DropEvent):
    """The cleanup could not be scheduled and will never run.

    `error` is one of :class:`~async_dropx.exceptions.NoExecutionContext`,
    :class:`~async_dropx.exceptions.EnqueueFailed` or
    :class:`~async_dropx.exceptions.CleanupCreationFailed`.
    """

    error: AsyncDropError


class CleanupFinished(DropEvent):
    """A detached cleanup finished successfully."""


@attr.s(auto_attribs=True, repr=False)
class CleanupFailed(DropEvent):
    """A detached cleanup raised an exception. The exception never left the detached task."""

    error: AsyncDropError


@attr.s(auto_attribs=True, repr=False)
class CleanupCancelled(DropEvent):
    """A detached cleanup was cancelled before it finished, usually due to a loop shutdown."""

    error: AsyncDropError
