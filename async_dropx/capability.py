"""The contract resources implement to describe their own asynchronous teardown."""
from abc import ABC, abstractmethod
from typing import Any, Awaitable


class AsyncDrop(ABC):
    """Base class for resources that need asynchronous cleanup.

    Implement :meth:`async_drop` to describe how the resource is shut down::

        class Connection(AsyncDrop):
            def __init__(self, writer: asyncio.StreamWriter):
                self.writer = writer

            async def async_drop(self) -> None:
                self.writer.close()
                await self.writer.wait_closed()

    and wrap instances in :class:`~async_dropx.AsyncDropx` so that the cleanup is scheduled
    when the wrapper goes out of scope.

    Subclassing is optional, :class:`~async_dropx.AsyncDropx` accepts any object with
    a callable `async_drop` attribute.
    """

    @abstractmethod
    def async_drop(self) -> Awaitable[None]:
        """Return the cleanup of this resource.

        This is called exactly once, and afterwards the resource is considered consumed:
        the wrapper forgets about it, so the returned awaitable must keep references to
        everything it needs.

        The awaitable runs detached from the code that dropped the resource, possibly
        after that code is long gone. It should tolerate being cancelled (e.g. when the
        event loop shuts down) and should not block the event loop.
        """


def is_async_droppable(obj: Any) -> bool:
    """Check if `obj` can be wrapped in :class:`~async_dropx.AsyncDropx`."""
    return isinstance(obj, AsyncDrop) or callable(getattr(obj, "async_drop", None))
