import inspect
import itertools
from typing import Any, Awaitable, Generic, Optional, TypeVar

from async_dropx import events
from async_dropx.capability import is_async_droppable
from async_dropx.event_emitter import emit
from async_dropx.exceptions import (
    AsyncDropError,
    CleanupCreationFailed,
    EnqueueFailed,
    NoExecutionContext,
    ResourceReleased,
)
from async_dropx.guard import ExecutionGuard
from async_dropx.runtime import ExecutionContext, Runtime, get_runtime
from async_dropx.utils import get_logger, short_repr

logger = get_logger(__name__)

ResourceType = TypeVar("ResourceType")

_drop_ids = itertools.count(1)


class _Released:
    def __repr__(self) -> str:
        return "<released>"


_RELEASED: Any = _Released()


def _close_unused(cleanup: Awaitable[None]) -> None:
    """Close a cleanup that will never be awaited, so that Python doesn't warn about it."""
    close = getattr(cleanup, "close", None)
    if callable(close):
        close()


class AsyncDropx(Generic[ResourceType]):
    """Owning wrapper scheduling the asynchronous cleanup of a resource when it goes out of scope.

    The wrapped resource must implement :class:`~async_dropx.AsyncDrop` (or just have an
    `async_drop()` method). Attributes of the wrapper are the attributes of the resource::

        class Counter(AsyncDrop):
            def __init__(self):
                self.value = 0

            async def async_drop(self):
                await flush(self.value)

        async def main():
            with AsyncDropx(Counter()) as counter:
                counter.value += 1
            #   `Counter.async_drop()` is now scheduled on the running loop

    Teardown happens on the first of:

    * exit from a `with` block (also when an exception is propagating from it),
    * an explicit :meth:`close` or :meth:`release`,
    * garbage collection of the wrapper.

    Later attempts do nothing. Teardown never blocks and never raises: if there is no
    execution context to schedule the cleanup on, the cleanup is skipped and a
    :class:`~async_dropx.events.CleanupSkipped` event is emitted (and logged as a warning).

    `async with` awaits the cleanup in place instead of scheduling it.

    Names defined by the wrapper itself (`inner`, `drop_id`, `state`, `attempted`, `bind`,
    `close`, `release` and dunder names) shadow the attributes of the resource, both for
    reading and writing. Use `wrapper.inner.<name>` to reach those.
    """

    __slots__ = ("_resource", "_guard", "_context", "_drop_id", "__weakref__")

    def __init__(self, inner: ResourceType, *, context: Optional[ExecutionContext] = None):
        """
        :param inner: The resource. The wrapper becomes its owner.
        :param context: Execution context the cleanup will be scheduled on. If not given,
            the context is detected at the time of the teardown.
        """
        if not is_async_droppable(inner):
            raise TypeError(f"{type(inner).__name__} doesn't implement async_drop()")

        self._drop_id = str(next(_drop_ids))
        self._context = context
        self._resource = inner
        self._guard = ExecutionGuard()

    @classmethod
    def bind(
        cls, inner: ResourceType, runtime: Optional[Runtime] = None
    ) -> "AsyncDropx[ResourceType]":
        """Create a wrapper that remembers the execution context available now.

        The cleanup will be scheduled on this context regardless of where and when the
        wrapper is torn down (e.g. in a different thread).

        :raises NoExecutionContext: if there is no execution context available.
        """
        runtime = runtime or get_runtime()
        context = runtime.detect()
        if context is None:
            raise NoExecutionContext(runtime.name)
        return cls(inner, context=context)

    ####################
    #   PROPERTIES
    @property
    def inner(self) -> ResourceType:
        """The wrapped resource.

        :raises ResourceReleased: if the teardown already started.
        """
        resource = self._resource
        if resource is _RELEASED:
            raise ResourceReleased(self._drop_id)
        return resource

    @property
    def drop_id(self) -> str:
        return self._drop_id

    @property
    def state(self) -> str:
        """Id of the current :class:`~async_dropx.guard.DropState`."""
        return self._guard.state

    @property
    def attempted(self) -> bool:
        """True if the teardown already started."""
        return self._guard.attempted

    ####################
    #   TRANSPARENT ACCESS
    @staticmethod
    def _is_own(name: str) -> bool:
        return hasattr(AsyncDropx, name) or (name.startswith("__") and name.endswith("__"))

    def __getattr__(self, name: str) -> Any:
        #   Only called when regular lookup fails, e.g. for slots not set by a failed __init__
        if AsyncDropx._is_own(name):
            raise AttributeError(name)
        return getattr(self.inner, name)

    def __setattr__(self, name: str, value: Any) -> None:
        if AsyncDropx._is_own(name):
            object.__setattr__(self, name, value)
        else:
            setattr(self.inner, name, value)

    def __delattr__(self, name: str) -> None:
        if AsyncDropx._is_own(name):
            object.__delattr__(self, name)
        else:
            delattr(self.inner, name)

    ####################
    #   TEARDOWN
    def _take(self) -> Any:
        resource = self._resource
        self._resource = _RELEASED
        return resource

    def _create_cleanup(self, resource: Any, label: str) -> Awaitable[None]:
        try:
            cleanup = resource.async_drop()
        except Exception as e:
            raise CleanupCreationFailed(label) from e

        if not inspect.isawaitable(cleanup):
            raise CleanupCreationFailed(label) from TypeError(
                f"async_drop() returned {type(cleanup).__name__}, not an awaitable"
            )
        return cleanup

    def _skip(self, label: str, error: AsyncDropError) -> None:
        self._guard.mark_skipped()

        cause = error.__cause__
        exc_info = (type(cause), cause, cause.__traceback__) if cause is not None else None
        emit(
            events.CleanupSkipped(
                drop_id=self._drop_id, resource=label, error=error, exc_info=exc_info
            )
        )

    def _hand_off(self) -> None:
        resource = self._take()
        label = short_repr(resource)

        try:
            cleanup = self._create_cleanup(resource, label)
        except CleanupCreationFailed as e:
            self._skip(label, e)
            return
        finally:
            del resource

        context = self._context
        if context is None:
            runtime = get_runtime()
            context = runtime.detect()
            if context is None:
                _close_unused(cleanup)
                self._skip(label, NoExecutionContext(runtime.name))
                return

        try:
            context.spawn(cleanup, self._drop_id, label)
        except EnqueueFailed as e:
            _close_unused(cleanup)
            self._skip(label, e)
            return

        self._guard.mark_scheduled()
        emit(events.CleanupScheduled(drop_id=self._drop_id, resource=label, runtime=context.family))

    def close(self) -> None:
        """Schedule the cleanup of the resource and return without waiting for it.

        This is the teardown hook, it is also called on scope exit and by the garbage
        collector. It never blocks and never raises. Calls after the first one do nothing.
        """
        try:
            guard = self._guard
        except AttributeError:
            #   __init__ failed, there is nothing to tear down
            return

        try:
            if not guard.begin():
                return
            self._hand_off()
        except Exception:
            logger.exception("Unexpected error during teardown", drop_id=self._drop_id)
            guard.mark_skipped()

    def release(self) -> Awaitable[None]:
        """Take the cleanup of the resource, to await it instead of scheduling it.

        Afterwards the wrapper is torn down: leaving the scope or calling :meth:`close`
        does nothing.

        :raises ResourceReleased: if the teardown already started.
        :raises CleanupCreationFailed: if `async_drop()` failed.
        """
        if not self._guard.begin():
            raise ResourceReleased(self._drop_id)

        resource = self._take()
        label = short_repr(resource)
        try:
            cleanup = self._create_cleanup(resource, label)
        except CleanupCreationFailed:
            self._guard.mark_skipped()
            raise
        finally:
            del resource

        self._guard.mark_scheduled()
        emit(events.CleanupReleased(drop_id=self._drop_id, resource=label))
        return cleanup

    ####################
    #   SCOPE
    def __enter__(self) -> "AsyncDropx[ResourceType]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> Optional[bool]:
        self.close()

        # Don't suppress the exception (if any), so return a non-True value
        return None

    async def __aenter__(self) -> "AsyncDropx[ResourceType]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> Optional[bool]:
        if self._guard.attempted:
            return None

        if exc_type is None:
            await self.release()
            return None

        #   Don't let a failing cleanup replace the exception that is already propagating
        try:
            await self.release()
        except Exception:
            logger.exception(
                "Cleanup failed while handling %s", exc_type.__name__, drop_id=self._drop_id
            )
        return None

    def __del__(self) -> None:
        self.close()

    def __repr__(self) -> str:
        try:
            resource = self._resource
            guard = self._guard
        except AttributeError:
            return f"{type(self).__name__}(<uninitialized>)"
        return f"{type(self).__name__}({self._drop_id}, {guard.state}, {short_repr(resource)})"
