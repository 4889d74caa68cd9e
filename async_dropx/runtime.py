"""Detection of the ambient execution context and submission of detached cleanups.

A :class:`Runtime` knows how to find an execution context (in practice: a running asyncio
event loop) at the moment a resource is torn down. The :class:`ExecutionContext` it returns
enqueues the cleanup as a detached task and returns immediately.

Exactly one runtime is active per process. It is selected with :func:`configure`, or from
the environment (see :class:`~async_dropx.config.DropConfig`) on first use.
"""
from abc import ABC, abstractmethod
import asyncio
import concurrent.futures
import logging
import sys
import threading
from typing import Any, Awaitable, Coroutine, Optional, Set, Union

from async_dropx import events
from async_dropx.config import DropConfig
from async_dropx.event_emitter import emit
from async_dropx.exceptions import CleanupCancelled, CleanupPanicked, EnqueueFailed

logger = logging.getLogger(__name__)

#   asyncio keeps only weak references to tasks, detached cleanups are kept alive here
_pending: Set[asyncio.Task] = set()


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


async def _run_detached(cleanup: Awaitable[None], drop_id: str, resource: str) -> None:
    """Await the cleanup, making sure nothing it raises leaves this task."""
    try:
        await cleanup
    except asyncio.CancelledError:
        emit(
            events.CleanupCancelled(
                drop_id=drop_id, resource=resource, error=CleanupCancelled(resource)
            )
        )
        raise
    except (Exception, KeyboardInterrupt, SystemExit) as e:
        #   An interrupt raised by a detached cleanup must not stop the host's event loop
        error = CleanupPanicked(resource)
        error.__cause__ = e
        emit(
            events.CleanupFailed(
                drop_id=drop_id, resource=resource, error=error, exc_info=sys.exc_info()
            )
        )
    else:
        emit(events.CleanupFinished(drop_id=drop_id, resource=resource))


class ExecutionContext(ABC):
    """Something a cleanup can be submitted to."""

    family: str

    @abstractmethod
    def spawn(self, cleanup: Awaitable[None], drop_id: str, resource: str) -> None:
        """Enqueue `cleanup` as a detached unit of work and return immediately.

        :raises EnqueueFailed: if the cleanup could not be submitted.
        """


class LoopContext(ExecutionContext):
    """An asyncio event loop, possibly running in a different thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, family: str):
        self._loop = loop
        self.family = family

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def spawn(self, cleanup: Awaitable[None], drop_id: str, resource: str) -> None:
        loop = self._loop
        if loop.is_closed():
            raise EnqueueFailed(self.family, "event loop is closed")

        in_loop_thread = _running_loop() is loop
        if not in_loop_thread and not loop.is_running():
            raise EnqueueFailed(self.family, "event loop is not running")

        detached = _run_detached(cleanup, drop_id, resource)
        try:
            if in_loop_thread:
                self._start(detached)
            else:
                loop.call_soon_threadsafe(self._start, detached)
        except RuntimeError as e:
            detached.close()
            raise EnqueueFailed(self.family, str(e)) from e

    def _start(self, detached: Coroutine[Any, Any, None]) -> None:
        task = self._loop.create_task(detached)
        _pending.add(task)
        task.add_done_callback(_pending.discard)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.family}, {self._loop!r})"


class Runtime(ABC):
    """A family of execution contexts cleanups can be scheduled on."""

    name: str

    @abstractmethod
    def detect(self) -> Optional[ExecutionContext]:
        """Return the currently available execution context, or `None` if there is none."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class NullRuntime(Runtime):
    """No execution context is ever available: every cleanup is skipped."""

    name = "none"

    def detect(self) -> Optional[ExecutionContext]:
        return None


class AsyncioRuntime(Runtime):
    """The event loop running in the current thread, if any."""

    name = "asyncio"

    def detect(self) -> Optional[ExecutionContext]:
        loop = _running_loop()
        if loop is None:
            return None
        return LoopContext(loop, self.name)


class ThreadRuntime(Runtime):
    """A private event loop running in a daemon thread.

    Cleanups are submitted to it from any thread, so scheduling works also in purely
    synchronous programs. The loop is started with :meth:`start` or, with `autostart`,
    on the first teardown. Once :meth:`stop` is called it is not started again
    automatically.

    Usage::

        with ThreadRuntime() as runtime:
            configure(runtime)
            ...
    """

    name = "thread"

    def __init__(self, autostart: bool = True):
        self._autostart = autostart
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._stopped = False

    def __enter__(self) -> "ThreadRuntime":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    @property
    def is_running(self) -> bool:
        loop = self._loop
        return loop is not None and loop.is_running()

    def start(self) -> None:
        with self._lock:
            if self._loop is not None:
                return
            self._stopped = False

            loop = asyncio.new_event_loop()
            started = threading.Event()
            thread = threading.Thread(
                target=self._run_loop, args=(loop, started), name="async-dropx", daemon=True
            )
            thread.start()
            started.wait()

            self._loop = loop
            self._thread = thread
            logger.debug("Started cleanup event loop in thread %s", thread.name)

    def _run_loop(self, loop: asyncio.AbstractEventLoop, started: threading.Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(started.set)
        loop.run_forever()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the loop.

        Pending cleanups get `timeout` seconds to finish (`None` means: wait for all of them),
        the rest is cancelled.
        """
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
            self._stopped = True

        if loop is None or thread is None:
            return
        if threading.current_thread() is thread:
            raise RuntimeError("ThreadRuntime can't be stopped from its own thread")

        shutdown = asyncio.run_coroutine_threadsafe(self._shutdown(timeout), loop)
        shutdown.result()
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()
        logger.debug("Stopped cleanup event loop")

    async def _shutdown(self, timeout: Optional[float]) -> None:
        tasks = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
        if not tasks:
            return

        _done, still_running = await asyncio.wait(tasks, timeout=timeout)
        if still_running:
            logger.debug("Cancelling %s unfinished cleanup(s)", len(still_running))
            for task in still_running:
                task.cancel()
            await asyncio.wait(still_running)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Block until all cleanups scheduled on this runtime are finished.

        Return False if some are still running after `timeout` seconds.
        """
        loop = self._loop
        if loop is None or not loop.is_running():
            return True
        if threading.current_thread() is self._thread:
            raise RuntimeError("ThreadRuntime can't be joined from its own thread")

        future = asyncio.run_coroutine_threadsafe(join_pending(), loop)
        try:
            future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            return False
        return True

    def detect(self) -> Optional[ExecutionContext]:
        loop = self._loop
        if loop is None and self._autostart and not self._stopped:
            try:
                self.start()
            except RuntimeError:
                #   e.g. "can't create new thread at interpreter shutdown"
                logger.debug("Failed to start the cleanup event loop", exc_info=True)
                return None
            loop = self._loop

        if loop is None or not loop.is_running():
            return None
        return LoopContext(loop, self.name)

    def __repr__(self) -> str:
        state = "running" if self.is_running else "stopped" if self._stopped else "idle"
        return f"{type(self).__name__}({state})"


_runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def _runtime_from_config(config: DropConfig) -> Runtime:
    if config.runtime == ThreadRuntime.name:
        return ThreadRuntime(autostart=config.thread_autostart)
    elif config.runtime == AsyncioRuntime.name:
        return AsyncioRuntime()
    return NullRuntime()


def configure(runtime: Union[str, Runtime, DropConfig, None] = None) -> Runtime:
    """Select the runtime used for all subsequent teardowns.

    :param runtime: a :class:`Runtime` instance, a runtime family name
        (`asyncio`, `thread` or `none`), or a :class:`~async_dropx.config.DropConfig`.
        If not given, the configuration is read from the environment.
    :return: the selected runtime
    """
    global _runtime

    if isinstance(runtime, Runtime):
        selected = runtime
    elif isinstance(runtime, str):
        selected = _runtime_from_config(DropConfig(runtime=runtime))
    else:
        selected = _runtime_from_config(runtime or DropConfig())

    with _runtime_lock:
        _runtime = selected
    logger.debug("Using runtime %r", selected)
    return selected


def get_runtime() -> Runtime:
    """Return the active runtime, configuring it from the environment if necessary."""
    runtime = _runtime
    if runtime is None:
        with _runtime_lock:
            runtime = _runtime
        if runtime is None:
            runtime = configure()
    return runtime


async def join_pending() -> None:
    """Wait until every cleanup scheduled on the running event loop has finished.

    Cleanups scheduled while waiting (e.g. by other cleanups) are waited for too.
    Waiting is never propagated to the cleanups: cancelling this coroutine does not
    cancel them.
    """
    loop = asyncio.get_running_loop()
    while True:
        tasks = [t for t in tuple(_pending) if t.get_loop() is loop and not t.done()]
        if not tasks:
            return
        await asyncio.wait(tasks)
