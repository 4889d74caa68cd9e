import asyncio
import contextlib
import gc
import logging
import sys
import threading
import warnings

import pytest

from async_dropx import (
    AsyncDropx,
    CleanupCreationFailed,
    EnqueueFailed,
    NoExecutionContext,
    NullRuntime,
    ResourceReleased,
    configure,
    events,
    join_pending,
)
from async_dropx import runtime
from async_dropx.runtime import LoopContext

from tests.factories.resources import (
    CleanupCounter,
    CountingResourceFactory,
    FailingResource,
)


def _use_and_forget(counter: CleanupCounter) -> None:
    """Wrap a resource in a local variable and let it go out of scope on return."""
    wrapper = AsyncDropx(CountingResourceFactory(counter=counter))
    wrapper.name


def _skip_warnings(caplog):
    return [
        record
        for record in caplog.records
        if record.name == "async_dropx.events" and record.levelno == logging.WARNING
    ]


@pytest.mark.asyncio
async def test_cleanup_runs_once_after_scope_exit():
    counter = CleanupCounter()

    _use_and_forget(counter)
    assert counter.value == 0

    await asyncio.sleep(0)
    assert counter.value == 1

    await join_pending()
    assert counter.value == 1


@pytest.mark.asyncio
async def test_cleanup_runs_after_with_block(collected_events):
    counter = CleanupCounter()

    with AsyncDropx(CountingResourceFactory(counter=counter)) as wrapper:
        assert wrapper.state == "in_use"
    assert wrapper.state == "scheduled"

    await join_pending()
    assert counter.value == 1
    assert [type(e) for e in collected_events] == [
        events.CleanupScheduled,
        events.CleanupFinished,
    ]
    assert collected_events[0].runtime == "asyncio"
    assert collected_events[0].drop_id == wrapper.drop_id


def test_cleanup_skipped_without_event_loop(caplog, collected_events):
    caplog.set_level(logging.WARNING, logger="async_dropx")
    counter = CleanupCounter()

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        _use_and_forget(counter)
        gc.collect()

    assert counter.value == 0
    assert len(_skip_warnings(caplog)) == 1
    assert [type(e) for e in collected_events] == [events.CleanupSkipped]
    assert isinstance(collected_events[0].error, NoExecutionContext)
    #   The unused cleanup coroutine is closed, not left to be garbage collected unawaited
    assert not [w for w in caught if issubclass(w.category, RuntimeWarning)]


def test_cleanup_skipped_with_null_runtime(caplog, collected_events):
    caplog.set_level(logging.WARNING, logger="async_dropx")
    configure(NullRuntime())
    counter = CleanupCounter()

    wrapper = AsyncDropx(CountingResourceFactory(counter=counter))
    wrapper.close()

    assert wrapper.state == "skipped"
    assert counter.value == 0
    assert len(_skip_warnings(caplog)) == 1
    assert collected_events[0].error.runtime == "none"


@pytest.mark.asyncio
async def test_release_then_scope_exit():
    counter = CleanupCounter()

    with AsyncDropx(CountingResourceFactory(counter=counter)) as wrapper:
        cleanup = wrapper.release()
        assert wrapper.state == "scheduled"
        assert counter.value == 0

    await cleanup
    await join_pending()
    assert counter.value == 1


@pytest.mark.asyncio
async def test_scope_exit_then_release():
    counter = CleanupCounter()

    with AsyncDropx(CountingResourceFactory(counter=counter)) as wrapper:
        pass

    with pytest.raises(ResourceReleased):
        wrapper.release()
    wrapper.close()
    del wrapper

    await join_pending()
    assert counter.value == 1


@pytest.mark.asyncio
async def test_async_with_awaits_cleanup(collected_events):
    counter = CleanupCounter()

    async with AsyncDropx(CountingResourceFactory(counter=counter, delay=0.01)) as wrapper:
        pass

    assert counter.value == 1
    assert wrapper.state == "scheduled"
    assert [type(e) for e in collected_events] == [events.CleanupReleased]


@pytest.mark.asyncio
async def test_async_with_keeps_original_exception():
    with pytest.raises(KeyError):
        async with AsyncDropx(FailingResource()):
            raise KeyError("body")


@pytest.mark.asyncio
async def test_exception_propagates_and_cleanup_is_scheduled(collected_events):
    counter = CleanupCounter()
    error = RuntimeError("Oops!")

    with pytest.raises(RuntimeError) as exc_info:
        with AsyncDropx(CountingResourceFactory(counter=counter)):
            raise error
    assert exc_info.value is error

    await join_pending()
    assert counter.value == 1


@pytest.mark.asyncio
async def test_cleanup_scheduled_when_task_fails():
    counter = CleanupCounter()

    async def failing_task():
        with AsyncDropx(CountingResourceFactory(counter=counter)):
            raise RuntimeError("Oops!")

    task = asyncio.create_task(failing_task())
    with pytest.raises(RuntimeError):
        await task

    await asyncio.wait_for(join_pending(), timeout=1)
    assert counter.value == 1


def test_exception_propagates_when_cleanup_is_skipped(collected_events):
    error = RuntimeError("Oops!")

    with pytest.raises(RuntimeError) as exc_info:
        with AsyncDropx(CountingResourceFactory()):
            raise error

    assert exc_info.value is error
    assert [type(e) for e in collected_events] == [events.CleanupSkipped]


@pytest.mark.asyncio
async def test_scheduling_order_is_reverse_of_construction(collected_events):
    with AsyncDropx(CountingResourceFactory()) as a, AsyncDropx(CountingResourceFactory()) as b:
        pass

    scheduled = [e.drop_id for e in collected_events if isinstance(e, events.CleanupScheduled)]
    assert scheduled == [b.drop_id, a.drop_id]

    await join_pending()


@pytest.mark.asyncio
async def test_scheduling_order_with_exit_stack(collected_events):
    with contextlib.ExitStack() as stack:
        wrappers = [stack.enter_context(AsyncDropx(CountingResourceFactory())) for _ in range(3)]

    scheduled = [e.drop_id for e in collected_events if isinstance(e, events.CleanupScheduled)]
    assert scheduled == [w.drop_id for w in reversed(wrappers)]

    await join_pending()


def test_transparent_access():
    resource = CountingResourceFactory(name="foo")
    wrapper = AsyncDropx(resource)

    assert wrapper.inner is resource
    assert wrapper.name == "foo"
    wrapper.name = "bar"
    assert resource.name == "bar"
    wrapper.extra = 7
    assert resource.extra == 7
    del wrapper.extra
    assert not hasattr(resource, "extra")

    with pytest.raises(AttributeError):
        wrapper.no_such_attribute

    configure(NullRuntime())
    wrapper.close()

    with pytest.raises(ResourceReleased):
        wrapper.name
    with pytest.raises(ResourceReleased):
        wrapper.inner


def test_wrapper_forgets_resource_on_teardown():
    configure(NullRuntime())
    wrapper = AsyncDropx(CountingResourceFactory())

    wrapper.close()
    assert "<released>" in repr(wrapper)


def test_rejects_resource_without_async_drop():
    with pytest.raises(TypeError):
        AsyncDropx(object())


def test_duck_typed_resource_is_accepted():
    class Duck:
        async def async_drop(self):
            pass

    configure(NullRuntime())
    AsyncDropx(Duck()).close()


@pytest.mark.parametrize(
    "resource_class",
    [
        type("Raises", (), {"async_drop": lambda self: 1 / 0}),
        type("NotAwaitable", (), {"async_drop": lambda self: None}),
    ],
)
@pytest.mark.asyncio
async def test_capability_failure_is_a_skip(resource_class, collected_events, caplog):
    caplog.set_level(logging.WARNING, logger="async_dropx")
    wrapper = AsyncDropx(resource_class())

    wrapper.close()

    assert wrapper.state == "skipped"
    assert [type(e) for e in collected_events] == [events.CleanupSkipped]
    assert isinstance(collected_events[0].error, CleanupCreationFailed)
    assert len(_skip_warnings(caplog)) == 1


def test_release_propagates_capability_failure():
    wrapper = AsyncDropx(type("Raises", (), {"async_drop": lambda self: 1 / 0})())

    with pytest.raises(CleanupCreationFailed):
        wrapper.release()
    assert wrapper.state == "skipped"

    wrapper.close()
    assert wrapper.state == "skipped"


def test_enqueue_failure_is_a_skip(collected_events):
    counter = CleanupCounter()
    loop = asyncio.new_event_loop()
    loop.close()

    context = LoopContext(loop, "asyncio")
    wrapper = AsyncDropx(CountingResourceFactory(counter=counter), context=context)
    wrapper.close()

    assert wrapper.state == "skipped"
    assert counter.value == 0
    assert isinstance(collected_events[0].error, EnqueueFailed)


@pytest.mark.asyncio
async def test_bound_wrapper_schedules_from_other_thread():
    counter = CleanupCounter()
    wrapper = AsyncDropx.bind(CountingResourceFactory(counter=counter))

    closer = threading.Thread(target=wrapper.close)
    closer.start()
    closer.join()

    #   The task is created by a callback of the loop, let it run
    await asyncio.sleep(0)
    await join_pending()
    assert counter.value == 1


def test_bind_without_event_loop():
    with pytest.raises(NoExecutionContext):
        AsyncDropx.bind(CountingResourceFactory())


@pytest.mark.asyncio
async def test_unbound_wrapper_closed_in_other_thread_is_skipped(collected_events):
    counter = CleanupCounter()
    wrapper = AsyncDropx(CountingResourceFactory(counter=counter))

    closer = threading.Thread(target=wrapper.close)
    closer.start()
    closer.join()

    await join_pending()
    assert counter.value == 0
    assert isinstance(collected_events[0].error, NoExecutionContext)


@pytest.mark.asyncio
async def test_failing_cleanup_is_contained(collected_events, caplog):
    caplog.set_level(logging.ERROR, logger="async_dropx")

    with AsyncDropx(FailingResource()):
        pass
    await join_pending()

    failed = [e for e in collected_events if isinstance(e, events.CleanupFailed)]
    assert len(failed) == 1
    assert isinstance(failed[0].error.__cause__, ValueError)
    assert any(r.levelno == logging.ERROR for r in caplog.records)


@pytest.mark.asyncio
async def test_cancelled_cleanup_is_reported(collected_events):
    with AsyncDropx(CountingResourceFactory(delay=10)):
        pass
    await asyncio.sleep(0)

    loop = asyncio.get_running_loop()
    (task,) = [t for t in runtime._pending if t.get_loop() is loop]
    task.cancel()
    await join_pending()

    assert isinstance(collected_events[-1], events.CleanupCancelled)


def test_failed_init_does_not_break_finalizer():
    with pytest.raises(TypeError):
        AsyncDropx(42)
    gc.collect()


@pytest.mark.asyncio
async def test_cleanup_scheduled_for_wrapper_in_reference_cycle(monkeypatch, collected_events):
    unraisable = []
    monkeypatch.setattr(sys, "unraisablehook", unraisable.append)
    counter = CleanupCounter()

    resource = CountingResourceFactory(counter=counter)
    label = repr(resource)
    wrapper = AsyncDropx(resource)
    resource.owner = wrapper
    del wrapper, resource
    gc.collect()

    await join_pending()
    assert counter.value == 1
    assert not unraisable
    assert [type(e) for e in collected_events if e.resource == label] == [
        events.CleanupScheduled,
        events.CleanupFinished,
    ]


def test_wrapper_attributes_shadow_resource_attributes():
    resource = CountingResourceFactory()
    resource.state = "idle"
    wrapper = AsyncDropx(resource)

    assert wrapper.state == "in_use"
    with pytest.raises(AttributeError):
        wrapper.state = "busy"
    assert resource.state == "idle"

    wrapper.inner.state = "busy"
    assert resource.state == "busy"
    assert wrapper.state == "in_use"

    configure(NullRuntime())
    wrapper.close()
