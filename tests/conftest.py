import pytest

from async_dropx import configure, event_emitter
from async_dropx.runtime import AsyncioRuntime


@pytest.fixture(autouse=True)
def asyncio_runtime():
    """Every test starts with the default runtime, whatever the environment says."""
    runtime = configure(AsyncioRuntime())
    yield runtime
    configure(AsyncioRuntime())


@pytest.fixture
def collected_events():
    """List of all events emitted during the test."""
    got_events = []
    event_emitter.add_event_consumer(got_events.append)
    yield got_events
    event_emitter.remove_event_consumer(got_events.append)
