import logging
import threading
from typing import Callable, List

from async_dropx import events
from async_dropx.log import log_event

logger = logging.getLogger(__name__)

EventConsumer = Callable[[events.Event], None]


class EventEmitter:
    """Deliver events to synchronous consumers.

    Events are emitted from places that must never fail (e.g. `__del__` of a wrapper),
    so consumers are called synchronously, in the emitting thread, and an exception raised
    by a consumer is logged and otherwise ignored.

    Sample usage::

        skipped = []

        def on_event(event: events.Event) -> None:
            if isinstance(event, events.CleanupSkipped):
                skipped.append(event)

        add_event_consumer(on_event)
    """

    def __init__(self) -> None:
        self._consumers: List[EventConsumer] = []
        #   Reentrant: an emit can start in a finalizer while this thread is inside another one
        self._lock = threading.RLock()

    def add_event_consumer(self, event_consumer: EventConsumer) -> None:
        with self._lock:
            self._consumers.append(event_consumer)

    def remove_event_consumer(self, event_consumer: EventConsumer) -> None:
        with self._lock:
            self._consumers.remove(event_consumer)

    def emit(self, event: events.Event) -> None:
        """Log the event and pass it to all consumers."""
        try:
            log_event(event)
        except Exception:
            logger.exception("Failed to log %s", type(event).__name__)

        with self._lock:
            consumers = list(self._consumers)

        for consumer in consumers:
            try:
                consumer(event)
            except Exception:
                logger.exception("Unhandled exception in event consumer %r", consumer)


_default_emitter = EventEmitter()


def add_event_consumer(event_consumer: EventConsumer) -> None:
    """Register a callable that will receive every emitted event."""
    _default_emitter.add_event_consumer(event_consumer)


def remove_event_consumer(event_consumer: EventConsumer) -> None:
    _default_emitter.remove_event_consumer(event_consumer)


def emit(event: events.Event) -> None:
    _default_emitter.emit(event)
