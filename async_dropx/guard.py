import threading

import statemachine  # type: ignore


class DropState(statemachine.StateMachine):
    """State machine describing the teardown of a single :class:`~async_dropx.AsyncDropx`."""

    # states
    in_use = statemachine.State("in_use", initial=True)
    """The wrapper owns the resource and gives access to it."""

    tearing_down = statemachine.State("tearing_down")
    """Teardown was attempted: the resource is being handed over for cleanup."""

    scheduled = statemachine.State("scheduled", final=True)
    """The cleanup was handed over, either to an execution context or to the caller."""

    skipped = statemachine.State("skipped", final=True)
    """The cleanup could not be handed over and will never run."""

    # transitions
    begin_teardown = in_use.to(tearing_down)
    mark_scheduled = tearing_down.to(scheduled)
    mark_skipped = tearing_down.to(skipped)


IN_USE = DropState.in_use.id
TEARING_DOWN = DropState.tearing_down.id
SCHEDULED = DropState.scheduled.id
SKIPPED = DropState.skipped.id


class ExecutionGuard:
    """Makes sure the teardown of a wrapper is attempted at most once.

    The guard is flipped by :meth:`begin` before anything else happens during teardown,
    so a teardown that fails halfway still counts as attempted.

    The guard follows the transitions of :class:`DropState`, but keeps only the id of the
    current state. It is read from `__del__`, and the garbage collector may already have
    cleared the internals of a `DropState` instance (which is always part of a reference
    cycle) by the time a finalizer runs.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = IN_USE

    @property
    def state(self) -> str:
        return self._state

    @property
    def attempted(self) -> bool:
        return self._state != IN_USE

    @property
    def finished(self) -> bool:
        return self._state in (SCHEDULED, SKIPPED)

    def _advance(self, source: str, target: str) -> bool:
        with self._lock:
            if self._state != source:
                return False
            self._state = target
            return True

    def begin(self) -> bool:
        """Start the teardown. Return False if it was already started before."""
        return self._advance(IN_USE, TEARING_DOWN)

    def mark_scheduled(self) -> None:
        self._advance(TEARING_DOWN, SCHEDULED)

    def mark_skipped(self) -> None:
        self._advance(TEARING_DOWN, SKIPPED)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._state})"
