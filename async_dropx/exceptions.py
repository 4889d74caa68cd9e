class AsyncDropError(Exception):
    """Base class for all errors reported by `async_dropx`."""


class NoExecutionContext(AsyncDropError):
    """No ambient execution context was available when the cleanup had to be scheduled."""

    def __init__(self, runtime: str):
        self.runtime = runtime

        msg = f"No active {runtime} execution context"
        super().__init__(msg)


class EnqueueFailed(AsyncDropError):
    """An execution context was found, but submitting the cleanup to it failed."""

    def __init__(self, runtime: str, reason: str):
        self.runtime = runtime
        self.reason = reason

        msg = f"Failed to enqueue cleanup on {runtime} execution context: {reason}"
        super().__init__(msg)


class CleanupCreationFailed(AsyncDropError):
    """`async_drop()` raised or returned something that can't be awaited."""

    def __init__(self, resource: str):
        self.resource = resource

        msg = f"Failed to obtain the cleanup of {resource}"
        super().__init__(msg)


class CleanupPanicked(AsyncDropError):
    """The detached cleanup raised an exception. The original one is the `__cause__`."""

    def __init__(self, resource: str):
        self.resource = resource

        msg = f"Cleanup of {resource} raised an exception"
        super().__init__(msg)


class CleanupCancelled(AsyncDropError):
    """The detached cleanup was cancelled before it finished."""

    def __init__(self, resource: str):
        self.resource = resource

        msg = f"Cleanup of {resource} was cancelled"
        super().__init__(msg)


class ResourceReleased(AsyncDropError):
    """The wrapped resource was already handed over for cleanup."""

    def __init__(self, drop_id: str):
        self.drop_id = drop_id

        msg = f"Resource of AsyncDropx({drop_id}) was already released"
        super().__init__(msg)
