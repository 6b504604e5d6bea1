"""Errors raised by the processing queue."""


class QueueError(Exception):
    """Base class for queue errors."""


class AlreadyQueuedError(QueueError):
    """The owner already has a waiting or processing entry."""

    def __init__(self, owner_id: str):
        self.owner_id: str = owner_id
        super().__init__(f"Owner {owner_id} is already waiting or processing")


class EntryNotFoundError(QueueError):
    """No active entry matches the request."""

    def __init__(self, owner_id: str, detail: str = "No active queue entry"):
        self.owner_id: str = owner_id
        super().__init__(f"{detail} for owner {owner_id}")


class StoreUnavailableError(QueueError):
    """The queue store could not be reached or a transaction failed.

    The failed operation was rolled back and may be retried.
    """


class TelemetryError(QueueError):
    """A status recorder failed to write. Never surfaced to queue callers."""
