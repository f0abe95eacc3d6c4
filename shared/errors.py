"""Error taxonomy for the capture sync engine."""


class SyncError(Exception):
    """Base class for all sync engine errors."""


class TransientNetworkError(SyncError):
    """Upload or commit failed because the remote service was unreachable or unavailable.

    Retried on the next sync cycle.
    """

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class CapacityError(TransientNetworkError):
    """Payload too large or remote storage exhausted.

    Not handled distinctly: treated like any other transient failure.
    """


class MalformedLocalStateError(SyncError):
    """A local record violates an invariant (missing payload, unknown id, ...).

    The affected entry stays unsynced until the record is repaired.
    """
