class PartySyncError(Exception):
    """Base error whose message is safe to show to the requesting client."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(PartySyncError):
    pass


class TrackResolutionError(PartySyncError):
    pass


class TrackNotQueuedError(PartySyncError):
    pass


class MalformedStateError(PartySyncError):
    """A persisted timeline field could not be parsed."""
