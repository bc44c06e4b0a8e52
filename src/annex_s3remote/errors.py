class RemoteError(Exception):
    """Base class for failures reported back to the tracker."""


class ConfigurationError(RemoteError):
    """A required setting is missing or invalid."""


class NotReadyError(RemoteError):
    """A request arrived before the remote was prepared."""


class UnsupportedRequest(RemoteError):
    """The remote does not implement this request; the tracker falls back."""


class RemoteOperationError(RemoteError):
    """An operation on one key failed."""

    def __init__(self, operation, key, message):
        self.operation = operation
        self.key = key
        super().__init__(f"{operation} {key}: {message}")


class LocalIOError(RemoteOperationError):
    """The local file could not be opened, read, hashed or written."""


class RetriesExhausted(RemoteOperationError):
    """Transient upload failures persisted past the retry limit."""

    def __init__(self, operation, key, message, attempts):
        self.attempts = attempts
        super().__init__(operation, key, message)
