"""Custom exceptions for the file watcher package."""


class FileWatcherError(Exception):
    """Base exception for all file watcher errors."""
    pass


class InvalidPathError(FileWatcherError):
    """Path cannot be converted between native and canonical form."""
    pass


class MalformedWatchConfigError(FileWatcherError):
    """Watch configuration payload is missing fields or has invalid rules."""
    pass


class MalformedMessageError(FileWatcherError):
    """Push message or change payload could not be decoded."""
    pass


class SnapshotStoreError(FileWatcherError):
    """Error related to the snapshot store."""
    pass


class DeliveryError(FileWatcherError):
    """Error related to delivering data to the server."""
    pass


class DeliveryAbortedError(DeliveryError):
    """Delivery was interrupted because the watcher is shutting down."""

    def __init__(self, message: str, project_id: str = None, batch_timestamp_ms: int = None):
        super().__init__(message)
        self.project_id = project_id
        self.batch_timestamp_ms = batch_timestamp_ms


class WatcherNotRunningError(FileWatcherError):
    """Watcher process is not running."""
    pass


class WatcherAlreadyRunningError(FileWatcherError):
    """Watcher process is already running."""
    pass
