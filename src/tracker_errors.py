from typing import Optional


class TrackerError(Exception):
    """Base error for the bill tracker. Carries the path and operation for display."""

    def __init__(self, path: Optional[str], operation: str, message: str):
        self.path = path
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed for {path}: {message}" if path else f"{operation} failed: {message}")

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "path": self.path,
            "operation": self.operation,
            "message": self.message,
        }


class ScanError(TrackerError):
    """A single path could not be read. Reported inside scan results, never raised."""


class MatchError(TrackerError):
    """The GST submitted root could not be read."""


class PersistenceError(TrackerError):
    """Writing or reading a persisted JSON document failed."""


class MirrorError(TrackerError):
    """Copying into or deleting from the GST submitted tree failed."""
