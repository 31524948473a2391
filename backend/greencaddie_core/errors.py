from __future__ import annotations


class StorageError(RuntimeError):
    """Raised when the local data store cannot be read or written."""


class NetworkError(RuntimeError):
    """A remote call failed: non-2xx response or transport failure."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackupFormatError(ValueError):
    """A backup document does not match the expected schema."""
