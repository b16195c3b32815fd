"""Error taxonomy for the sync engine."""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for every recoverable sync failure."""

    kind = "sync"


class InvalidFormat(SyncError):
    """Snapshot text is malformed or incompatible."""

    kind = "invalid_format"


class StorageError(SyncError):
    """The local store could not complete a read or a transaction."""

    kind = "storage"


class NetworkError(SyncError):
    """Transport-level failure talking to the backup endpoint."""

    kind = "network"


class RemoteRejected(SyncError):
    """The backup endpoint answered with a non-success status."""

    kind = "remote_rejected"

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class NotFound(SyncError):
    """No snapshot has ever been pushed to the backup endpoint."""

    kind = "not_found"


__all__ = [
    "SyncError",
    "InvalidFormat",
    "StorageError",
    "NetworkError",
    "RemoteRejected",
    "NotFound",
]
