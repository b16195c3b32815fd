"""Local-first synchronization engine for garagesync."""

from __future__ import annotations

from .errors import InvalidFormat, NetworkError, NotFound, RemoteRejected, StorageError, SyncError
from .journal import SyncHistoryEntry, SyncJournal
from .orchestrator import StoreReplaced, SyncOrchestrator, SyncResult, SyncStatus
from .remote import Ack, BackupClient, DirectoryBackupClient, HttpBackupClient, build_backup_client
from .snapshot import COLLECTIONS, KEY_VALUE, Snapshot, decode_snapshot, encode_snapshot
from .store import LocalStore, load_local_storage_dump

__all__ = [
    # Errors
    "SyncError",
    "InvalidFormat",
    "StorageError",
    "NetworkError",
    "RemoteRejected",
    "NotFound",
    # Snapshot
    "COLLECTIONS",
    "KEY_VALUE",
    "Snapshot",
    "decode_snapshot",
    "encode_snapshot",
    # Store
    "LocalStore",
    "load_local_storage_dump",
    # Remote
    "Ack",
    "BackupClient",
    "DirectoryBackupClient",
    "HttpBackupClient",
    "build_backup_client",
    # Orchestrator
    "SyncOrchestrator",
    "SyncResult",
    "SyncStatus",
    "StoreReplaced",
    "SyncHistoryEntry",
    "SyncJournal",
]
