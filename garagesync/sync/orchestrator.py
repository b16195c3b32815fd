"""Sync orchestrator: owns sync status and drives push, restore, export and import."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional

from .errors import SyncError
from .journal import JournalState, SyncHistoryEntry, SyncJournal
from .remote import BackupClient
from .snapshot import decode_snapshot, encode_snapshot
from .store import LocalStore

logger = logging.getLogger("garagesync.sync.orchestrator")

DEFAULT_INTERVAL = 5 * 60.0
DEFAULT_HISTORY_LIMIT = 50
DEFAULT_EXPORT_PREFIX = "garage-backup"

_ERROR_LABELS: Dict[str, str] = {
    "invalid_format": "Invalid snapshot",
    "storage": "Storage failure",
    "network": "Network error",
    "remote_rejected": "Backup rejected",
    "not_found": "No backup found",
    "sync": "Sync error",
}


@dataclass(frozen=True)
class SyncStatus:
    """Immutable view of the sync state handed to observers."""

    is_enabled: bool = False
    last_sync: Optional[datetime] = None
    sync_in_progress: bool = False
    error: Optional[str] = None
    total_records: int = 0
    synced_records: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_enabled": self.is_enabled,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "sync_in_progress": self.sync_in_progress,
            "error": self.error,
            "total_records": self.total_records,
            "synced_records": self.synced_records,
        }


@dataclass
class SyncResult:
    """Outcome of a sync, restore or import call."""

    success: bool
    operation: str
    records: int = 0
    skipped: bool = False
    message: str = ""
    error_kind: Optional[str] = None
    counts: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class StoreReplaced:
    """Emitted after a restore or import has committed new store contents."""

    source: str  # "cloud" or "import"
    counts: Dict[str, int]


StoreListener = Callable[[StoreReplaced], None]


class SyncOrchestrator:
    """Keeps the local store and the backup endpoint in step.

    At most one sync or restore runs at a time; a second call made while one
    is in flight returns a skipped result straight away. The periodic timer
    only ever starts a sync through the same guard.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[BackupClient],
        *,
        interval: float = DEFAULT_INTERVAL,
        sync_on_enable: bool = True,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        journal: Optional[SyncJournal] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if interval <= 0:
            raise ValueError("Sync interval must be positive")
        self.store = store
        self.remote = remote
        self.interval = interval
        self.sync_on_enable = sync_on_enable
        self.journal = journal
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._enabled = False
        self._in_progress = False
        self._last_sync: Optional[datetime] = None
        self._error: Optional[str] = None
        self._total_records = 0
        self._synced_records = 0
        self._history: Deque[SyncHistoryEntry] = deque(maxlen=history_limit)

        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Future] = None
        self._listeners: List[StoreListener] = []

        if journal is not None:
            self._restore_journal(journal.load())

    # ------------------------------------------------------------------
    # Status

    @property
    def status(self) -> SyncStatus:
        """Current status using the last known record total."""
        return SyncStatus(
            is_enabled=self._enabled,
            last_sync=self._last_sync,
            sync_in_progress=self._in_progress,
            error=self._error,
            total_records=self._total_records,
            synced_records=self._synced_records,
        )

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def get_sync_status(self) -> SyncStatus:
        """Current status with ``total_records`` recounted from the store."""
        try:
            counts = await asyncio.to_thread(self.store.count)
        except SyncError as e:
            logger.warning("Could not count local records: %s", e)
        else:
            self._total_records = sum(counts.values())
        return self.status

    async def watch_status(self, poll_interval: float = 2.0) -> AsyncIterator[SyncStatus]:
        """Yield a fresh status every ``poll_interval`` seconds."""
        while True:
            yield await self.get_sync_status()
            await asyncio.sleep(poll_interval)

    def get_sync_history(self) -> List[SyncHistoryEntry]:
        return list(self._history)

    # ------------------------------------------------------------------
    # Auto-sync

    async def toggle_sync(self, enabled: bool) -> Optional[SyncResult]:
        """Turn periodic sync on or off; no-op when already in that state."""
        if enabled == self._enabled:
            return None
        self._enabled = enabled
        if not enabled:
            self._disarm_timer()
            logger.info("Auto-sync disabled")
            return None

        self._arm_timer()
        logger.info("Auto-sync enabled (every %.0fs)", self.interval)
        if self.sync_on_enable:
            return await self.perform_sync()
        return None

    def _arm_timer(self) -> None:
        self._disarm_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.create_task(self._auto_sync_loop(), name="garagesync-auto-sync")

    def _disarm_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _auto_sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self._in_progress:
                logger.info("Auto-sync skipped; a sync is already running")
                continue
            # Shielded so disabling auto-sync never aborts a running attempt.
            self._inflight = asyncio.ensure_future(self.perform_sync())
            await asyncio.shield(self._inflight)

    # ------------------------------------------------------------------
    # Operations

    async def perform_sync(self) -> SyncResult:
        """Push a full snapshot of the local store to the backup endpoint."""
        if self._in_progress:
            logger.info("Sync already in progress; skipping")
            return SyncResult(
                success=False,
                operation="sync",
                skipped=True,
                message="Sync already in progress",
            )

        self._in_progress = True
        self._error = None
        try:
            if self.remote is None:
                raise SyncError("No backup endpoint configured")
            collections = await asyncio.to_thread(self.store.read_all)
            records = sum(len(items) for items in collections.values())
            text = encode_snapshot(collections, export_date=self._clock())
            await self.remote.push(text)
        except SyncError as e:
            result = self._record_failure("sync", e)
        except Exception as e:
            logger.exception("Sync failed")
            result = self._record_failure("sync", e)
        else:
            self._last_sync = self._clock()
            self._total_records = records
            self._synced_records = records
            result = self._record_success("sync", records, f"Synced {records} records")
        finally:
            self._in_progress = False
            self._save_journal()
        return result

    async def restore_from_cloud(self) -> SyncResult:
        """Replace the local store with the latest backup."""
        if self._in_progress:
            logger.info("Sync already in progress; restore skipped")
            return SyncResult(
                success=False,
                operation="restore",
                skipped=True,
                message="Sync already in progress",
            )

        self._in_progress = True
        self._error = None
        try:
            if self.remote is None:
                raise SyncError("No backup endpoint configured")
            text = await self.remote.pull()
            snapshot = decode_snapshot(text)
            counts = await asyncio.to_thread(self.store.replace_all, snapshot.collections, True)
        except SyncError as e:
            result = self._record_failure("restore", e)
        except Exception as e:
            logger.exception("Restore failed")
            result = self._record_failure("restore", e)
        else:
            records = sum(counts.values())
            self._total_records = records
            result = self._record_success("restore", records, f"Restored {records} records", counts)
        finally:
            self._in_progress = False
            self._save_journal()

        if result.success:
            self._emit(StoreReplaced(source="cloud", counts=result.counts))
        return result

    async def export_data(self) -> str:
        """Snapshot text of the whole local store. Raises ``StorageError``."""
        collections = await asyncio.to_thread(self.store.read_all)
        return encode_snapshot(collections, export_date=self._clock())

    async def export_to_file(self, directory: Path, prefix: str = DEFAULT_EXPORT_PREFIX) -> Path:
        """Write an export named ``<prefix>-YYYY-MM-DD.json`` under ``directory``."""
        text = await self.export_data()
        target = directory / f"{prefix}-{self._clock().date().isoformat()}.json"

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")

        await asyncio.to_thread(_write)
        logger.info("Exported local store to %s", target)
        return target

    async def import_data(self, text: str) -> SyncResult:
        """Replace the local store with a user-supplied snapshot."""
        try:
            snapshot = decode_snapshot(text)
            counts = await asyncio.to_thread(self.store.replace_all, snapshot.collections, False)
        except SyncError as e:
            result = self._record_failure("import", e, set_status=False)
        except Exception as e:
            logger.exception("Import failed")
            result = self._record_failure("import", e, set_status=False)
        else:
            records = sum(counts.values())
            self._total_records = records
            result = self._record_success("import", records, f"Imported {records} records", counts)
        self._save_journal()

        if result.success:
            self._emit(StoreReplaced(source="import", counts=result.counts))
        return result

    async def import_file(self, path: Path) -> SyncResult:
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            message = f"Failed to read {path}: {e}"
            logger.error(message)
            return SyncResult(success=False, operation="import", message=message, error_kind="io")
        return await self.import_data(text)

    # ------------------------------------------------------------------
    # Store-replaced listeners

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: StoreReplaced) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Store-replaced listener %r failed", listener)

    # ------------------------------------------------------------------
    # Lifecycle

    def reset(self) -> None:
        """Disarm auto-sync and put status and history back to defaults."""
        self._disarm_timer()
        self._enabled = False
        self._last_sync = None
        self._error = None
        self._total_records = 0
        self._synced_records = 0
        self._history.clear()
        self._save_journal()
        logger.info("Sync status reset")

    async def close(self) -> None:
        """Stop auto-sync and wait for a timer-started sync to finish."""
        self._enabled = False
        self._disarm_timer()
        if self._inflight is not None and not self._inflight.done():
            await self._inflight
        self._inflight = None

    # ------------------------------------------------------------------

    def _record_success(
        self,
        operation: str,
        records: int,
        message: str,
        counts: Optional[Dict[str, int]] = None,
    ) -> SyncResult:
        self._history.append(
            SyncHistoryEntry(timestamp=self._clock(), operation=operation, success=True, records=records)
        )
        logger.info("%s succeeded: %s", operation.capitalize(), message)
        return SyncResult(
            success=True,
            operation=operation,
            records=records,
            message=message,
            counts=dict(counts or {}),
        )

    def _record_failure(self, operation: str, error: Exception, set_status: bool = True) -> SyncResult:
        kind = error.kind if isinstance(error, SyncError) else "unexpected"
        label = _ERROR_LABELS.get(kind, f"{operation.capitalize()} failed")
        message = f"{label}: {error}"
        if set_status:
            self._error = message
        self._history.append(
            SyncHistoryEntry(timestamp=self._clock(), operation=operation, success=False, error=message)
        )
        logger.error("%s failed: %s", operation.capitalize(), message)
        return SyncResult(success=False, operation=operation, message=message, error_kind=kind)

    def _restore_journal(self, state: JournalState) -> None:
        self._last_sync = state.last_sync
        self._synced_records = state.synced_records
        self._error = state.error
        self._history.extend(state.history)

    def _save_journal(self) -> None:
        if self.journal is None:
            return
        self.journal.save(
            JournalState(
                last_sync=self._last_sync,
                synced_records=self._synced_records,
                error=self._error,
                history=list(self._history),
            )
        )


__all__ = [
    "DEFAULT_EXPORT_PREFIX",
    "DEFAULT_INTERVAL",
    "StoreListener",
    "StoreReplaced",
    "SyncOrchestrator",
    "SyncResult",
    "SyncStatus",
]
