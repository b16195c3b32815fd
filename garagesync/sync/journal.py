"""Persistence for sync status and attempt history between runs."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("garagesync.sync.journal")


@dataclass
class SyncHistoryEntry:
    """One recorded sync, restore or import attempt."""

    timestamp: datetime
    operation: str  # "sync", "restore", "import"
    success: bool
    records: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "operation": self.operation,
            "success": self.success,
            "records": self.records,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncHistoryEntry":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            operation=data["operation"],
            success=bool(data["success"]),
            records=int(data.get("records", 0)),
            error=data.get("error"),
        )


@dataclass
class JournalState:
    last_sync: Optional[datetime] = None
    synced_records: int = 0
    error: Optional[str] = None
    history: List[SyncHistoryEntry] = field(default_factory=list)


class SyncJournal:
    """Stores the last known sync outcome and history as a JSON file."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> JournalState:
        if not self.path.exists():
            return JournalState()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            last_sync = data.get("last_sync")
            return JournalState(
                last_sync=datetime.fromisoformat(last_sync) if last_sync else None,
                synced_records=int(data.get("synced_records", 0)),
                error=data.get("error"),
                history=[SyncHistoryEntry.from_dict(item) for item in data.get("history", [])],
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load sync journal from %s: %s", self.path, e)
            return JournalState()

    def save(self, state: JournalState) -> None:
        payload = {
            "last_sync": state.last_sync.isoformat() if state.last_sync else None,
            "synced_records": state.synced_records,
            "error": state.error,
            "history": [entry.to_dict() for entry in state.history],
        }
        tmp_path = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            # Journal write failures never fail the operation that triggered them.
            logger.warning("Failed to save sync journal to %s: %s", self.path, e)
            return
        logger.debug("Saved sync journal to %s (%d entries)", self.path, len(state.history))


__all__ = ["JournalState", "SyncHistoryEntry", "SyncJournal"]
