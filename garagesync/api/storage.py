"""On-disk storage for backups received by the API server."""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger("garagesync.api.storage")

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.@-]{1,128}$")


class BackupStorage:
    """Keeps the latest snapshot per user as ``<user_id>.json``.

    Writes go through a temporary file and ``os.replace`` so a reader never
    sees a half-written backup.
    """

    def __init__(self, root: Path):
        self.root = root

    @staticmethod
    def valid_user_id(user_id: str) -> bool:
        return bool(_USER_ID_PATTERN.match(user_id)) and user_id not in (".", "..")

    def path_for(self, user_id: str) -> Path:
        if not self.valid_user_id(user_id):
            raise ValueError(f"Invalid user id: {user_id!r}")
        return self.root / f"{user_id}.json"

    def save(self, user_id: str, snapshot_text: str) -> datetime:
        target = self.path_for(user_id)
        tmp_path = target.with_suffix(".tmp")
        self.root.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(snapshot_text)
        os.replace(tmp_path, target)
        stored_at = datetime.now(timezone.utc)
        logger.info("Stored backup for %s (%d bytes)", user_id, len(snapshot_text))
        return stored_at

    def load(self, user_id: str) -> Optional[str]:
        target = self.path_for(user_id)
        if not target.exists():
            return None
        return target.read_text(encoding="utf-8")


__all__ = ["BackupStorage"]
