"""Backup API server for garagesync."""

from __future__ import annotations

from .server import APIServerState, BackupAPIServer
from .storage import BackupStorage

__all__ = ["APIServerState", "BackupAPIServer", "BackupStorage"]
