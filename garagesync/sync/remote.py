"""Backup endpoint clients.

Clients move snapshot text to and from wherever backups live. They never
retry; a failure is raised as one of the typed sync errors and the caller
decides what to do with it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import NetworkError, NotFound, RemoteRejected

logger = logging.getLogger("garagesync.sync.remote")

DEFAULT_BACKUP_PATH = "/api/v1/backup"
DEFAULT_TIMEOUT = 30.0


@dataclass
class Ack:
    """Acknowledgement returned by a successful push."""

    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    message: str = ""


class BackupClient(ABC):
    """Where snapshots are pushed to and pulled from."""

    @abstractmethod
    async def push(self, snapshot_text: str) -> Ack:
        """Store ``snapshot_text`` as the latest backup."""

    @abstractmethod
    async def pull(self) -> str:
        """Return the latest stored snapshot text."""

    def describe(self) -> str:
        return type(self).__name__


class HttpBackupClient(BackupClient):
    """Client for the HTTP backup endpoint."""

    def __init__(
        self,
        base_url: str,
        path: str = DEFAULT_BACKUP_PATH,
        timeout: float = DEFAULT_TIMEOUT,
        user_id: str = "default",
    ):
        if not base_url:
            raise ValueError("A backup server URL is required")
        self.base_url = base_url
        self.path = path
        self.timeout = timeout
        self.user_id = user_id

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.path.lstrip('/')}"

    def describe(self) -> str:
        return self.endpoint

    async def push(self, snapshot_text: str) -> Ack:
        return await asyncio.to_thread(self._push_blocking, snapshot_text)

    async def pull(self) -> str:
        return await asyncio.to_thread(self._pull_blocking)

    def _push_blocking(self, snapshot_text: str) -> Ack:
        req = Request(
            self.endpoint,
            data=snapshot_text.encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "X-User-Id": self.user_id,
            },
            method="POST",
        )
        body = self._send(req, "push")
        payload = _parse_json_object(body)
        ack = Ack(message=str(payload.get("message", "")))
        if payload.get("timestamp"):
            ack.timestamp = str(payload["timestamp"])
        logger.info("Pushed %d bytes to %s", len(snapshot_text), self.endpoint)
        return ack

    def _pull_blocking(self) -> str:
        req = Request(
            self.endpoint,
            headers={
                "Accept": "application/json",
                "X-User-Id": self.user_id,
            },
            method="GET",
        )
        body = self._send(req, "pull")
        logger.info("Pulled %d bytes from %s", len(body), self.endpoint)
        return body

    def _send(self, req: Request, operation: str) -> str:
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return resp.read().decode("utf-8")
        except HTTPError as e:
            detail = _error_detail(e)
            if operation == "pull" and e.code == 404:
                raise NotFound(f"No backup stored at {self.endpoint}") from e
            logger.warning("Backup %s rejected: %s %s", operation, e.code, detail)
            raise RemoteRejected(f"HTTP error: {e.code} {detail}", status=e.code) from e
        except URLError as e:
            raise NetworkError(f"Connection error: {e.reason}") from e
        except (socket.timeout, TimeoutError) as e:
            raise NetworkError(f"Backup {operation} timed out after {self.timeout}s") from e
        except (ConnectionError, OSError) as e:
            raise NetworkError(f"Backup {operation} failed: {e}") from e


class DirectoryBackupClient(BackupClient):
    """Keeps the latest backup as a file in a local directory."""

    def __init__(self, directory: Path, filename: str = "latest.json"):
        self.directory = Path(directory)
        self.filename = filename

    @property
    def backup_path(self) -> Path:
        return self.directory / self.filename

    def describe(self) -> str:
        return str(self.backup_path)

    async def push(self, snapshot_text: str) -> Ack:
        return await asyncio.to_thread(self._write, snapshot_text)

    async def pull(self) -> str:
        return await asyncio.to_thread(self._read)

    def _write(self, snapshot_text: str) -> Ack:
        tmp_path = self.backup_path.with_suffix(".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(snapshot_text, encoding="utf-8")
            os.replace(tmp_path, self.backup_path)
        except OSError as e:
            raise NetworkError(f"Failed to write backup {self.backup_path}: {e}") from e
        logger.info("Wrote backup to %s", self.backup_path)
        return Ack(message="Backup stored successfully")

    def _read(self) -> str:
        if not self.backup_path.exists():
            raise NotFound(f"No backup found at {self.backup_path}")
        try:
            return self.backup_path.read_text(encoding="utf-8")
        except OSError as e:
            raise NetworkError(f"Failed to read backup {self.backup_path}: {e}") from e


def build_backup_client(config: Dict[str, Any], data_dir: Path) -> Optional[BackupClient]:
    """Build the configured client, or ``None`` when no remote is configured."""

    remote = config.get("remote", {}) if config else {}
    kind = str(remote.get("kind", "http"))
    if kind == "directory":
        directory = Path(remote.get("directory") or "backups")
        if not directory.is_absolute():
            directory = data_dir / directory
        return DirectoryBackupClient(directory)
    if kind != "http":
        raise ValueError(f"Unknown remote kind '{kind}'")
    url = str(remote.get("url") or "")
    if not url:
        return None
    return HttpBackupClient(
        url,
        path=str(remote.get("path", DEFAULT_BACKUP_PATH)),
        timeout=float(remote.get("timeout", DEFAULT_TIMEOUT)),
        user_id=str(remote.get("user_id", "default")),
    )


def _parse_json_object(body: str) -> Dict[str, Any]:
    try:
        data = json.loads(body) if body else {}
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_detail(error: HTTPError) -> str:
    try:
        body = error.read().decode("utf-8")
    except (OSError, AttributeError):
        body = ""
    payload = _parse_json_object(body)
    return str(payload.get("error") or error.reason or "")


__all__ = [
    "Ack",
    "BackupClient",
    "DirectoryBackupClient",
    "HttpBackupClient",
    "build_backup_client",
]
