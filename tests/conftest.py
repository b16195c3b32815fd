"""Shared fixtures for the sync engine tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import pytest

from garagesync.sync import Ack, BackupClient, LocalStore, NotFound

FIXED_NOW = datetime(2024, 3, 5, 12, 30, tzinfo=timezone.utc)


class FakeBackupClient(BackupClient):
    """In-memory backup endpoint with hooks for failures and slow pushes."""

    def __init__(self) -> None:
        self.stored: Optional[str] = None
        self.pushes: List[str] = []
        self.push_error: Optional[Exception] = None
        self.pull_error: Optional[Exception] = None
        # Events must be created inside the running loop.
        self.entered: Optional[asyncio.Event] = None
        self.gate: Optional[asyncio.Event] = None

    async def push(self, snapshot_text: str) -> Ack:
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.push_error is not None:
            raise self.push_error
        self.pushes.append(snapshot_text)
        self.stored = snapshot_text
        return Ack(message="stored")

    async def pull(self) -> str:
        if self.pull_error is not None:
            raise self.pull_error
        if self.stored is None:
            raise NotFound("nothing stored")
        return self.stored


@pytest.fixture
def store(tmp_path: Path):
    local = LocalStore(tmp_path / "garage.db").initialize()
    yield local
    local.close()


@pytest.fixture
def remote() -> FakeBackupClient:
    return FakeBackupClient()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
