"""Tests for the sync orchestrator."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from garagesync.sync import (
    Ack,
    BackupClient,
    InvalidFormat,
    LocalStore,
    NetworkError,
    StoreReplaced,
    SyncJournal,
    SyncOrchestrator,
    decode_snapshot,
    encode_snapshot,
)

NOW = datetime(2024, 3, 5, 12, 30, tzinfo=timezone.utc)


def _seed(store: LocalStore, customers: int = 0, vehicles: int = 0, repairs: int = 0) -> None:
    for i in range(customers):
        store.add("customers", {"name": f"Customer {i}"})
    for i in range(vehicles):
        store.add("vehicles", {"plate": f"PL-{i}"})
    for i in range(repairs):
        store.add("repairs", {"summary": f"Repair {i}"})


def test_rejects_non_positive_interval(store, remote):
    with pytest.raises(ValueError):
        SyncOrchestrator(store, remote, interval=0)


def test_perform_sync_pushes_whole_store(store, remote, clock):
    _seed(store, customers=20, vehicles=15, repairs=7)
    orchestrator = SyncOrchestrator(store, remote, clock=clock)

    result = asyncio.run(orchestrator.perform_sync())
    status = orchestrator.status

    assert result.success
    assert result.records == 42
    assert status.total_records == 42
    assert status.synced_records == 42
    assert status.last_sync == NOW
    assert status.error is None
    assert not status.sync_in_progress
    pushed = decode_snapshot(remote.pushes[0])
    assert pushed.counts()["customers"] == 20
    assert pushed.export_date == NOW


def test_concurrent_sync_is_skipped(store, remote):
    _seed(store, customers=3)
    orchestrator = SyncOrchestrator(store, remote)

    async def scenario():
        remote.entered = asyncio.Event()
        remote.gate = asyncio.Event()
        first = asyncio.ensure_future(orchestrator.perform_sync())
        await remote.entered.wait()
        in_flight = orchestrator.status.sync_in_progress
        second = await orchestrator.perform_sync()
        restore = await orchestrator.restore_from_cloud()
        remote.gate.set()
        return in_flight, await first, second, restore

    in_flight, first, second, restore = asyncio.run(scenario())

    assert in_flight
    assert first.success
    assert second.skipped and not second.success
    assert restore.skipped
    assert len(remote.pushes) == 1
    assert not orchestrator.status.sync_in_progress


def test_failed_push_keeps_last_sync_and_sets_error(store, remote, clock):
    _seed(store, customers=2)
    orchestrator = SyncOrchestrator(store, remote, clock=clock)
    asyncio.run(orchestrator.perform_sync())

    remote.push_error = NetworkError("connection refused")
    result = asyncio.run(orchestrator.perform_sync())
    status = orchestrator.status

    assert not result.success
    assert result.error_kind == "network"
    assert status.error.startswith("Network error")
    assert status.last_sync == NOW
    assert status.synced_records == 2
    assert not status.sync_in_progress

    remote.push_error = None
    assert asyncio.run(orchestrator.perform_sync()).success
    assert orchestrator.status.error is None


def test_sync_without_remote_fails_cleanly(store):
    orchestrator = SyncOrchestrator(store, None)

    result = asyncio.run(orchestrator.perform_sync())

    assert not result.success
    assert result.error_kind == "sync"
    assert "No backup endpoint configured" in orchestrator.status.error


def test_restore_replaces_store_and_keeps_ids(store, remote):
    _seed(store, customers=1)
    remote.stored = encode_snapshot(
        {
            "customers": [{"id": 10, "name": "Ada"}, {"id": 11, "name": "Grace"}],
            "vehicles": [{"id": 5, "customerId": 10}],
        }
    )
    orchestrator = SyncOrchestrator(store, remote)
    events = []

    def listener(event: StoreReplaced) -> None:
        events.append((event, orchestrator.status.sync_in_progress))

    orchestrator.add_listener(listener)
    result = asyncio.run(orchestrator.restore_from_cloud())
    data = store.read_all()

    assert result.success
    assert result.records == 3
    assert [r["id"] for r in data["customers"]] == [10, 11]
    assert data["vehicles"] == [{"id": 5, "customerId": 10}]
    assert orchestrator.status.total_records == 3
    assert len(events) == 1
    event, busy_during_event = events[0]
    assert event.source == "cloud"
    assert event.counts["customers"] == 2
    assert not busy_during_event


@pytest.mark.parametrize(
    "stored, pull_error, kind",
    [
        (None, None, "not_found"),
        ('{"customers": "nope"}', None, "invalid_format"),
        (None, NetworkError("offline"), "network"),
    ],
)
def test_failed_restore_leaves_store_untouched(store, remote, stored, pull_error, kind):
    _seed(store, customers=2, vehicles=1)
    before = store.read_all()
    remote.stored = stored
    remote.pull_error = pull_error
    orchestrator = SyncOrchestrator(store, remote)
    events = []
    orchestrator.add_listener(events.append)

    result = asyncio.run(orchestrator.restore_from_cloud())

    assert not result.success
    assert result.error_kind == kind
    assert orchestrator.status.error is not None
    assert store.read_all() == before
    assert events == []


def test_invalid_import_changes_nothing(store, remote):
    _seed(store, customers=2)
    before = store.read_all()
    orchestrator = SyncOrchestrator(store, remote)

    result = asyncio.run(orchestrator.import_data('{"customers": "not-an-array"}'))

    assert not result.success
    assert result.error_kind == InvalidFormat.kind
    assert store.read_all() == before
    assert orchestrator.status.error is None
    history = orchestrator.get_sync_history()
    assert history[-1].operation == "import"
    assert not history[-1].success


def test_import_assigns_fresh_ids(store, remote):
    orchestrator = SyncOrchestrator(store, remote)
    events = []
    orchestrator.add_listener(events.append)

    result = asyncio.run(orchestrator.import_data(json.dumps({"customers": [{"id": 900, "name": "Ada"}]})))

    assert result.success
    assert result.counts["customers"] == 1
    assert store.read_all()["customers"][0]["id"] != 900
    assert events[0].source == "import"


def test_import_file_reports_unreadable_path(store, remote, tmp_path: Path):
    orchestrator = SyncOrchestrator(store, remote)

    result = asyncio.run(orchestrator.import_file(tmp_path / "missing.json"))

    assert not result.success
    assert result.error_kind == "io"


def test_export_to_file_uses_dated_name(store, remote, clock, tmp_path: Path):
    _seed(store, customers=1, repairs=2)
    orchestrator = SyncOrchestrator(store, remote, clock=clock)

    target = asyncio.run(orchestrator.export_to_file(tmp_path / "exports"))

    assert target.name == "garage-backup-2024-03-05.json"
    snapshot = decode_snapshot(target.read_text(encoding="utf-8"))
    assert snapshot.counts()["repairs"] == 2


def test_get_sync_status_recounts_local_records(store, remote):
    orchestrator = SyncOrchestrator(store, remote)
    _seed(store, vehicles=4)

    status = asyncio.run(orchestrator.get_sync_status())

    assert status.total_records == 4
    assert status.synced_records == 0


def test_watch_status_yields_snapshots(store, remote):
    orchestrator = SyncOrchestrator(store, remote)
    _seed(store, customers=1)

    async def first_two():
        seen = []
        async for status in orchestrator.watch_status(poll_interval=0.01):
            seen.append(status)
            if len(seen) == 2:
                break
        return seen

    seen = asyncio.run(first_two())

    assert [s.total_records for s in seen] == [1, 1]


def test_toggle_sync_arms_and_disarms_timer(store, remote):
    orchestrator = SyncOrchestrator(store, remote, sync_on_enable=False)

    async def scenario():
        enabled = await orchestrator.toggle_sync(True)
        armed = orchestrator.timer_active
        again = await orchestrator.toggle_sync(True)
        await orchestrator.toggle_sync(False)
        disarmed = not orchestrator.timer_active
        return enabled, armed, again, disarmed

    enabled, armed, again, disarmed = asyncio.run(scenario())

    assert enabled is None
    assert armed
    assert again is None
    assert disarmed
    assert not orchestrator.status.is_enabled
    assert remote.pushes == []


def test_enabling_sync_runs_an_immediate_sync(store, remote):
    _seed(store, customers=1)
    orchestrator = SyncOrchestrator(store, remote)

    async def scenario():
        result = await orchestrator.toggle_sync(True)
        await orchestrator.close()
        return result

    result = asyncio.run(scenario())

    assert result.success
    assert len(remote.pushes) == 1


def test_timer_triggers_periodic_sync(store, remote):
    orchestrator = SyncOrchestrator(store, remote, interval=0.01, sync_on_enable=False)

    async def scenario():
        await orchestrator.toggle_sync(True)
        await asyncio.sleep(0.2)
        await orchestrator.close()

    asyncio.run(scenario())

    assert len(remote.pushes) >= 1
    assert not orchestrator.timer_active


def test_disabling_does_not_abort_a_running_sync(store, remote):
    orchestrator = SyncOrchestrator(store, remote, interval=0.01, sync_on_enable=False)

    async def scenario():
        remote.entered = asyncio.Event()
        remote.gate = asyncio.Event()
        await orchestrator.toggle_sync(True)
        await remote.entered.wait()
        await orchestrator.toggle_sync(False)
        remote.gate.set()
        await orchestrator.close()

    asyncio.run(scenario())

    assert len(remote.pushes) == 1
    assert orchestrator.status.last_sync is not None
    assert not orchestrator.status.sync_in_progress


def test_history_is_bounded(store, remote):
    remote.push_error = NetworkError("offline")
    orchestrator = SyncOrchestrator(store, remote, history_limit=2)

    for _ in range(3):
        asyncio.run(orchestrator.perform_sync())

    assert len(orchestrator.get_sync_history()) == 2


def test_listener_failure_does_not_break_import(store, remote):
    orchestrator = SyncOrchestrator(store, remote)

    def broken(_event):
        raise RuntimeError("listener exploded")

    orchestrator.add_listener(broken)
    result = asyncio.run(orchestrator.import_data(json.dumps({"customers": []})))

    assert result.success
    orchestrator.remove_listener(broken)


def test_journal_restores_state_across_instances(store, remote, clock, tmp_path: Path):
    journal = SyncJournal(tmp_path / "state" / "sync_state.json")
    _seed(store, customers=3)
    first = SyncOrchestrator(store, remote, journal=journal, clock=clock)
    asyncio.run(first.perform_sync())

    second = SyncOrchestrator(store, remote, journal=journal, clock=clock)

    assert second.status.last_sync == NOW
    assert second.status.synced_records == 3
    assert [entry.operation for entry in second.get_sync_history()] == ["sync"]


def test_reset_clears_status_and_history(store, remote, clock):
    _seed(store, customers=1)
    orchestrator = SyncOrchestrator(store, remote, clock=clock)
    asyncio.run(orchestrator.perform_sync())

    orchestrator.reset()
    status = orchestrator.status

    assert status.last_sync is None
    assert status.synced_records == 0
    assert orchestrator.get_sync_history() == []


def test_status_to_dict_is_json_friendly(store, remote, clock):
    orchestrator = SyncOrchestrator(store, remote, clock=clock)
    asyncio.run(orchestrator.perform_sync())

    payload = orchestrator.status.to_dict()

    assert payload["last_sync"] == NOW.isoformat()
    assert json.loads(json.dumps(payload)) == payload


def test_unexpected_errors_become_failures(store, clock):
    class ExplodingClient(BackupClient):
        async def push(self, snapshot_text: str) -> Ack:
            raise RuntimeError("boom")

        async def pull(self) -> str:
            raise RuntimeError("boom")

    orchestrator = SyncOrchestrator(store, ExplodingClient(), clock=clock)

    result = asyncio.run(orchestrator.perform_sync())

    assert not result.success
    assert result.error_kind == "unexpected"
    assert not orchestrator.status.sync_in_progress
    assert orchestrator.status.last_sync is None


def test_restore_with_out_of_range_id_keeps_data_for_next_sync(store, remote):
    _seed(store, customers=1)
    remote.stored = json.dumps({"customers": [{"id": 99999999999999999999, "name": "X"}]})
    orchestrator = SyncOrchestrator(store, remote)

    restored = asyncio.run(orchestrator.restore_from_cloud())
    synced = asyncio.run(orchestrator.perform_sync())

    assert restored.success
    assert [r["name"] for r in store.read_all()["customers"]] == ["X"]
    assert synced.success
    assert [r["name"] for r in decode_snapshot(remote.pushes[-1]).collections["customers"]] == ["X"]


def test_import_unexpected_error_becomes_failure(remote, tmp_path: Path):
    orchestrator = SyncOrchestrator(LocalStore(tmp_path / "never-opened.db"), remote)

    result = asyncio.run(orchestrator.import_data(json.dumps({"customers": []})))

    assert not result.success
    assert result.error_kind == "unexpected"
    assert orchestrator.get_sync_history()[-1].operation == "import"
