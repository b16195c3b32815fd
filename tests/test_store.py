"""Tests for the SQLite local store."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from garagesync.sync import LocalStore, StorageError, load_local_storage_dump
from garagesync.sync.store import MIGRATION_MARKER


def test_initialize_creates_empty_collections(store: LocalStore):
    counts = store.count()

    assert set(counts) == {
        "customers",
        "vehicles",
        "repairs",
        "appointments",
        "invoices",
        "users",
        "settings",
        "keyValue",
    }
    assert all(value == 0 for value in counts.values())


def test_uninitialized_store_refuses_reads(tmp_path: Path):
    with pytest.raises(RuntimeError):
        LocalStore(tmp_path / "garage.db").read_all()


def test_add_assigns_ids_and_read_all_returns_them(store: LocalStore):
    first = store.add("customers", {"name": "Ada"})
    second = store.add("customers", {"name": "Grace", "id": 99})

    records = store.read_all()["customers"]

    assert [r["id"] for r in records] == [first, second]
    assert records[1] == {"id": second, "name": "Grace"}


def test_add_rejects_key_value_collection(store: LocalStore):
    with pytest.raises(ValueError):
        store.add("keyValue", {"key": "theme"})


def test_replace_all_preserves_ids_when_asked(store: LocalStore):
    store.add("customers", {"name": "Old"})

    counts = store.replace_all(
        {
            "customers": [{"id": 10, "name": "Ada"}, {"id": 12, "name": "Grace"}],
            "vehicles": [{"id": 3, "customerId": 10}],
            "keyValue": [{"key": "theme", "value": "dark", "updatedAt": "2024-01-01T00:00:00+00:00"}],
        },
        preserve_ids=True,
    )
    data = store.read_all()

    assert counts["customers"] == 2
    assert counts["repairs"] == 0
    assert [r["id"] for r in data["customers"]] == [10, 12]
    assert data["vehicles"] == [{"id": 3, "customerId": 10}]
    assert data["keyValue"] == [
        {"key": "theme", "value": "dark", "updatedAt": "2024-01-01T00:00:00+00:00"}
    ]


def test_replace_all_assigns_fresh_ids_by_default(store: LocalStore):
    store.replace_all({"customers": [{"id": 500, "name": "Ada"}]})

    records = store.read_all()["customers"]

    assert len(records) == 1
    assert records[0]["id"] != 500
    assert records[0]["name"] == "Ada"


def test_replace_all_rolls_back_when_an_insert_fails(store: LocalStore, monkeypatch):
    store.add("customers", {"name": "Ada"})
    store.add("repairs", {"summary": "Brakes"})
    before = store.read_all()
    original = store._insert_records

    def failing_insert(conn, name, records, preserve_ids):
        if name == "repairs":
            raise sqlite3.OperationalError("disk I/O error")
        return original(conn, name, records, preserve_ids)

    monkeypatch.setattr(store, "_insert_records", failing_insert)

    with pytest.raises(StorageError):
        store.replace_all({"customers": [{"name": "New"}], "repairs": [{"summary": "Tyres"}]})

    assert store.read_all() == before


def test_replace_all_rejects_duplicate_keys_atomically(store: LocalStore):
    store.set_kv("theme", "light")
    before = store.read_all()

    with pytest.raises(StorageError):
        store.replace_all(
            {
                "customers": [{"name": "New"}],
                "keyValue": [{"key": "a", "value": 1}, {"key": "a", "value": 2}],
            }
        )

    assert store.read_all() == before


def test_replace_all_rejects_unserializable_records(store: LocalStore):
    store.add("customers", {"name": "Ada"})

    with pytest.raises(StorageError):
        store.replace_all({"customers": [{"blob": object()}]})

    assert store.count()["customers"] == 1


def test_key_value_helpers(store: LocalStore):
    assert store.get_kv("missing", "fallback") == "fallback"

    store.set_kv("layout", {"columns": 3})
    store.set_kv("layout", {"columns": 4})

    assert store.get_kv("layout") == {"columns": 4}
    assert store.count()["keyValue"] == 1


def test_migrate_from_local_storage(store: LocalStore):
    dump = {
        "spark_kv_customers": json.dumps([{"id": 1, "name": "Ada"}, {"id": 2, "name": "Grace"}]),
        "spark_kv_vehicles": json.dumps([{"id": 1, "plate": "AB-123"}]),
        "spark_kv_app-settings": json.dumps({"shopName": "Bay 3"}),
        "spark_kv_theme": json.dumps("dark"),
        "unrelated": "ignored",
    }

    assert store.needs_migration()
    counts = store.migrate_from_local_storage(dump)

    assert counts["customers"] == 2
    assert counts["vehicles"] == 1
    assert counts["settings"] == 1
    assert counts["keyValue"] == 2
    assert store.get_kv("theme") == "dark"
    assert store.get_kv(MIGRATION_MARKER) is True
    assert not store.needs_migration()
    assert store.read_all()["settings"][0]["shopName"] == "Bay 3"


def test_migrate_skips_undecodable_values(store: LocalStore):
    counts = store.migrate_from_local_storage({"spark_kv_customers": "{not json"})

    assert counts["customers"] == 0
    assert not store.needs_migration()


def test_load_local_storage_dump_requires_object(tmp_path: Path):
    dump_path = tmp_path / "dump.json"
    dump_path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError):
        load_local_storage_dump(dump_path)


def test_replace_all_gives_out_of_range_ids_fresh_ids(store: LocalStore):
    store.add("customers", {"name": "Ada"})

    store.replace_all(
        {"customers": [{"id": 99999999999999999999, "name": "Huge"}, {"id": 4, "name": "Grace"}]},
        preserve_ids=True,
    )
    records = store.read_all()["customers"]

    assert [r["name"] for r in records] == ["Grace", "Huge"]
    assert records[0]["id"] == 4
    assert records[1]["id"] != 99999999999999999999


def test_replace_all_rolls_back_on_any_exception(store: LocalStore, monkeypatch):
    store.add("customers", {"name": "Ada"})
    before = store.read_all()

    def overflowing_insert(conn, name, records, preserve_ids):
        raise OverflowError("Python int too large to convert to SQLite INTEGER")

    monkeypatch.setattr(store, "_insert_records", overflowing_insert)

    with pytest.raises(StorageError):
        store.replace_all({"customers": [{"name": "New"}]}, preserve_ids=True)

    assert not store._conn.in_transaction
    assert store.read_all() == before


def test_migration_rolls_back_on_any_exception(store: LocalStore, monkeypatch):
    def broken_upsert(conn, entries):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(store, "_upsert_key_values", broken_upsert)

    with pytest.raises(StorageError):
        store.migrate_from_local_storage({"spark_kv_customers": json.dumps([{"name": "Ada"}])})

    assert not store._conn.in_transaction
    assert store.count()["customers"] == 0
    assert store.needs_migration()
