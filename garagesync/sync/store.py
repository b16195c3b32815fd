"""Local document store backed by SQLite.

Each entity collection lives in its own table holding one JSON document per
row; ``keyValue`` entries are keyed by their natural key. Bulk operations
take the store lock, so a ``read_all`` never observes a half-applied
``replace_all``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .errors import StorageError
from .snapshot import COLLECTIONS, KEY_VALUE, Collections, Record

logger = logging.getLogger("garagesync.sync.store")

TABLES: Dict[str, str] = {
    "customers": "customers",
    "vehicles": "vehicles",
    "repairs": "repairs",
    "appointments": "appointments",
    "invoices": "invoices",
    "users": "users",
    "settings": "settings",
    KEY_VALUE: "key_value",
}

LEGACY_PREFIX = "spark_kv_"
LEGACY_ENTITY_KEYS: Tuple[str, ...] = (
    "customers",
    "vehicles",
    "repairs",
    "appointments",
    "invoices",
    "users",
)
LEGACY_SETTINGS_KEY = "app-settings"
MIGRATION_MARKER = "migration_complete"
SQLITE_MAX_INTEGER = 2**63 - 1


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalStore:
    """SQLite document store with atomic whole-store replacement."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def initialize(self) -> "LocalStore":
        """Open the database and create missing tables."""
        if self._conn is not None:
            return self
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            # Autocommit mode; transactions are opened explicitly.
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            self._create_tables()
        except sqlite3.Error as e:
            logger.error("Failed to initialize store at %s: %s", self.db_path, e)
            raise StorageError(f"Failed to initialize store: {e}") from e
        logger.info("Local store ready at %s", self.db_path)
        return self

    def _create_tables(self) -> None:
        cursor = self._conn.cursor()
        for name in COLLECTIONS:
            table = TABLES[name]
            if name == KEY_VALUE:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        key TEXT PRIMARY KEY,
                        value TEXT,
                        updated_at TEXT
                    )
                """)
            else:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        data TEXT NOT NULL
                    )
                """)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "LocalStore":
        return self.initialize()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Store not initialized")
        return self._conn

    # ------------------------------------------------------------------
    # Bulk operations used by the sync engine

    def read_all(self) -> Collections:
        """Read every collection, in collection order, records ordered by id."""
        with self._lock:
            conn = self._require_conn()
            try:
                return {name: self._read_collection(conn, name) for name in COLLECTIONS}
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read local collections: {e}") from e

    def replace_all(self, collections: Mapping[str, Iterable[Record]], preserve_ids: bool = False) -> Dict[str, int]:
        """Clear every collection and insert ``collections`` in one transaction.

        Either every collection ends in its new state or the store keeps its
        prior contents and :class:`StorageError` is raised.
        """
        with self._lock:
            conn = self._require_conn()
            counts: Dict[str, int] = {}
            try:
                conn.execute("BEGIN IMMEDIATE")
                for name in COLLECTIONS:
                    conn.execute(f"DELETE FROM {TABLES[name]}")
                for name in COLLECTIONS:
                    records = list(collections.get(name, ()) or ())
                    counts[name] = self._insert_records(conn, name, records, preserve_ids)
                conn.execute("COMMIT")
            except Exception as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error("replace_all rolled back: %s", e)
                raise StorageError(f"Failed to replace local collections: {e}") from e

        logger.info("Replaced local store contents (%d records)", sum(counts.values()))
        return counts

    def count(self) -> Dict[str, int]:
        with self._lock:
            conn = self._require_conn()
            try:
                return {
                    name: conn.execute(f"SELECT COUNT(*) FROM {TABLES[name]}").fetchone()[0]
                    for name in COLLECTIONS
                }
            except sqlite3.Error as e:
                raise StorageError(f"Failed to count local collections: {e}") from e

    # ------------------------------------------------------------------
    # Single-record helpers for the surrounding application

    def add(self, collection: str, record: Record) -> int:
        """Insert one entity record and return its assigned id."""
        if collection == KEY_VALUE or collection not in TABLES:
            raise ValueError(f"'{collection}' is not an entity collection")
        with self._lock:
            conn = self._require_conn()
            doc = {k: v for k, v in record.items() if k != "id"}
            try:
                cursor = conn.execute(
                    f"INSERT INTO {TABLES[collection]} (data) VALUES (?)",
                    (json.dumps(doc),),
                )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to insert into {collection}: {e}") from e
            return int(cursor.lastrowid)

    def get_kv(self, key: str, default: Any = None) -> Any:
        with self._lock:
            row = self._require_conn().execute(
                f"SELECT value FROM {TABLES[KEY_VALUE]} WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        return json.loads(row[0]) if row[0] is not None else None

    def set_kv(self, key: str, value: Any) -> None:
        with self._lock:
            try:
                self._require_conn().execute(
                    f"INSERT OR REPLACE INTO {TABLES[KEY_VALUE]} (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, json.dumps(value), _utcnow()),
                )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to write key '{key}': {e}") from e

    # ------------------------------------------------------------------
    # Legacy browser storage migration

    def needs_migration(self) -> bool:
        return not self.get_kv(MIGRATION_MARKER, False)

    def migrate_from_local_storage(self, source: Mapping[str, Any]) -> Dict[str, int]:
        """Import a ``localStorage`` dump left behind by the browser build.

        Entity lists are appended with fresh ids, ``app-settings`` becomes a
        settings record and any other ``spark_kv_`` key becomes a key-value
        entry. The whole import is one transaction.
        """
        decoded: Dict[str, Any] = {}
        for raw_key, raw_value in source.items():
            if not raw_key.startswith(LEGACY_PREFIX):
                continue
            try:
                decoded[raw_key[len(LEGACY_PREFIX):]] = (
                    json.loads(raw_value) if isinstance(raw_value, str) else raw_value
                )
            except ValueError as e:
                logger.warning("Skipping legacy key %s: %s", raw_key, e)

        batches: Dict[str, List[Record]] = {name: [] for name in COLLECTIONS}
        for name in LEGACY_ENTITY_KEYS:
            items = decoded.get(name)
            if isinstance(items, list):
                batches[name] = [item for item in items if isinstance(item, dict)]
        settings = decoded.get(LEGACY_SETTINGS_KEY)
        if isinstance(settings, dict):
            batches["settings"] = [settings]

        now = _utcnow()
        for key, value in decoded.items():
            if _is_entity_key(key):
                continue
            batches[KEY_VALUE].append({"key": key, "value": value, "updatedAt": now})
        batches[KEY_VALUE].append({"key": MIGRATION_MARKER, "value": True, "updatedAt": now})

        with self._lock:
            conn = self._require_conn()
            counts: Dict[str, int] = {}
            try:
                conn.execute("BEGIN IMMEDIATE")
                for name in COLLECTIONS:
                    if name == KEY_VALUE:
                        counts[name] = self._upsert_key_values(conn, batches[name])
                    else:
                        counts[name] = self._insert_records(conn, name, batches[name], False)
                conn.execute("COMMIT")
            except Exception as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error("Legacy migration failed: %s", e)
                raise StorageError(f"Legacy migration failed: {e}") from e

        for name, migrated in counts.items():
            if migrated:
                logger.info("Migrated %d %s", migrated, name)
        return counts

    # ------------------------------------------------------------------

    def _read_collection(self, conn: sqlite3.Connection, name: str) -> List[Record]:
        table = TABLES[name]
        if name == KEY_VALUE:
            rows = conn.execute(f"SELECT key, value, updated_at FROM {table} ORDER BY key").fetchall()
            return [
                {
                    "key": key,
                    "value": json.loads(value) if value is not None else None,
                    "updatedAt": updated_at,
                }
                for key, value, updated_at in rows
            ]
        rows = conn.execute(f"SELECT id, data FROM {table} ORDER BY id").fetchall()
        records = []
        for row_id, data in rows:
            record: Record = {"id": row_id}
            record.update(json.loads(data))
            records.append(record)
        return records

    def _insert_records(
        self,
        conn: sqlite3.Connection,
        name: str,
        records: List[Record],
        preserve_ids: bool,
    ) -> int:
        if not records:
            return 0
        table = TABLES[name]
        if name == KEY_VALUE:
            conn.executemany(
                f"INSERT INTO {table} (key, value, updated_at) VALUES (?, ?, ?)",
                [_key_value_row(entry) for entry in records],
            )
            return len(records)

        with_ids = []
        without_ids = []
        for record in records:
            doc = json.dumps({k: v for k, v in record.items() if k != "id"})
            record_id = record.get("id")
            if preserve_ids and _is_row_id(record_id):
                with_ids.append((record_id, doc))
            else:
                without_ids.append((doc,))
        if with_ids:
            conn.executemany(f"INSERT INTO {table} (id, data) VALUES (?, ?)", with_ids)
        if without_ids:
            conn.executemany(f"INSERT INTO {table} (data) VALUES (?)", without_ids)
        return len(records)

    def _upsert_key_values(self, conn: sqlite3.Connection, entries: List[Record]) -> int:
        conn.executemany(
            f"INSERT OR REPLACE INTO {TABLES[KEY_VALUE]} (key, value, updated_at) VALUES (?, ?, ?)",
            [_key_value_row(entry) for entry in entries],
        )
        return len(entries)


def _is_row_id(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 < value <= SQLITE_MAX_INTEGER
    )


def _key_value_row(entry: Record) -> Tuple[str, str, str]:
    updated_at = entry.get("updatedAt") or _utcnow()
    return entry["key"], json.dumps(entry.get("value")), str(updated_at)


def _is_entity_key(key: str) -> bool:
    entity_keys = LEGACY_ENTITY_KEYS + (LEGACY_SETTINGS_KEY,)
    return any(entity_key in key for entity_key in entity_keys)


def load_local_storage_dump(path: Path) -> Dict[str, Any]:
    """Read a ``localStorage`` dump saved as a JSON object."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a JSON object")
    return data


__all__ = [
    "LocalStore",
    "TABLES",
    "MIGRATION_MARKER",
    "load_local_storage_dump",
]
