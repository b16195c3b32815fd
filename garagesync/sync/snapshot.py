"""Snapshot codec: the full set of entity collections as one JSON document."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import InvalidFormat

logger = logging.getLogger("garagesync.sync.snapshot")

SNAPSHOT_VERSION = "1.0"

COLLECTIONS: tuple = (
    "customers",
    "vehicles",
    "repairs",
    "appointments",
    "invoices",
    "users",
    "settings",
    "keyValue",
)
KEY_VALUE = "keyValue"
REQUIRED_COLLECTION = "customers"

Record = Dict[str, Any]
Collections = Dict[str, List[Record]]


@dataclass
class Snapshot:
    """Decoded snapshot document."""

    version: str = SNAPSHOT_VERSION
    export_date: Optional[datetime] = None
    collections: Collections = field(default_factory=lambda: empty_collections())

    @property
    def total_records(self) -> int:
        return sum(len(records) for records in self.collections.values())

    def counts(self) -> Dict[str, int]:
        return {name: len(self.collections.get(name, [])) for name in COLLECTIONS}


def empty_collections() -> Collections:
    return {name: [] for name in COLLECTIONS}


def encode_snapshot(
    collections: Mapping[str, Sequence[Record]],
    export_date: Optional[datetime] = None,
    version: str = SNAPSHOT_VERSION,
) -> str:
    """Serialize collections to snapshot JSON.

    Keys come out in a stable order: every fixed collection in collection
    order, then ``exportDate``, then ``version``. Collections outside the
    fixed set are dropped.
    """

    stamp = export_date or datetime.now(timezone.utc)
    payload: Dict[str, Any] = {}
    for name in COLLECTIONS:
        payload[name] = [dict(record) for record in collections.get(name, ()) or ()]
    payload["exportDate"] = stamp.isoformat()
    payload["version"] = version
    try:
        return json.dumps(payload, indent=2, ensure_ascii=False, default=_json_default)
    except (TypeError, ValueError) as exc:
        raise InvalidFormat(f"Collections are not JSON serializable: {exc}") from exc


def decode_snapshot(text: str) -> Snapshot:
    """Parse snapshot JSON, raising :class:`InvalidFormat` when unusable."""

    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise InvalidFormat(f"Snapshot is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise InvalidFormat("Snapshot must be a JSON object.")

    data = _unwrap_legacy_envelope(data)

    if REQUIRED_COLLECTION not in data:
        raise InvalidFormat(f"Snapshot is missing the '{REQUIRED_COLLECTION}' collection.")

    collections = empty_collections()
    for name in COLLECTIONS:
        raw = data.get(name)
        if raw is None and name != REQUIRED_COLLECTION:
            continue
        if not isinstance(raw, list):
            raise InvalidFormat(f"Snapshot collection '{name}' must be a list.")
        collections[name] = [_validate_record(name, idx, item) for idx, item in enumerate(raw)]

    version = data.get("version")
    return Snapshot(
        version=str(version) if version is not None else SNAPSHOT_VERSION,
        export_date=_parse_timestamp(data.get("exportDate")),
        collections=collections,
    )


def _validate_record(collection: str, index: int, item: Any) -> Record:
    if not isinstance(item, dict):
        raise InvalidFormat(f"'{collection}[{index}]' must be an object.")
    if collection == KEY_VALUE and not isinstance(item.get("key"), str):
        raise InvalidFormat(f"'{collection}[{index}]' needs a string 'key'.")
    return item


def _unwrap_legacy_envelope(data: Dict[str, Any]) -> Dict[str, Any]:
    """Accept the older cloud backup shape ``{timestamp, version, data: {...}}``."""

    inner = data.get("data")
    if REQUIRED_COLLECTION in data or not isinstance(inner, dict):
        return data

    logger.info("Decoding legacy cloud backup envelope (version %s)", data.get("version"))
    unwrapped = dict(inner)
    settings = unwrapped.get("settings")
    if isinstance(settings, dict):
        unwrapped["settings"] = [settings] if settings else []
    unwrapped.setdefault("exportDate", data.get("timestamp"))
    unwrapped.setdefault("version", data.get("version"))
    return unwrapped


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    # fromisoformat only learned the trailing "Z" in 3.11
    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        logger.warning("Ignoring unparseable exportDate %r", value)
        return None


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


__all__ = [
    "COLLECTIONS",
    "KEY_VALUE",
    "SNAPSHOT_VERSION",
    "Collections",
    "Record",
    "Snapshot",
    "decode_snapshot",
    "empty_collections",
    "encode_snapshot",
]
