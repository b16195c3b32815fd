"""Data-directory-aware configuration loading for garagesync."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
DEFAULT_DATA_DIR = "~/.garagesync"
DATA_DIR_ENV = "GARAGESYNC_DATA_DIR"

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]


SchemaSpec = Dict[str, Any]


CONFIG_SCHEMA: SchemaSpec = {
    "logging": {
        "type": dict,
        "schema": {
            "level": {"type": str, "default": "INFO"},
            "structured": {"type": bool, "default": True},
        },
        "default": {},
    },
    "store": {
        "type": dict,
        "schema": {
            "path": {"type": str, "default": "state/garage.db"},
        },
        "default": {},
    },
    "remote": {
        "type": dict,
        "schema": {
            "kind": {"type": str, "default": "http"},
            "url": {"type": str, "default": ""},
            "path": {"type": str, "default": "/api/v1/backup"},
            "timeout": {"type": (int, float), "default": 30.0},
            "user_id": {"type": str, "default": "default"},
            "directory": {"type": str, "default": "backups"},
        },
        "default": {},
    },
    "sync": {
        "type": dict,
        "schema": {
            "enabled": {"type": bool, "default": False},
            "interval_seconds": {"type": (int, float), "default": 300},
            "sync_on_enable": {"type": bool, "default": True},
            "history_limit": {"type": int, "default": 50},
            "state_file": {"type": str, "default": "state/sync_state.json"},
        },
        "default": {},
    },
    "export": {
        "type": dict,
        "schema": {
            "directory": {"type": str, "default": "exports"},
            "prefix": {"type": str, "default": "garage-backup"},
        },
        "default": {},
    },
    "api": {
        "type": dict,
        "schema": {
            "host": {"type": str, "default": "127.0.0.1"},
            "port": {"type": int, "default": 8000},
            "storage_dir": {"type": str, "default": "state/backups"},
            "max_body_bytes": {"type": int, "default": 10 * 1024 * 1024},
            "cors_origins": {"type": list, "item_type": str, "default_factory": list},
        },
        "default": {},
    },
    "legacy": {
        "type": dict,
        "schema": {
            "source": {"type": str, "default": "legacy/local_storage.json"},
        },
        "default": {},
    },
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """All configuration data garagesync needs at runtime."""

    data_dir: Path
    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    data_overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None

    def section(self, name: str) -> Dict[str, Any]:
        return (self.merged.get(name) or {}) if self.merged else {}

    def resolve_path(self, raw: str) -> Path:
        """Resolve a configured path relative to the data directory."""
        path = Path(raw).expanduser()
        return path if path.is_absolute() else self.data_dir / path


def resolve_data_dir(
    env: Optional[Mapping[str, str]] = None,
    default: str = DEFAULT_DATA_DIR,
) -> Path:
    """Resolve the data directory from the environment."""

    env_source = env or os.environ
    raw = env_source.get(DATA_DIR_ENV, default)
    return Path(raw).expanduser()


def load_runtime_configuration(data_dir: Optional[Path] = None) -> ConfigurationBundle:
    """Load configuration defaults and data directory overrides."""

    resolved_dir = data_dir or resolve_data_dir()
    diagnostics: List[Diagnostic] = []
    files_loaded: List[Path] = []

    repo_defaults, repo_files = _load_directory_configs(
        DEFAULT_CONFIG_DIR,
        diagnostics,
        label="repo defaults",
    )
    files_loaded.extend(repo_files)

    status: ConfigurationStatus = "ready"
    data_overrides: Dict[str, Any] = {}

    if not resolved_dir.exists():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Data directory '{resolved_dir}' does not exist.",
            )
        )
        status = "missing"
    elif not resolved_dir.is_dir():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Data path '{resolved_dir}' is not a directory.",
            )
        )
        status = "invalid"
    else:
        overrides_dir = resolved_dir / "config"
        data_overrides, override_files = _load_directory_configs(
            overrides_dir,
            diagnostics,
            label="data overrides",
        )
        files_loaded.extend(override_files)

    merged = deepcopy(repo_defaults)
    _deep_merge_dicts(merged, data_overrides)

    _validate_schema(merged, diagnostics)

    if status == "ready" and any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        data_dir=resolved_dir,
        status=status,
        merged=merged,
        repo_defaults=repo_defaults,
        data_overrides=data_overrides,
        files_loaded=files_loaded,
        diagnostics=diagnostics,
    )


def _load_directory_configs(
    directory: Path,
    diagnostics: List[Diagnostic],
    label: str,
) -> Tuple[Dict[str, Any], List[Path]]:
    """Load all YAML files from a directory, merging them in order."""

    data: Dict[str, Any] = {}
    loaded_files: List[Path] = []

    if not directory.exists():
        diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"No configuration directory found at '{directory}' ({label}).",
                source=directory,
            )
        )
        return data, loaded_files

    if not directory.is_dir():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Configuration path '{directory}' ({label}) is not a directory.",
                source=directory,
            )
        )
        return data, loaded_files

    yaml_files = sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml"))

    for yaml_file in yaml_files:
        try:
            content = yaml.safe_load(yaml_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"Failed to parse '{yaml_file}': {exc}",
                    source=yaml_file,
                )
            )
            continue

        if content is None:
            loaded_files.append(yaml_file)
            continue

        if not isinstance(content, MutableMapping):
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Ignoring '{yaml_file}' because it does not contain a mapping.",
                    source=yaml_file,
                )
            )
            continue

        _deep_merge_dicts(data, dict(content))
        loaded_files.append(yaml_file)

    if not loaded_files:
        diagnostics.append(
            Diagnostic(
                level="info",
                message=f"No YAML files found under '{directory}' ({label}).",
                source=directory,
            )
        )

    return data, loaded_files


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    """Recursively merge mapping values."""

    for key, value in source.items():
        if (
            key in dest
            and isinstance(dest[key], MutableMapping)
            and isinstance(value, Mapping)
        ):
            _deep_merge_dicts(dest[key], value)
        else:
            dest[key] = deepcopy(value)


def _default_from_spec(spec: SchemaSpec) -> Any:
    if "default_factory" in spec and callable(spec["default_factory"]):
        return spec["default_factory"]()
    return deepcopy(spec.get("default"))


def _validate_schema(config: Dict[str, Any], diagnostics: List[Diagnostic]) -> None:
    _validate_section(config, CONFIG_SCHEMA, "config", diagnostics)
    _validate_ranges(config, diagnostics)


def _validate_section(
    target: Dict[str, Any],
    schema: SchemaSpec,
    path: str,
    diagnostics: List[Diagnostic],
) -> None:
    if not isinstance(target, dict):
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Configuration section '{path}' must be a mapping.",
            )
        )
        return

    for key in list(target.keys()):
        if key not in schema:
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Unknown configuration key '{path}.{key}'.",
                )
            )

    for key, spec in schema.items():
        child_path = f"{path}.{key}"
        if key not in target:
            if "default" in spec or "default_factory" in spec:
                target[key] = _default_from_spec(spec)
            if spec.get("type") is dict:
                _validate_section(target[key], spec.get("schema", {}), child_path, diagnostics)
            continue

        value = target[key]
        expected_type = spec.get("type")

        if expected_type is dict:
            if not isinstance(value, dict):
                diagnostics.append(
                    Diagnostic(
                        level="error",
                        message=f"'{child_path}' must be a mapping.",
                    )
                )
                target[key] = _default_from_spec(spec) or {}
                value = target[key]
            _validate_section(value, spec.get("schema", {}), child_path, diagnostics)
        elif expected_type is list:
            if not isinstance(value, list):
                diagnostics.append(
                    Diagnostic(
                        level="error",
                        message=f"'{child_path}' must be a list.",
                    )
                )
                target[key] = _default_from_spec(spec) or []
                continue
            item_type = spec.get("item_type")
            if item_type is not None:
                filtered: List[Any] = []
                for idx, item in enumerate(value):
                    if isinstance(item, item_type):
                        filtered.append(item)
                    else:
                        diagnostics.append(
                            Diagnostic(
                                level="error",
                                message=(
                                    f"'{child_path}[{idx}]' must be of type "
                                    f"{item_type.__name__}."
                                ),
                            )
                        )
                target[key] = filtered
        elif expected_type and (
            not isinstance(value, expected_type) or isinstance(value, bool) and expected_type is not bool
        ):
            if isinstance(expected_type, tuple):
                type_name = ", ".join(t.__name__ for t in expected_type)
            else:
                type_name = expected_type.__name__
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"'{child_path}' must be of type {type_name}.",
                )
            )
            target[key] = _default_from_spec(spec)


def _validate_ranges(config: Dict[str, Any], diagnostics: List[Diagnostic]) -> None:
    sync_cfg = config.get("sync", {})
    if sync_cfg.get("interval_seconds", 1) <= 0:
        diagnostics.append(
            Diagnostic(level="error", message="'config.sync.interval_seconds' must be positive.")
        )
        sync_cfg["interval_seconds"] = CONFIG_SCHEMA["sync"]["schema"]["interval_seconds"]["default"]
    if sync_cfg.get("history_limit", 1) < 1:
        diagnostics.append(
            Diagnostic(level="error", message="'config.sync.history_limit' must be at least 1.")
        )
        sync_cfg["history_limit"] = CONFIG_SCHEMA["sync"]["schema"]["history_limit"]["default"]

    remote_cfg = config.get("remote", {})
    if remote_cfg.get("kind") not in ("http", "directory"):
        diagnostics.append(
            Diagnostic(
                level="error",
                message="'config.remote.kind' must be 'http' or 'directory'.",
            )
        )
        remote_cfg["kind"] = "http"
    if remote_cfg.get("timeout", 1) <= 0:
        diagnostics.append(
            Diagnostic(level="error", message="'config.remote.timeout' must be positive.")
        )
        remote_cfg["timeout"] = CONFIG_SCHEMA["remote"]["schema"]["timeout"]["default"]


__all__ = [
    "CONFIG_SCHEMA",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DATA_DIR_ENV",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "load_runtime_configuration",
    "resolve_data_dir",
]
