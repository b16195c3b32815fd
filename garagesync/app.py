# garagesync/app.py
"""
Command-line entry point for the garagesync runtime.

``python -m garagesync CMD ARGS`` runs a single command and exits; with no
arguments an interactive prompt reads commands until ``exit``.
"""

from __future__ import annotations

import logging
import os
import shlex
import sys
from pathlib import Path
try:
    import readline
except ImportError:  # pragma: no cover
    readline = None
from typing import List, Optional, Sequence

from .commands import COMMANDS
from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
    resolve_data_dir,
)
from .logging_utils import setup_logging
from .slash_commands import CommandRouter
from .sync import (
    LocalStore,
    StoreReplaced,
    SyncJournal,
    SyncOrchestrator,
    build_backup_client,
)

LOG_LEVEL_ENV = "GARAGESYNC_LOG_LEVEL"
logger = logging.getLogger("garagesync")


def _log_path_within_data_dir(log_path: Path, data_dir: Path) -> bool:
    try:
        log_path.relative_to(data_dir)
        return True
    except ValueError:
        return False


def build_orchestrator(config: ConfigurationBundle) -> SyncOrchestrator:
    """Wire the local store, backup client and journal from configuration."""

    store = LocalStore(config.resolve_path(config.section("store").get("path", "state/garage.db")))
    store.initialize()

    try:
        remote = build_backup_client(config.merged, config.data_dir)
    except ValueError as e:
        config.diagnostics.append(Diagnostic(level="error", message=str(e)))
        remote = None
    if remote is None:
        config.diagnostics.append(
            Diagnostic(
                level="info",
                message="No backup endpoint configured; set remote.url to enable cloud sync.",
            )
        )

    sync_cfg = config.section("sync")
    journal = SyncJournal(config.resolve_path(sync_cfg.get("state_file", "state/sync_state.json")))
    orchestrator = SyncOrchestrator(
        store,
        remote,
        interval=float(sync_cfg.get("interval_seconds", 300)),
        sync_on_enable=bool(sync_cfg.get("sync_on_enable", True)),
        history_limit=int(sync_cfg.get("history_limit", 50)),
        journal=journal,
    )
    orchestrator.add_listener(_log_store_replaced)
    return orchestrator


def _log_store_replaced(event: StoreReplaced) -> None:
    logger.info(
        "Local data replaced from %s (%d records)",
        event.source,
        sum(event.counts.values()),
    )


def build_router(config: ConfigurationBundle, orchestrator: Optional[SyncOrchestrator] = None) -> CommandRouter:
    """Register every command against a shared orchestrator."""

    router = CommandRouter(
        config,
        metadata={"orchestrator": orchestrator},
    )
    for command in COMMANDS:
        router.register(command)
    return router


def emit_configuration_report(config: ConfigurationBundle) -> None:
    """Print diagnostics so operators can correct issues quickly."""

    problems = [diag for diag in config.diagnostics if diag.level != "info"]
    if not problems:
        print(
            f"[config] Loaded {len(config.files_loaded)} file(s) "
            f"from repo and data config directories."
        )
        return

    print("[config] Diagnostics:")
    for diag in problems:
        prefix = diag.source or config.data_dir
        print(f"  - ({diag.level.upper()}) {diag.message} [{prefix}]")


def configure_autocomplete(router: CommandRouter) -> None:
    """Enable readline tab completion for command names."""

    if readline is None:
        return

    commands = list(router.command_names)

    def completer(text: str, state: int):
        matches = [cmd for cmd in commands if cmd.startswith(text)]
        if state < len(matches):
            return matches[state]
        return None

    readline.set_completer(completer)
    readline.parse_and_bind("tab: complete")
    readline.set_completer_delims(" \t")


def execute_cli_command(command_line: str, router: CommandRouter) -> str:
    """Run one command line through the router and print its output."""

    try:
        parts = shlex.split(command_line)
    except ValueError as e:
        result = f"[router] Could not parse command: {e}"
        print(result)
        return result
    if not parts:
        return ""

    command, args = parts[0], parts[1:]
    result = router.handle(command, args)
    print(result)
    logger.info("Executed command: %s", command_line.strip())
    return result


def _run_interactive(router: CommandRouter) -> None:
    configure_autocomplete(router)
    print("[garagesync] Type 'help' for commands, 'exit' to quit.")
    while True:
        try:
            raw_line = input("> ")
        except (EOFError, KeyboardInterrupt):
            print("\n[Exiting garagesync]")
            break

        line = raw_line.strip()
        if line.lower() in {"quit", "exit"}:
            print("[Goodbye]")
            break
        if not line:
            continue
        execute_cli_command(line, router)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for ``python -m garagesync``."""

    args: List[str] = list(sys.argv[1:] if argv is None else argv)

    data_dir = resolve_data_dir()
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"[config] Unable to create data directory '{data_dir}': {e}", file=sys.stderr)
    config_bundle = load_runtime_configuration(data_dir)

    logging_cfg = config_bundle.section("logging")
    env_level = os.environ.get(LOG_LEVEL_ENV)
    log_level_name = (env_level or logging_cfg.get("level") or "WARNING").upper()
    log_path = setup_logging(
        config_bundle.data_dir,
        log_level_name,
        structured=bool(logging_cfg.get("structured", True)),
        console=False,
    )
    config_bundle.log_path = log_path
    if not _log_path_within_data_dir(log_path, config_bundle.data_dir):
        config_bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=(
                    "Data log directory is not writable; "
                    f"logging to fallback path '{log_path}'."
                ),
                source=log_path,
            )
        )
    logger.info("Logging initialized at %s", log_path)

    try:
        orchestrator = build_orchestrator(config_bundle)
    except Exception as e:
        logger.exception("Failed to open local store")
        print(f"[garagesync] Failed to open local store: {e}", file=sys.stderr)
        return 1

    router = build_router(config_bundle, orchestrator)
    try:
        if args:
            execute_cli_command(shlex.join(args), router)
            return 0

        emit_configuration_report(config_bundle)
        if config_bundle.section("sync").get("enabled"):
            execute_cli_command("sync watch", router)
            return 0
        _run_interactive(router)
        return 0
    finally:
        orchestrator.store.close()


__all__ = [
    "build_orchestrator",
    "build_router",
    "emit_configuration_report",
    "execute_cli_command",
    "main",
]
