"""Command for importing legacy browser key-value data."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
)
from ..sync import SyncError, load_local_storage_dump


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Move a legacy key-value dump into the local store once."""

    orchestrator = context.orchestrator
    if orchestrator is None:
        return "[migrate] Sync engine is not available."

    force = False
    source: Optional[Path] = None
    for arg in args:
        if arg in ("-f", "--force"):
            force = True
        elif not arg.startswith("-"):
            source = Path(arg).expanduser()

    if source is None:
        source = context.config.resolve_path(context.config.section("legacy").get("source", ""))

    store = orchestrator.store
    if not force and not store.needs_migration():
        return "[migrate] Migration already completed. Use --force to run it again."
    if not source.exists():
        return f"[migrate] No legacy data found at '{source}'."

    try:
        dump = load_local_storage_dump(source)
        counts = store.migrate_from_local_storage(dump)
    except (OSError, ValueError) as e:
        return f"[migrate] Could not read legacy data: {e}"
    except SyncError as e:
        return f"[migrate] Migration failed: {e}"

    lines = [f"[migrate] Migrated {sum(counts.values())} records from {source}"]
    for name, count in sorted(counts.items()):
        if count:
            lines.append(f"  {name}: {count}")
    return "\n".join(lines)


COMMAND = SlashCommand(
    name="migrate",
    description="Import legacy browser key-value data into the local store.",
    handler=_handler,
)
