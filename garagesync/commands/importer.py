"""Command for importing a snapshot file into the local store."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List

from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
)


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    orchestrator = context.orchestrator
    if orchestrator is None:
        return "[import] Sync engine is not available."

    paths = [arg for arg in args if not arg.startswith("-")]
    if not paths:
        return "[import] Usage: import PATH [--yes]"
    if "--yes" not in args:
        return "[import] Import replaces all local data. Re-run with '--yes' to continue."

    path = Path(paths[0]).expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path

    result = asyncio.run(orchestrator.import_file(path))
    if not result.success:
        return f"[import] Import failed: {result.message}"

    lines = [f"[import] {result.message} from {path}"]
    for name, count in sorted(result.counts.items()):
        if count:
            lines.append(f"  {name}: {count}")
    return "\n".join(lines)


COMMAND = SlashCommand(
    name="import",
    description="Replace local data with a snapshot file.",
    handler=_handler,
)
