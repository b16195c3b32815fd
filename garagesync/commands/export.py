"""Command for exporting the local store to a snapshot file."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List

from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
)
from ..sync import SyncError


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Export all local data as a dated JSON snapshot."""

    orchestrator = context.orchestrator
    if orchestrator is None:
        return "[export] Sync engine is not available."

    export_config = context.config.section("export")
    directory = context.config.resolve_path(export_config.get("directory", "exports"))
    prefix = export_config.get("prefix", "garage-backup")

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-o", "--output") and i + 1 < len(args):
            directory = context.config.resolve_path(args[i + 1])
            i += 2
        elif arg in ("-p", "--prefix") and i + 1 < len(args):
            prefix = args[i + 1]
            i += 2
        elif not arg.startswith("-"):
            directory = context.config.resolve_path(arg)
            i += 1
        else:
            i += 1

    try:
        target: Path = asyncio.run(orchestrator.export_to_file(directory, prefix))
    except SyncError as e:
        return f"[export] Export failed: {e}"
    except OSError as e:
        return f"[export] Failed to write file: {e}"

    return f"[export] Local data exported to: {target}"


COMMAND = SlashCommand(
    name="export",
    description="Export local data to a dated JSON snapshot.",
    handler=_handler,
)
