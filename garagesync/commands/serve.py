"""Command for running the backup API server."""

from __future__ import annotations

from typing import List

from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
)


def _handler(context: SlashCommandContext, _: List[str]) -> str:
    from ..api import BackupAPIServer

    server = BackupAPIServer(config_bundle=context.config)
    print(f"[serve] Backup server on http://{server.host}:{server.port} (Ctrl+C to stop)")
    try:
        ok = server.serve()
    except KeyboardInterrupt:
        ok = True
    if not ok:
        return "[serve] Backup server stopped with an error. Check the log for details."
    return "[serve] Backup server stopped."


COMMAND = SlashCommand(
    name="serve",
    description="Run the HTTP backup server.",
    handler=_handler,
)
