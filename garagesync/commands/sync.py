"""Command for pushing, restoring and watching cloud backups."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    render_rich,
)
from ..sync import SyncOrchestrator, SyncResult, SyncStatus


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Manage cloud backup synchronization."""

    orchestrator = context.orchestrator
    if orchestrator is None:
        return "[sync] Sync engine is not available."

    if not args:
        return _show_status(orchestrator)

    subcommand = args[0].lower()

    if subcommand == "status":
        return _show_status(orchestrator)
    elif subcommand == "push":
        return _format_result(asyncio.run(orchestrator.perform_sync()))
    elif subcommand == "restore":
        if "--yes" not in args[1:]:
            return "[sync] Restore replaces all local data. Re-run with 'sync restore --yes' to continue."
        return _format_result(asyncio.run(orchestrator.restore_from_cloud()))
    elif subcommand == "history":
        return _show_history(orchestrator, args[1:])
    elif subcommand == "watch":
        return _watch(orchestrator, args[1:])
    elif subcommand == "reset":
        orchestrator.reset()
        return "[sync] Sync status and history cleared."
    elif subcommand == "help":
        return _show_help()
    else:
        return f"[sync] Unknown subcommand '{subcommand}'. Use 'sync help' for usage."


def _format_result(result: SyncResult) -> str:
    if result.skipped:
        return f"[sync] Skipped: {result.message}"
    if not result.success:
        return f"[sync] {result.operation.capitalize()} failed: {result.message}"
    lines = [f"[sync] {result.message}"]
    for name, count in sorted(result.counts.items()):
        if count:
            lines.append(f"  {name}: {count}")
    return "\n".join(lines)


def _status_rows(status: SyncStatus) -> List[tuple]:
    return [
        ("Auto-sync", "enabled" if status.is_enabled else "disabled"),
        ("Last sync", status.last_sync.isoformat() if status.last_sync else "never"),
        ("In progress", str(status.sync_in_progress)),
        ("Local records", str(status.total_records)),
        ("Synced records", str(status.synced_records)),
        ("Error", status.error or "-"),
    ]


def _show_status(orchestrator: SyncOrchestrator) -> str:
    status = asyncio.run(orchestrator.get_sync_status())
    backup = orchestrator.remote.describe() if orchestrator.remote else "(not configured)"

    def _render(console: Console) -> None:
        table = Table(title="Cloud Sync Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")
        table.add_row("Backup", escape(backup))
        for key, value in _status_rows(status):
            table.add_row(key, escape(value))
        console.print(table)

    return render_rich(_render)


def _show_history(orchestrator: SyncOrchestrator, args: List[str]) -> str:
    limit = 20

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-n", "--limit") and i + 1 < len(args):
            try:
                limit = int(args[i + 1])
            except ValueError:
                return f"[sync] Invalid limit '{args[i + 1]}'."
            i += 2
        else:
            i += 1

    history = orchestrator.get_sync_history()
    if not history:
        return "[sync] No sync attempts recorded yet."

    shown = history[-limit:] if limit > 0 else history

    def _render(console: Console) -> None:
        table = Table(
            title=f"Sync History (showing {len(shown)} of {len(history)})",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Time", style="dim", no_wrap=True)
        table.add_column("Operation", style="green")
        table.add_column("Result")
        table.add_column("Records", justify="right")
        table.add_column("Error", overflow="fold")
        for entry in shown:
            outcome = "[green]ok[/green]" if entry.success else "[red]failed[/red]"
            table.add_row(
                entry.timestamp.isoformat(timespec="seconds"),
                entry.operation,
                outcome,
                str(entry.records),
                escape(entry.error or ""),
            )
        console.print(table)

    return render_rich(_render)


def _watch(orchestrator: SyncOrchestrator, args: List[str]) -> str:
    """Enable auto-sync and stream status lines until interrupted."""

    duration: Optional[float] = None
    poll = 2.0

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-t", "--seconds") and i + 1 < len(args):
            try:
                duration = float(args[i + 1])
            except ValueError:
                return f"[sync] Invalid duration '{args[i + 1]}'."
            i += 2
        elif arg in ("-p", "--poll") and i + 1 < len(args):
            try:
                poll = float(args[i + 1])
            except ValueError:
                return f"[sync] Invalid poll interval '{args[i + 1]}'."
            i += 2
        else:
            i += 1

    if orchestrator.remote is None:
        return "[sync] No backup endpoint configured. Set remote.url or remote.kind in configuration."

    console = Console()
    try:
        asyncio.run(_watch_loop(orchestrator, console, duration, poll))
    except KeyboardInterrupt:
        pass
    history = orchestrator.get_sync_history()
    syncs = sum(1 for entry in history if entry.operation == "sync")
    return f"[sync] Auto-sync stopped ({syncs} sync attempts in history)."


async def _watch_loop(
    orchestrator: SyncOrchestrator,
    console: Console,
    duration: Optional[float],
    poll: float,
) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration is not None else None
    try:
        first = await orchestrator.toggle_sync(True)
        if first is not None:
            console.print(_format_result(first), markup=False, highlight=False)
        async for status in orchestrator.watch_status(poll):
            last = status.last_sync.strftime("%H:%M:%S") if status.last_sync else "never"
            line = (
                f"[sync] records={status.total_records} synced={status.synced_records} "
                f"last={last} busy={status.sync_in_progress}"
            )
            if status.error:
                line += f" error={status.error}"
            console.print(line, markup=False, highlight=False)
            if deadline is not None and loop.time() >= deadline:
                break
    finally:
        await orchestrator.close()


def _show_help() -> str:
    return "\n".join([
        "[sync] Cloud backup commands:",
        "  sync              Show sync status",
        "  sync status       Show sync status",
        "  sync push         Push a full snapshot to the backup endpoint",
        "  sync restore --yes",
        "                    Replace local data with the latest backup",
        "  sync history [-n N]",
        "                    Show recent sync attempts",
        "  sync watch [-t SECONDS] [-p POLL]",
        "                    Enable auto-sync and stream status until Ctrl+C",
        "  sync reset        Clear sync status and history",
        "  sync help         Show this help",
    ])


COMMAND = SlashCommand(
    name="sync",
    description="Push, restore and monitor cloud backups.",
    handler=_handler,
)
