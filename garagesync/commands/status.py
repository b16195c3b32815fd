"""Command for runtime status."""

from __future__ import annotations

from typing import List

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..slash_commands import SlashCommand, SlashCommandContext, render_rich


def _handler(context: SlashCommandContext, _: List[str]) -> str:
    config = context.config
    orchestrator = context.orchestrator

    def _render(console: Console) -> None:
        info = Table.grid(padding=(0, 1))
        info.add_column("Key", style="bold", no_wrap=True)
        info.add_column("Value", overflow="fold")
        info.add_row("Data dir", str(config.data_dir))
        info.add_row("Config", config.status)
        info.add_row("Config files", str(len(config.files_loaded)))
        info.add_row("Log path", str(config.log_path or "(not initialized)"))
        info.add_row("Store", str(config.resolve_path(config.section("store").get("path", ""))))
        remote = orchestrator.remote.describe() if orchestrator and orchestrator.remote else "(not configured)"
        info.add_row("Backup", remote)

        console.print(
            Panel(
                info,
                title="Runtime Status",
                border_style="green",
                padding=(0, 1),
            )
        )

        if not config.diagnostics:
            console.print(Panel("[green]No diagnostics reported.", title="Diagnostics", border_style="red"))
            return
        diag_table = Table(show_header=True, header_style="bold")
        diag_table.add_column("Level", no_wrap=True)
        diag_table.add_column("Message", overflow="fold")
        for diag in config.diagnostics:
            style = {"error": "red", "warning": "yellow"}.get(diag.level, "cyan")
            diag_table.add_row(f"[{style}]{diag.level.upper()}[/{style}]", escape(diag.message))
        console.print(Panel(diag_table, title="Diagnostics", border_style="red"))

    return render_rich(_render)


COMMAND = SlashCommand(
    name="status",
    description="Show data directory, configuration and backup target.",
    handler=_handler,
)
