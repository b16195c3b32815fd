"""Command registry."""

from __future__ import annotations

from .export import COMMAND as EXPORT_COMMAND
from .help import COMMAND as HELP_COMMAND
from .importer import COMMAND as IMPORT_COMMAND
from .migrate import COMMAND as MIGRATE_COMMAND
from .serve import COMMAND as SERVE_COMMAND
from .status import COMMAND as STATUS_COMMAND
from .sync import COMMAND as SYNC_COMMAND

COMMANDS = [
    STATUS_COMMAND,
    HELP_COMMAND,
    EXPORT_COMMAND,
    IMPORT_COMMAND,
    MIGRATE_COMMAND,
    SERVE_COMMAND,
    SYNC_COMMAND,
]

__all__ = ["COMMANDS"]
