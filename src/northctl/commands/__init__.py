"""Command framework and the built-in commands.

Usage:
    from northctl.commands import build_registry, CommandParser

    parser = CommandParser(build_registry())
    commands = parser.parse(["ls-add", "sw0", "--", "lsp-add", "sw0", "p0"])
"""
from .db_commands import DB_COMMANDS
from .nb_commands import NB_COMMANDS
from .parser import BoundCommand, CommandParser, split_segments
from .registry import (
    AccessMode,
    Command,
    CommandDescriptor,
    CommandRegistry,
    OptionSpec,
)


def build_registry() -> CommandRegistry:
    """Registry with every built-in command."""
    return CommandRegistry(cls() for cls in (*DB_COMMANDS, *NB_COMMANDS))


__all__ = [
    "AccessMode",
    "BoundCommand",
    "Command",
    "CommandDescriptor",
    "CommandParser",
    "CommandRegistry",
    "OptionSpec",
    "build_registry",
    "split_segments",
]
