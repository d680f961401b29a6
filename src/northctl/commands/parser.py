"""Command-line batch parser.

Splits a token stream on ``--`` into command segments and binds each one to
its registry entry:

    northctl --may-exist ls-add sw0 -- lsp-add sw0 p0 -- --if-exists ls-del sw1

Nothing here touches the database; every error is a UsageError raised
before a connection is opened.
"""
import io
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..engine.errors import UnknownCommandError, UsageError
from ..engine.output import Table
from .registry import CommandDescriptor, CommandRegistry

logger = logging.getLogger(__name__)

SEPARATOR = "--"


@dataclass
class BoundCommand:
    """A parsed command invocation plus its per-attempt output."""
    descriptor: CommandDescriptor
    args: list[str] = field(default_factory=list)
    options: dict[str, Optional[str]] = field(default_factory=dict)
    output: io.StringIO = field(default_factory=io.StringIO)
    table: Optional[Table] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    def reset(self) -> None:
        """Discard output from a previous attempt."""
        self.output = io.StringIO()
        self.table = None

    def __str__(self) -> str:
        opts = [k if v is None else f"{k}={v}" for k, v in self.options.items()]
        return " ".join([*opts, self.name, *self.args])


def split_segments(tokens: Sequence[str]) -> list[list[str]]:
    """Split on the separator, dropping empty segments."""
    segments: list[list[str]] = [[]]
    for token in tokens:
        if token == SEPARATOR:
            segments.append([])
        else:
            segments[-1].append(token)
    return [s for s in segments if s]


def split_option(token: str) -> tuple[str, Optional[str]]:
    """``--name=value`` -> ("--name", "value"); ``--name`` -> ("--name", None)."""
    name, sep, value = token.partition("=")
    return name, (value if sep else None)


class CommandParser:
    """Turns tokens into BoundCommands using a CommandRegistry."""

    def __init__(self, registry: CommandRegistry):
        self.registry = registry

    def parse(
        self,
        tokens: Sequence[str],
        local_options: Optional[dict[str, Optional[str]]] = None,
    ) -> list[BoundCommand]:
        """Parse a full batch.

        Args:
            tokens: Everything after the global options
            local_options: Command options that appeared among the global
                options; they bind to the first command

        Returns:
            One BoundCommand per segment, in order
        """
        segments = split_segments(tokens)
        if not segments:
            raise UsageError("missing command name (use --help for help)")

        commands = []
        for i, segment in enumerate(segments):
            carried = local_options if i == 0 else None
            commands.append(self._parse_segment(segment, carried))
        return commands

    def _parse_segment(
        self,
        segment: list[str],
        carried: Optional[dict[str, Optional[str]]],
    ) -> BoundCommand:
        leading: list[tuple[str, Optional[str]]] = list((carried or {}).items())

        pos = 0
        while pos < len(segment) and segment[pos].startswith("--"):
            leading.append(split_option(segment[pos]))
            pos += 1
        if pos >= len(segment):
            raise UsageError("missing command name (use --help for help)")

        name = segment[pos]
        descriptor = self.registry.get(name)
        if descriptor is None:
            raise UnknownCommandError(name)

        options: dict[str, Optional[str]] = {}
        for opt_name, value in leading:
            self._bind_option(descriptor, options, opt_name, value)

        args: list[str] = []
        rest = segment[pos + 1:]
        i = 0
        while i < len(rest):
            token = rest[i]
            opt_name, value = split_option(token)
            spec = descriptor.option(opt_name) if token.startswith("--") else None
            if spec is None:
                args.append(token)
            else:
                if spec.takes_value and value is None:
                    if i + 1 >= len(rest):
                        raise UsageError(f"'{opt_name}' option on '{name}' requires an argument")
                    i += 1
                    value = rest[i]
                self._bind_option(descriptor, options, opt_name, value)
            i += 1

        if len(args) < descriptor.min_args:
            raise UsageError(
                f"'{name}' command requires at least {descriptor.min_args} arguments"
            )
        if descriptor.max_args is not None and len(args) > descriptor.max_args:
            raise UsageError(
                f"'{name}' command takes at most {descriptor.max_args} arguments"
            )

        return BoundCommand(descriptor, args, options)

    @staticmethod
    def _bind_option(
        descriptor: CommandDescriptor,
        options: dict[str, Optional[str]],
        opt_name: str,
        value: Optional[str],
    ) -> None:
        spec = descriptor.option(opt_name)
        if spec is None:
            raise UsageError(f"'{descriptor.name}' command has no '{opt_name}' option")
        if opt_name in options:
            raise UsageError(f"'{opt_name}' option specified multiple times")
        if spec.takes_value and value is None:
            raise UsageError(f"'{opt_name}' option on '{descriptor.name}' requires an argument")
        if not spec.takes_value and value is not None:
            raise UsageError(f"'{opt_name}' option on '{descriptor.name}' does not accept an argument")
        options[opt_name] = value
