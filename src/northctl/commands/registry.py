"""Command registry.

Every command is a Command subclass declaring its name, argument bounds,
recognized options and access mode as class attributes, plus up to three
callbacks:

- prerequisites(ctx): declare the columns it will read (schema only)
- run(ctx): do the work inside the batch transaction
- postprocess(ctx): adjust output after the commit (e.g. real UUIDs)

The registry turns each command into an immutable CommandDescriptor once,
when the registry is built.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Iterable, Iterator, Optional

if TYPE_CHECKING:
    from ..engine.context import CommandContext
    from .parser import BoundCommand

logger = logging.getLogger(__name__)


class AccessMode(str, Enum):
    RO = "ro"
    RW = "rw"


@dataclass(frozen=True)
class OptionSpec:
    """A command-local option such as ``--may-exist`` or ``--type=``."""
    name: str
    takes_value: bool = False


def parse_option_specs(spec: str) -> tuple[OptionSpec, ...]:
    """Parse ``"--may-exist,--type="`` into OptionSpecs.

    A trailing ``=`` marks an option that takes a value.
    """
    specs = []
    for item in filter(None, (s.strip() for s in spec.split(","))):
        if item.endswith("="):
            specs.append(OptionSpec(item[:-1], takes_value=True))
        else:
            specs.append(OptionSpec(item))
    return tuple(specs)


class Command:
    """Base class for all commands."""
    name: ClassVar[str] = ""
    min_args: ClassVar[int] = 0
    max_args: ClassVar[Optional[int]] = 0  # None = unbounded
    options: ClassVar[str] = ""
    mode: ClassVar[AccessMode] = AccessMode.RW
    usage: ClassVar[str] = ""

    def prerequisites(self, ctx: "CommandContext") -> None:
        pass

    def run(self, ctx: "CommandContext") -> None:
        raise NotImplementedError

    def postprocess(self, ctx: "CommandContext") -> None:
        pass


@dataclass(frozen=True)
class CommandDescriptor:
    """Immutable description of a registered command."""
    name: str
    min_args: int
    max_args: Optional[int]
    options: tuple[OptionSpec, ...]
    mode: AccessMode
    usage: str
    handler: Command

    @classmethod
    def from_command(cls, command: Command) -> "CommandDescriptor":
        return cls(
            name=command.name,
            min_args=command.min_args,
            max_args=command.max_args,
            options=parse_option_specs(command.options),
            mode=command.mode,
            usage=command.usage,
            handler=command,
        )

    def option(self, name: str) -> Optional[OptionSpec]:
        for spec in self.options:
            if spec.name == name:
                return spec
        return None


class CommandRegistry:
    """Name -> CommandDescriptor."""

    def __init__(self, commands: Iterable[Command] = ()):
        self._commands: dict[str, CommandDescriptor] = {}
        for command in commands:
            self.register(command)

    def register(self, command: Command) -> CommandDescriptor:
        if not command.name:
            raise ValueError(f"{type(command).__name__} has no name")
        if command.name in self._commands:
            raise ValueError(f"command '{command.name}' registered twice")
        descriptor = CommandDescriptor.from_command(command)
        self._commands[command.name] = descriptor
        return descriptor

    def get(self, name: str) -> Optional[CommandDescriptor]:
        return self._commands.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._commands

    def __iter__(self) -> Iterator[CommandDescriptor]:
        return iter(sorted(self._commands.values(), key=lambda d: d.name))

    def __len__(self) -> int:
        return len(self._commands)

    @staticmethod
    def might_write(commands: Iterable["BoundCommand"]) -> bool:
        """True if any command in the batch is read-write."""
        return any(c.descriptor.mode == AccessMode.RW for c in commands)
