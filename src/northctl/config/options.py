"""Command-line option handling shared by the CLI and the daemon.

A command line is: global options, then the batch. Leading ``--name``
tokens that are not global options are command options of the first
command, so ``northctl --may-exist ls-add sw0`` works.
"""
import argparse
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version
from typing import Optional, Sequence

from ..engine.errors import UsageError
from ..engine.output import TABLE_FORMATS
from .settings import RunOptions, WaitType

# Options that configure the process rather than one batch; the daemon
# rejects them inside a request.
PROCESS_OPTIONS = ("db", "unixctl", "detach", "pidfile", "stop_daemon", "list_commands", "log_file")


class ArgumentParser(argparse.ArgumentParser):
    """argparse that reports errors as UsageError instead of exiting."""

    def error(self, message: str):
        raise UsageError(message)


def build_arg_parser(for_request: bool = False) -> ArgumentParser:
    """Global option parser.

    Args:
        for_request: Build the parser used for daemon requests, which has
            no --help/--version (those would exit the daemon)
    """
    parser = ArgumentParser(
        prog="northctl",
        usage="northctl [OPTIONS] COMMAND [ARG...] [-- [OPTIONS] COMMAND [ARG...]]...",
        description="Batched, transactional edits of the northbound database.",
        add_help=not for_request,
    )
    if not for_request:
        parser.add_argument("--version", action="version", version=f"%(prog)s {_version()}")

    db = parser.add_argument_group("database")
    db.add_argument("--db", metavar="REMOTE", help="database remote (memory:NAME or file:PATH)")
    db.add_argument("--leader-only", dest="leader_only", action="store_true", default=None)
    db.add_argument("--no-leader-only", dest="leader_only", action="store_false")

    run = parser.add_argument_group("transaction")
    run.add_argument("--no-wait", dest="wait", action="store_const", const="none")
    run.add_argument("--wait", metavar="{none,sb,hv}", help="wait for a consumer after committing")
    run.add_argument("-t", "--timeout", metavar="SECS", help="give up after SECS seconds")
    run.add_argument("--dry-run", action="store_true", help="do not commit changes")
    run.add_argument("--oneline", action="store_true", help="print each command's output on one line")
    run.add_argument("-f", "--format", choices=TABLE_FORMATS, help="table output format")
    run.add_argument("--no-headings", action="store_true", help="omit table headings")

    daemon = parser.add_argument_group("daemon")
    daemon.add_argument("-u", "--unixctl", metavar="PATH", help="daemon control socket")
    daemon.add_argument("--detach", action="store_true", help="run as a daemon")
    daemon.add_argument("--pidfile", metavar="PATH", help="write daemon pid to PATH")
    daemon.add_argument("--stop-daemon", action="store_true", help="ask the daemon to exit")

    misc = parser.add_argument_group("logging")
    misc.add_argument("-v", "--verbose", action="store_true", help="debug logging on stderr")
    misc.add_argument("--log-file", metavar="PATH", help="also log to PATH")
    misc.add_argument("--commands", dest="list_commands", action="store_true",
                      help="list the available commands")
    return parser


def _version() -> str:
    try:
        return version("northctl")
    except PackageNotFoundError:
        return "unknown"


def _option_table(parser: argparse.ArgumentParser) -> dict[str, bool]:
    """Every global option string -> whether it takes a value."""
    table = {}
    for action in parser._actions:
        for opt in action.option_strings:
            table[opt] = isinstance(action, argparse._StoreAction)
    return table


def split_argv(parser: argparse.ArgumentParser, argv: Sequence[str]
               ) -> tuple[list[str], dict[str, Optional[str]], list[str]]:
    """Split into (global option tokens, first-command options, batch tokens)."""
    known = _option_table(parser)
    global_args: list[str] = []
    local: dict[str, Optional[str]] = {}

    i = 0
    while i < len(argv):
        token = argv[i]
        if token == "--" or not token.startswith("-") or token == "-":
            break

        name, sep, value = token.partition("=")
        short_attached = not token.startswith("--") and len(token) > 2 and token[:2] in known
        if short_attached:
            name = token[:2]

        if name in known:
            global_args.append(token)
            if known[name] and not sep and not short_attached:
                if i + 1 >= len(argv):
                    raise UsageError(f"option '{name}' requires an argument")
                i += 1
                global_args.append(argv[i])
        elif token.startswith("--"):
            if name in local:
                raise UsageError(f"'{name}' option specified multiple times")
            local[name] = value if sep else None
        else:
            raise UsageError(f"unrecognized option '{token}'")
        i += 1

    return global_args, local, list(argv[i:])


def parse_timeout(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        timeout = int(value)
    except ValueError:
        timeout = 0
    if timeout <= 0:
        raise UsageError(f"value {value} on -t or --timeout is invalid")
    return timeout


@dataclass
class Invocation:
    """A parsed command line, before any command is bound."""
    args: argparse.Namespace
    options: RunOptions
    local_options: dict[str, Optional[str]] = field(default_factory=dict)
    tokens: list[str] = field(default_factory=list)


def parse_invocation(argv: Sequence[str], for_request: bool = False) -> Invocation:
    """Parse global options into a fresh RunOptions.

    Raises:
        UsageError: malformed or, for daemon requests, disallowed options
    """
    parser = build_arg_parser(for_request)
    global_args, local, tokens = split_argv(parser, argv)
    args = parser.parse_args(global_args)

    if for_request:
        for name in PROCESS_OPTIONS:
            if getattr(args, name):
                flag = "--commands" if name == "list_commands" else "--" + name.replace("_", "-")
                raise UsageError(f"{flag} not supported in daemon requests")

    try:
        wait_type = WaitType.parse(args.wait) if args.wait else WaitType.NONE
    except ValueError as e:
        raise UsageError(str(e))

    options = RunOptions(
        oneline=args.oneline,
        dry_run=args.dry_run,
        wait_type=wait_type,
        timeout=parse_timeout(args.timeout),
        table_format=args.format or "list",
        headings=not args.no_headings,
    )
    return Invocation(args, options, local, tokens)


def request_args(argv: Sequence[str]) -> list[str]:
    """The part of a command line a client forwards to the daemon.

    Process options are dropped; everything else is kept verbatim.
    """
    parser = build_arg_parser()
    global_args, local, tokens = split_argv(parser, argv)
    known = _option_table(parser)
    dropped = {
        opt for action in parser._actions if action.dest in (*PROCESS_OPTIONS, "leader_only")
        for opt in action.option_strings
    }

    forwarded = []
    i = 0
    while i < len(global_args):
        token = global_args[i]
        name = token.partition("=")[0]
        if not token.startswith("--") and len(token) > 2:
            name = token[:2]
        takes_value = known.get(name, False) and "=" not in token and name == token
        if name not in dropped:
            forwarded.append(token)
            if takes_value:
                forwarded.append(global_args[i + 1])
        i += 2 if takes_value else 1

    forwarded.extend(k if v is None else f"{k}={v}" for k, v in local.items())
    return [*forwarded, "--", *tokens]
