"""northctl command-line entry point.

Usage:
    northctl [OPTIONS] COMMAND [ARG...] [-- [OPTIONS] COMMAND [ARG...]]...

Modes:
- direct: connect to --db (or NORTHCTL_DB), run the batch, exit
- client: NORTHCTL_DAEMON or -u names a daemon socket; the batch is
  forwarded to the daemon, which runs it against its warm snapshot
- daemon: --detach starts a daemon and prints its control socket path

Environment variables:
    NORTHCTL_OPTIONS    Default options, prepended to the command line
    NORTHCTL_DAEMON     Daemon control socket (client mode)
    NORTHCTL_DB         Default database remote
    NORTHCTL_CONFIG     YAML settings file
"""
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence, TextIO

from .commands import CommandParser, CommandRegistry, build_registry
from .config.options import Invocation, parse_invocation, request_args
from .config.settings import ClientSettings
from .daemon.client import run_via_daemon, stop_daemon
from .daemon.server import daemonize, serve
from .db import Snapshot, open_backend
from .engine.errors import NorthctlError, UsageError
from .engine.main_loop import RunResult, run_batch
from .utils.audit_log import setup_audit_logging
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _open_snapshot(invocation: Invocation, settings: ClientSettings) -> Snapshot:
    db = invocation.args.db or settings.db
    leader_only = invocation.args.leader_only
    if leader_only is None:
        leader_only = settings.leader_only
    return Snapshot(open_backend(db, leader_only=leader_only))


async def run_direct(
    invocation: Invocation,
    settings: ClientSettings,
    argv: Sequence[str],
    registry: Optional[CommandRegistry] = None,
    out: Optional[TextIO] = None,
) -> RunResult:
    """Parse, connect and run the batch in this process."""
    out = out or sys.stdout
    commands = CommandParser(registry or build_registry()).parse(
        invocation.tokens, invocation.local_options
    )
    snapshot = _open_snapshot(invocation, settings)
    try:
        return await run_batch(snapshot, commands, invocation.options,
                               args=" ".join(argv), emit=out.write)
    finally:
        await snapshot.close()


async def run_client(
    invocation: Invocation,
    socket_path: str,
    argv: Sequence[str],
    registry: Optional[CommandRegistry] = None,
    out: Optional[TextIO] = None,
) -> None:
    """Forward the batch to a running daemon."""
    out = out or sys.stdout
    # Usage errors are reported without bothering the daemon.
    CommandParser(registry or build_registry()).parse(invocation.tokens, invocation.local_options)
    output = await run_via_daemon(socket_path, request_args(argv), invocation.options.timeout)
    out.write(output)


def run_daemon(invocation: Invocation, settings: ClientSettings) -> int:
    """Detach and serve requests until told to exit."""
    if invocation.tokens or invocation.local_options:
        raise UsageError("non-option arguments not supported with --detach")

    args = invocation.args
    socket_path = Path(args.unixctl).expanduser() if args.unixctl else None
    pidfile = Path(args.pidfile).expanduser() if args.pidfile else None
    snapshot = _open_snapshot(invocation, settings)

    ready_fd = daemonize()
    asyncio.run(serve(snapshot, socket_path, pidfile, ready_fd))
    return 0


def print_commands(registry: CommandRegistry, out: TextIO) -> None:
    for descriptor in registry:
        out.write(f"{descriptor.name:<20} {descriptor.mode.value}  {descriptor.usage}\n")


def _error(message: object) -> None:
    sys.stderr.write(f"northctl: {message}\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run northctl; returns the process exit status."""
    argv = list(sys.argv[1:] if argv is None else argv)

    try:
        settings = ClientSettings.load()
        argv = [*settings.options, *argv]
        invocation = parse_invocation(argv)
    except UsageError as e:
        _error(e)
        return 1

    args = invocation.args
    setup_logging(
        level=logging.DEBUG if args.verbose else None,
        log_file=Path(args.log_file).expanduser() if args.log_file else None,
    )
    if settings.audit_log:
        setup_audit_logging(settings.audit_log)

    registry = build_registry()
    if args.list_commands:
        print_commands(registry, sys.stdout)
        return 0

    socket_path = args.unixctl or settings.daemon
    try:
        if args.stop_daemon:
            if not socket_path:
                raise UsageError("--stop-daemon requires -u or NORTHCTL_DAEMON")
            asyncio.run(stop_daemon(socket_path))
            return 0

        if args.detach:
            return run_daemon(invocation, settings)

        if socket_path and args.db:
            logger.warning(f"--db given, not using daemon at {socket_path}")
            socket_path = None

        if socket_path:
            asyncio.run(run_client(invocation, socket_path, argv, registry))
        else:
            asyncio.run(run_direct(invocation, settings, argv, registry))
    except NorthctlError as e:
        _error(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
