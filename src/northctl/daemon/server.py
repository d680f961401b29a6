"""Long-lived daemon serving batches over a Unix control socket.

The daemon keeps one Snapshot warm across requests, so a batch does not pay
for connecting and fetching the database. Each request is parsed and run
with fresh RunOptions, BoundCommands and symbol table; only the snapshot is
shared, and requests run one at a time.
"""
import asyncio
import contextlib
import io
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional, Union

from ..commands import CommandParser, CommandRegistry, build_registry
from ..config.options import parse_invocation
from ..db.snapshot import Snapshot
from ..engine.errors import DatabaseConnectionError, NorthctlError
from ..engine.main_loop import run_batch
from .protocol import DaemonResponse, ExitRequest, RunRequest, decode_request, encode

logger = logging.getLogger(__name__)

# Seconds between attempts to refresh the snapshot after the database went away.
REFRESH_RETRY_DELAY = 1.0


def default_socket_path() -> Path:
    return Path(tempfile.gettempdir()) / f"northctl.{os.getpid()}.ctl"


class DaemonServer:
    """Serves run/exit requests against one shared snapshot."""

    def __init__(self, snapshot: Snapshot, socket_path: Union[str, Path],
                 registry: Optional[CommandRegistry] = None):
        self.snapshot = snapshot
        self.socket_path = Path(socket_path)
        self.parser = CommandParser(registry or build_registry())
        self.requests_served = 0
        self._lock = asyncio.Lock()
        self._stopped = asyncio.Event()
        self._server: Optional[asyncio.AbstractServer] = None
        self._refresher: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Connect to the database and start listening."""
        await self.snapshot.run()
        if self.socket_path.exists():
            logger.warning(f"Removing stale control socket {self.socket_path}")
            self.socket_path.unlink()
        self._server = await asyncio.start_unix_server(self._handle_client, path=str(self.socket_path))
        self._refresher = asyncio.create_task(self._refresh_loop())
        logger.info(f"Listening on {self.socket_path} for {self.snapshot.remote}")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        try:
            await self._stopped.wait()
        finally:
            await self.close()

    def stop(self) -> None:
        self._stopped.set()

    async def close(self) -> None:
        if self._refresher is not None:
            self._refresher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._refresher
            self._refresher = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            self.socket_path.unlink(missing_ok=True)
        async with self._lock:
            await self.snapshot.close()
        logger.info(f"Daemon stopped after {self.requests_served} requests")

    async def _refresh_loop(self) -> None:
        """Keep the snapshot current between requests."""
        while True:
            try:
                await self.snapshot.wait()
                async with self._lock:
                    await self.snapshot.run()
            except DatabaseConnectionError as e:
                logger.warning(f"Snapshot refresh failed, retrying in {REFRESH_RETRY_DELAY}s: {e}")
                await asyncio.sleep(REFRESH_RETRY_DELAY)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while not self._stopped.is_set():
                line = await reader.readline()
                if not line:
                    break
                response = await self.handle_line(line)
                writer.write(encode(response))
                await writer.drain()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.debug(f"Client went away: {e}")
        finally:
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()

    async def handle_line(self, line: bytes) -> DaemonResponse:
        try:
            request = decode_request(line)
        except NorthctlError as e:
            return DaemonResponse(error=str(e))

        if isinstance(request, ExitRequest):
            logger.info("Exit requested")
            self.stop()
            return DaemonResponse(result="")
        return await self.run_request(request)

    async def run_request(self, request: RunRequest) -> DaemonResponse:
        """Run one full command line and capture its output."""
        async with self._lock:
            self.requests_served += 1
            output = io.StringIO()
            try:
                invocation = parse_invocation(request.args, for_request=True)
                commands = self.parser.parse(invocation.tokens, invocation.local_options)
                await run_batch(
                    self.snapshot,
                    commands,
                    invocation.options,
                    args=" ".join(request.args),
                    emit=output.write,
                )
            except NorthctlError as e:
                logger.debug(f"Request failed: {e}")
                return DaemonResponse(error=str(e))
            except Exception as e:
                logger.exception("Unexpected error while serving request")
                return DaemonResponse(error=f"internal error: {e}")
            return DaemonResponse(result=output.getvalue())


def daemonize() -> int:
    """Detach from the terminal (double fork).

    The original process waits until the daemon writes its socket path to
    the returned pipe descriptor, prints it and exits; it exits with status
    1 if the daemon dies first.

    Returns:
        Write end of the readiness pipe, in the daemon process
    """
    read_fd, write_fd = os.pipe()
    if os.fork() > 0:
        os.close(write_fd)
        with os.fdopen(read_fd) as ready:
            message = ready.read()
        if message:
            sys.stdout.write(message)
            sys.stdout.flush()
            os._exit(0)
        os._exit(1)

    os.close(read_fd)
    os.setsid()
    if os.fork() > 0:
        os._exit(0)
    return write_fd


def _detach_stdio() -> None:
    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    os.close(devnull)


async def serve(snapshot: Snapshot, socket_path: Optional[Path] = None,
                pidfile: Optional[Path] = None, ready_fd: Optional[int] = None) -> None:
    """Run a daemon until an exit request arrives."""
    server = DaemonServer(snapshot, socket_path or default_socket_path())
    await server.start()

    if pidfile is not None:
        pidfile.write_text(f"{os.getpid()}\n")
    if ready_fd is not None:
        os.write(ready_fd, f"{server.socket_path}\n".encode())
        os.close(ready_fd)
        _detach_stdio()

    try:
        await server.serve_forever()
    finally:
        if pidfile is not None:
            pidfile.unlink(missing_ok=True)
