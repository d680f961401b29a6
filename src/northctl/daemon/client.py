"""Client side of the daemon control socket."""
import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from pydantic import BaseModel

from ..engine.errors import DaemonError, TimeoutExpired
from ..utils.connection import with_retry
from .protocol import DaemonResponse, ExitRequest, RunRequest, decode_response, encode

logger = logging.getLogger(__name__)


class DaemonClient:
    """Connection to a running daemon.

    Usage:
        async with DaemonClient("/tmp/northctl.1234.ctl") as client:
            response = await client.run(["--", "ls-list"])
    """

    def __init__(self, socket_path: Union[str, Path]):
        self.socket_path = Path(socket_path)
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def __aenter__(self) -> "DaemonClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @with_retry(max_attempts=3, min_wait=0.1, max_wait=1)
    async def _open(self) -> None:
        self._reader, self._writer = await asyncio.open_unix_connection(str(self.socket_path))

    async def connect(self) -> None:
        try:
            await self._open()
        except OSError as e:
            raise DaemonError(f"{self.socket_path}: cannot connect to daemon ({e.strerror or e})")
        logger.debug(f"Connected to daemon at {self.socket_path}")

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(ConnectionError):
                await self._writer.wait_closed()
            self._writer = None
            self._reader = None

    async def request(self, message: BaseModel) -> DaemonResponse:
        if self._writer is None or self._reader is None:
            await self.connect()
        try:
            self._writer.write(encode(message))
            await self._writer.drain()
            line = await self._reader.readline()
        except ConnectionError as e:
            raise DaemonError(f"{self.socket_path}: transaction error ({e})")
        return decode_response(line)

    async def run(self, args: Sequence[str]) -> DaemonResponse:
        return await self.request(RunRequest(args=list(args)))

    async def stop(self) -> DaemonResponse:
        return await self.request(ExitRequest())


async def run_via_daemon(socket_path: Union[str, Path], args: Sequence[str],
                         timeout: Optional[float] = None) -> str:
    """Send one command line to the daemon and return its output.

    Raises:
        DaemonError: the daemon is unreachable or reported an error
        TimeoutExpired: no answer within ``timeout`` seconds
    """
    async with DaemonClient(socket_path) as client:
        try:
            response = await asyncio.wait_for(client.run(args), timeout)
        except asyncio.TimeoutError:
            raise TimeoutExpired()
    if response.error is not None:
        raise DaemonError(response.error)
    return response.result or ""


async def stop_daemon(socket_path: Union[str, Path]) -> None:
    async with DaemonClient(socket_path) as client:
        response = await client.stop()
    if response.error is not None:
        raise DaemonError(response.error)
