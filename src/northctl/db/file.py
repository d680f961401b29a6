"""File backend: ``file:PATH``.

The database is one JSON document. Every commit takes an exclusive fcntl
lock on ``PATH.lock``, re-reads the document, runs the commit algorithm and
atomically replaces the file, so independent processes get the same
optimistic concurrency as clients of a real server. Changes are detected by
polling the stored sequence number.
"""
import asyncio
import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .snapshot import Backend
from .store import CommitRequest, CommitResult, DataStore, TxnStatus

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05  # seconds


class FileBackend(Backend):
    """Backend over a JSON file shared between processes."""

    def __init__(self, remote: str, leader_only: bool = True):
        super().__init__(remote, leader_only)
        self.path = Path(remote.partition(":")[2]).expanduser()
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._alive = False

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with open(self.lock_path, "a") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)

    def _load(self) -> DataStore:
        if not self.path.exists():
            return DataStore()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            self._alive = False
            raise self.connection_failed(str(e))
        return DataStore.from_dict(data)

    def _save(self, store: DataStore) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(store.to_dict(), f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def connect(self) -> None:
        if not self.path.parent.is_dir():
            raise self.connection_failed(f"{self.path.parent}: No such file or directory")
        with self._locked():
            if not self.path.exists():
                self._save(DataStore())
                logger.info(f"Created empty database {self.path}")
        self._alive = True
        if self.leader_only:
            logger.debug(f"{self.remote} is a standalone database, always the leader")

    async def fetch(self):
        if not self._alive:
            raise self.connection_failed(self.last_error or "not connected")
        return self._load().export()

    async def commit(self, request: CommitRequest) -> CommitResult:
        if not self._alive:
            raise self.connection_failed(self.last_error or "not connected")
        with self._locked():
            store = self._load()
            result = store.commit(request)
            if result.status == TxnStatus.SUCCESS and not request.dry_run:
                self._save(store)
        return result

    def _current_seqno(self) -> int:
        try:
            return json.loads(self.path.read_text(encoding="utf-8") or "{}").get("seqno", 0)
        except (OSError, json.JSONDecodeError) as e:
            self._alive = False
            raise self.connection_failed(str(e))

    async def wait_for_change(self, seqno: int, timeout: Optional[float] = None) -> bool:
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            if self._current_seqno() != seqno:
                return True
            if deadline is not None and loop.time() >= deadline:
                return False
            delay = POLL_INTERVAL
            if deadline is not None:
                delay = min(delay, max(deadline - loop.time(), 0))
            await asyncio.sleep(delay)

    def is_alive(self) -> bool:
        return self._alive

    async def close(self) -> None:
        self._alive = False
