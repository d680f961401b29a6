"""In-process backend: ``memory:NAME``.

All MemoryBackend instances with the same name share one DataStore, so a
daemon and the tests driving it (or two snapshots in one test) observe each
other's commits. Changes are signalled through an asyncio.Event that is
replaced on every change.
"""
import asyncio
import copy
import logging
from typing import Any, Callable, Optional

from .snapshot import Backend
from .store import CommitRequest, CommitResult, DataStore, TxnStatus

logger = logging.getLogger(__name__)

_stores: dict[str, DataStore] = {}
_events: dict[str, asyncio.Event] = {}


def reset_stores() -> None:
    """Forget every named in-memory database."""
    _stores.clear()
    _events.clear()


class MemoryBackend(Backend):
    """Backend over a process-wide named DataStore."""

    def __init__(self, remote: str, leader_only: bool = True):
        super().__init__(remote, leader_only)
        self.name = remote.partition(":")[2] or "default"
        self._closed = False
        # Called with the store right before each commit; lets tests
        # interleave concurrent writers deterministically.
        self.before_commit: Optional[Callable[[DataStore], None]] = None

    @property
    def store(self) -> DataStore:
        return _stores.setdefault(self.name, DataStore())

    def _notify(self) -> None:
        event = _events.pop(self.name, None)
        if event is not None:
            event.set()

    async def connect(self) -> None:
        self._closed = False
        logger.debug(f"Connected to in-memory database '{self.name}'")

    async def fetch(self):
        if self._closed:
            raise self.connection_failed("connection closed")
        return self.store.export()

    async def commit(self, request: CommitRequest) -> CommitResult:
        if self._closed:
            raise self.connection_failed("connection closed")
        if self.before_commit is not None:
            seqno = self.store.seqno
            self.before_commit(self.store)
            if self.store.seqno != seqno:
                self._notify()
        result = self.store.commit(request)
        if result.status == TxnStatus.SUCCESS and not request.dry_run:
            self._notify()
        return result

    async def wait_for_change(self, seqno: int, timeout: Optional[float] = None) -> bool:
        if self.store.seqno != seqno:
            return True
        event = _events.setdefault(self.name, asyncio.Event())
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            return self.store.seqno != seqno
        return True

    def is_alive(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True

    # --- Writers other than northctl (downstream consumers, other admins) ---

    def apply_external(self, table: str, row_uuid: Optional[str] = None, **values: Any) -> str:
        """Insert or update a row directly in the store, bypassing transactions."""
        if row_uuid is None:
            row_uuid = self.store.insert_row(table, copy.deepcopy(values))
        else:
            self.store.update_row(table, row_uuid, copy.deepcopy(values))
        self._notify()
        return row_uuid
