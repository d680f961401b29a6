"""Client-side view of the database and the transaction primitives.

A Snapshot mirrors the rows served by a Backend at one sequence number.
Commands read from it, never write to it; all mutations go through a
Transaction opened on the snapshot, which is committed (or aborted) as one
unit.
"""
import logging
import uuid as uuid_lib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from ..engine.errors import DatabaseConnectionError
from .schema import NB_SCHEMA, SchemaError, TableSchema
from .store import CommitRequest, CommitResult, RowKey, TxnStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Row:
    """One row as seen by a command. ``version`` is 0 for rows not yet committed."""
    table: str
    uuid: str
    data: dict[str, Any] = field(default_factory=dict)
    version: int = 0

    def __getitem__(self, column: str) -> Any:
        if column == "_uuid":
            return self.uuid
        return self.data[column]

    def get(self, column: str, default: Any = None) -> Any:
        if column == "_uuid":
            return self.uuid
        return self.data.get(column, default)


class Backend(ABC):
    """Something that serves a DataStore to clients.

    Backends are addressed by a remote string such as ``memory:NAME`` or
    ``file:PATH``.
    """

    def __init__(self, remote: str, leader_only: bool = True):
        self.remote = remote
        self.leader_only = leader_only
        self.last_error: Optional[str] = None

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection; raise DatabaseConnectionError on failure."""
        pass

    @abstractmethod
    async def fetch(self) -> tuple[int, dict[str, dict[str, dict[str, Any]]], dict[RowKey, int]]:
        """Return (seqno, tables, versions) as currently stored."""
        pass

    @abstractmethod
    async def commit(self, request: CommitRequest) -> CommitResult:
        """Submit a transaction."""
        pass

    @abstractmethod
    async def wait_for_change(self, seqno: int, timeout: Optional[float] = None) -> bool:
        """Block until the stored seqno differs from ``seqno``.

        Returns False if ``timeout`` elapsed first.
        """
        pass

    @abstractmethod
    def is_alive(self) -> bool:
        pass

    async def close(self) -> None:
        pass

    def connection_failed(self, reason: str) -> DatabaseConnectionError:
        """Record ``reason`` and build the error reported to the caller."""
        self.last_error = reason
        return DatabaseConnectionError(f"{self.remote}: database connection failed ({reason})")


class Snapshot:
    """Local mirror of the database rows at one sequence number."""

    def __init__(self, backend: Backend, schema: Optional[dict[str, TableSchema]] = None):
        self.backend = backend
        self.schema = schema or NB_SCHEMA
        self.seqno = 0
        self.has_ever_connected = False
        self._tables: dict[str, dict[str, dict[str, Any]]] = {name: {} for name in self.schema}
        self._versions: dict[RowKey, int] = {}

    @property
    def remote(self) -> str:
        return self.backend.remote

    def is_alive(self) -> bool:
        return self.backend.is_alive()

    async def run(self) -> None:
        """Bring the local copy up to date with the backend."""
        if not self.has_ever_connected:
            await self.backend.connect()
        seqno, tables, versions = await self.backend.fetch()
        if seqno != self.seqno or not self.has_ever_connected:
            logger.debug(f"Snapshot of {self.remote} advanced from seqno {self.seqno} to {seqno}")
        self.seqno = seqno
        self._tables = {name: tables.get(name, {}) for name in self.schema}
        self._versions = versions
        self.has_ever_connected = True

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the backend moves past our seqno. False on timeout."""
        return await self.backend.wait_for_change(self.seqno, timeout)

    async def close(self) -> None:
        await self.backend.close()

    # --- Schema view (all that prerequisite callbacks may touch) ---

    def register_column(self, table: str, column: str) -> None:
        """Declare that a command is going to read ``table.column``."""
        if table not in self.schema:
            raise SchemaError(f"unknown table \"{table}\"")
        if column != "_uuid":
            self.schema[table].column(column)

    # --- Row access ---

    def rows(self, table: str) -> list[Row]:
        return [
            Row(table, row_uuid, data, self._versions.get((table, row_uuid), 0))
            for row_uuid, data in self._tables[table].items()
        ]

    def get(self, table: str, row_uuid: str) -> Optional[Row]:
        data = self._tables[table].get(row_uuid)
        if data is None:
            return None
        return Row(table, row_uuid, data, self._versions.get((table, row_uuid), 0))

    def first(self, table: str) -> Optional[Row]:
        rows = self.rows(table)
        return rows[0] if rows else None

    def version(self, table: str, row_uuid: str) -> Optional[int]:
        return self._versions.get((table, row_uuid))

    def transaction(self) -> "Transaction":
        return Transaction(self)


class Transaction:
    """A set of proposed mutations against one Snapshot.

    Use as an async context manager; leaving the block without a commit
    aborts the transaction.
    """

    def __init__(self, snapshot: Snapshot):
        self.snapshot = snapshot
        self.status = TxnStatus.UNCOMMITTED
        self.dry_run = False
        self.error: Optional[str] = None
        self._comments: list[str] = []
        self._inserts: dict[RowKey, dict[str, Any]] = {}
        self._updates: dict[RowKey, dict[str, Any]] = {}
        self._deletes: set[RowKey] = set()
        self._verified: dict[RowKey, int] = {}
        self._increment: Optional[tuple[str, str, str]] = None
        self._force_increment = False
        self._result: Optional[CommitResult] = None

    async def __aenter__(self) -> "Transaction":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.status == TxnStatus.UNCOMMITTED:
            self.abort()

    def _check_open(self) -> None:
        if self.status != TxnStatus.UNCOMMITTED:
            raise RuntimeError(f"transaction is already {self.status.value}")

    def abort(self) -> None:
        if self.status == TxnStatus.UNCOMMITTED:
            self.status = TxnStatus.ABORTED
            self._inserts.clear()
            self._updates.clear()
            self._deletes.clear()

    def set_dry_run(self, dry_run: bool = True) -> None:
        self.dry_run = dry_run

    def add_comment(self, comment: str) -> None:
        self._comments.append(comment)

    # --- Mutations ---

    def insert(self, table: str, values: Optional[dict[str, Any]] = None) -> str:
        """Insert a row; returns its provisional UUID."""
        self._check_open()
        row_uuid = str(uuid_lib.uuid4())
        row = self.snapshot.schema[table].default_row()
        row.update(values or {})
        self._inserts[(table, row_uuid)] = row
        return row_uuid

    def update(self, table: str, row_uuid: str, values: dict[str, Any]) -> None:
        """Set columns of an existing or newly inserted row."""
        self._check_open()
        key = (table, row_uuid)
        if key in self._inserts:
            self._inserts[key].update(values)
            return
        if key in self._deletes:
            raise RuntimeError(f"row {row_uuid} in {table} was deleted in this transaction")
        self.verify(table, row_uuid)
        self._updates.setdefault(key, {}).update(values)

    def delete(self, table: str, row_uuid: str) -> None:
        self._check_open()
        key = (table, row_uuid)
        if self._inserts.pop(key, None) is not None:
            return
        self.verify(table, row_uuid)
        self._updates.pop(key, None)
        self._deletes.add(key)

    def verify(self, table: str, row_uuid: str) -> None:
        """Make the commit fail with TRY_AGAIN if the row changed meanwhile."""
        version = self.snapshot.version(table, row_uuid)
        if version is not None:
            self._verified.setdefault((table, row_uuid), version)

    def increment(self, table: str, row_uuid: str, column: str, force: bool = False) -> None:
        """Request that ``column`` be incremented by one on commit.

        Unless ``force`` is set, the increment only happens when the
        transaction changes something else.
        """
        self._check_open()
        self._increment = (table, row_uuid, column)
        self._force_increment = force

    # --- Merged view (snapshot plus pending changes) ---

    def _merged(self, table: str, row_uuid: str, data: dict[str, Any]) -> dict[str, Any]:
        pending = self._updates.get((table, row_uuid))
        return {**data, **pending} if pending else data

    def rows(self, table: str) -> list[Row]:
        rows = [
            Row(table, row.uuid, self._merged(table, row.uuid, row.data), row.version)
            for row in self.snapshot.rows(table)
            if (table, row.uuid) not in self._deletes
        ]
        rows.extend(
            Row(table, row_uuid, dict(data))
            for (name, row_uuid), data in self._inserts.items() if name == table
        )
        return rows

    def get(self, table: str, row_uuid: str) -> Optional[Row]:
        key = (table, row_uuid)
        if key in self._inserts:
            return Row(table, row_uuid, dict(self._inserts[key]))
        if key in self._deletes:
            return None
        row = self.snapshot.get(table, row_uuid)
        if row is None:
            return None
        return Row(table, row_uuid, self._merged(table, row_uuid, row.data), row.version)

    def is_inserted(self, table: str, row_uuid: str) -> bool:
        return (table, row_uuid) in self._inserts

    # --- Commit ---

    async def commit(self) -> TxnStatus:
        """Send the transaction to the backend and return its outcome."""
        if self.status != TxnStatus.UNCOMMITTED:
            return self.status

        request = CommitRequest(
            inserts={key: dict(values) for key, values in self._inserts.items()},
            updates={key: dict(values) for key, values in self._updates.items()},
            deletes=set(self._deletes),
            verified=dict(self._verified),
            increment=self._increment,
            force_increment=self._force_increment,
            dry_run=self.dry_run,
            comment="; ".join(self._comments),
        )
        self._result = await self.snapshot.backend.commit(request)
        self.status = self._result.status
        self.error = self._result.error
        return self.status

    @property
    def increment_new_value(self) -> Optional[int]:
        return self._result.increment_value if self._result else None

    def get_insert_uuid(self, provisional: str) -> Optional[str]:
        """Permanent UUID assigned to a row this transaction inserted."""
        if self._result is None:
            return None
        return self._result.insert_uuids.get(provisional)
