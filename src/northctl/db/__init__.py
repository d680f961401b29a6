"""Database access: schema, snapshot, transactions and backends."""
from ..engine.errors import DatabaseConnectionError
from .file import FileBackend
from .memory import MemoryBackend
from .schema import (
    NB_SCHEMA,
    ROW_IDS,
    ColumnSchema,
    ColumnType,
    RefType,
    RowIdLookup,
    SchemaError,
    TableSchema,
    find_table,
)
from .snapshot import Backend, Row, Snapshot, Transaction
from .store import CommitRequest, CommitResult, DataStore, TxnStatus

BACKENDS = {
    "memory": MemoryBackend,
    "file": FileBackend,
}


def open_backend(remote: str, leader_only: bool = True) -> Backend:
    """Create the backend for a remote such as ``memory:NAME`` or ``file:PATH``.

    Raises:
        DatabaseConnectionError: for unsupported remote types
    """
    kind, sep, _ = remote.partition(":")
    backend_cls = BACKENDS.get(kind) if sep else None
    if backend_cls is None:
        raise DatabaseConnectionError(
            f"{remote}: database connection failed (unsupported remote type)"
        )
    return backend_cls(remote, leader_only=leader_only)


__all__ = [
    "Backend",
    "BACKENDS",
    "ColumnSchema",
    "ColumnType",
    "CommitRequest",
    "CommitResult",
    "DataStore",
    "FileBackend",
    "MemoryBackend",
    "NB_SCHEMA",
    "ROW_IDS",
    "RefType",
    "Row",
    "RowIdLookup",
    "SchemaError",
    "Snapshot",
    "TableSchema",
    "Transaction",
    "TxnStatus",
    "find_table",
    "open_backend",
]
