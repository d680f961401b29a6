"""Authoritative row store and the optimistic commit algorithm.

A DataStore is what a backend serves: the current rows, a version number per
row and a monotonically increasing sequence number. Clients never mutate it
directly; they send a CommitRequest built by a Transaction and get back a
CommitResult.
"""
import copy
import logging
import uuid as uuid_lib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .schema import NB_SCHEMA, RefType, TableSchema

logger = logging.getLogger(__name__)

RowKey = tuple[str, str]  # (table, uuid)


class TxnStatus(str, Enum):
    """Outcome of a transaction commit."""
    UNCOMMITTED = "uncommitted"
    UNCHANGED = "unchanged"
    SUCCESS = "success"
    TRY_AGAIN = "try again"
    ERROR = "error"
    ABORTED = "aborted"


@dataclass
class CommitRequest:
    """Everything a transaction proposes, relative to the rows it has seen."""
    inserts: dict[RowKey, dict[str, Any]] = field(default_factory=dict)
    updates: dict[RowKey, dict[str, Any]] = field(default_factory=dict)
    deletes: set[RowKey] = field(default_factory=set)
    verified: dict[RowKey, int] = field(default_factory=dict)
    increment: Optional[tuple[str, str, str]] = None  # (table, uuid, column)
    force_increment: bool = False
    dry_run: bool = False
    comment: str = ""


@dataclass
class CommitResult:
    """Result of DataStore.commit()."""
    status: TxnStatus
    seqno: int = 0
    increment_value: Optional[int] = None
    insert_uuids: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


class DataStore:
    """In-memory authoritative copy of the database."""

    def __init__(self, schema: Optional[dict[str, TableSchema]] = None):
        self.schema = schema or NB_SCHEMA
        self.seqno = 0
        self.tables: dict[str, dict[str, dict[str, Any]]] = {
            name: {} for name in self.schema
        }
        self.versions: dict[RowKey, int] = {}

    # --- Serialization ---

    def export(self) -> tuple[int, dict[str, dict[str, dict[str, Any]]], dict[RowKey, int]]:
        """Deep copy of (seqno, tables, versions) for a client snapshot."""
        return self.seqno, copy.deepcopy(self.tables), dict(self.versions)

    def to_dict(self) -> dict:
        return {
            "seqno": self.seqno,
            "tables": self.tables,
            "versions": {f"{t}:{u}": v for (t, u), v in self.versions.items()},
        }

    @classmethod
    def from_dict(cls, data: dict, schema: Optional[dict[str, TableSchema]] = None) -> "DataStore":
        store = cls(schema)
        store.seqno = data.get("seqno", 0)
        for name, rows in data.get("tables", {}).items():
            if name in store.tables:
                store.tables[name] = rows
        for key, version in data.get("versions", {}).items():
            table, _, row_uuid = key.partition(":")
            store.versions[(table, row_uuid)] = version
        return store

    # --- Direct writes (the server side, e.g. downstream consumers) ---

    def insert_row(self, table: str, values: Optional[dict[str, Any]] = None) -> str:
        """Insert a row outside of any client transaction."""
        row_uuid = str(uuid_lib.uuid4())
        row = self.schema[table].default_row()
        row.update(values or {})
        self.seqno += 1
        self.tables[table][row_uuid] = row
        self.versions[(table, row_uuid)] = self.seqno
        return row_uuid

    def update_row(self, table: str, row_uuid: str, values: dict[str, Any]) -> None:
        """Update a row outside of any client transaction."""
        row = dict(self.tables[table][row_uuid])
        row.update(values)
        self.seqno += 1
        self.tables[table][row_uuid] = row
        self.versions[(table, row_uuid)] = self.seqno

    # --- Commit ---

    def commit(self, request: CommitRequest) -> CommitResult:
        """Apply a transaction atomically or report why it cannot be applied."""
        for key, version in request.verified.items():
            if self.versions.get(key) != version:
                logger.debug(f"Row {key[0]} {key[1]} changed since it was read, try again")
                return CommitResult(TxnStatus.TRY_AGAIN, seqno=self.seqno)

        tables = {name: dict(rows) for name, rows in self.tables.items()}
        changed: set[RowKey] = set()
        mapping = {row_uuid: str(uuid_lib.uuid4()) for (_, row_uuid) in request.inserts}

        def remap(value: Any) -> Any:
            if isinstance(value, str):
                return mapping.get(value, value)
            if isinstance(value, list):
                return [remap(v) for v in value]
            if isinstance(value, dict):
                return {k: remap(v) for k, v in value.items()}
            return value

        for (table, row_uuid), values in request.inserts.items():
            row = self.schema[table].default_row()
            row.update({col: remap(val) for col, val in values.items()})
            new_uuid = mapping[row_uuid]
            tables[table][new_uuid] = row
            changed.add((table, new_uuid))

        for (table, row_uuid), values in request.updates.items():
            if (table, row_uuid) in request.deletes or row_uuid not in tables[table]:
                continue
            current = tables[table][row_uuid]
            row = dict(current)
            row.update({col: remap(val) for col, val in values.items()})
            if row != current:
                tables[table][row_uuid] = row
                changed.add((table, row_uuid))

        for table, row_uuid in request.deletes:
            if tables[table].pop(row_uuid, None) is not None:
                changed.add((table, row_uuid))

        increment_value = None
        if request.increment and (changed or request.force_increment):
            table, row_uuid, column = request.increment
            row_uuid = mapping.get(row_uuid, row_uuid)
            if row_uuid in tables[table]:
                row = dict(tables[table][row_uuid])
                increment_value = (row.get(column) or 0) + 1
                row[column] = increment_value
                tables[table][row_uuid] = row
                changed.add((table, row_uuid))
            else:
                logger.debug(f"Row {table} {row_uuid} deleted in this transaction, not incrementing {column}")

        if not changed:
            return CommitResult(TxnStatus.UNCHANGED, seqno=self.seqno)

        error = self._check_integrity(tables)
        if error:
            return CommitResult(TxnStatus.ERROR, seqno=self.seqno, error=error)

        changed |= self._collect_garbage(tables)

        if request.dry_run:
            logger.debug("Dry run, not applying transaction")
            return CommitResult(TxnStatus.SUCCESS, seqno=self.seqno, insert_uuids=mapping)

        self.seqno += 1
        self.tables = tables
        for key in changed:
            if key[1] in tables[key[0]]:
                self.versions[key] = self.seqno
            else:
                self.versions.pop(key, None)

        if request.comment:
            logger.debug(f"Committed seqno {self.seqno}: {request.comment}")

        return CommitResult(
            TxnStatus.SUCCESS,
            seqno=self.seqno,
            increment_value=increment_value,
            insert_uuids=mapping,
        )

    def _check_integrity(self, tables: dict[str, dict[str, dict[str, Any]]]) -> Optional[str]:
        """Return an error for row-count or strong-reference violations."""
        for name, table in self.schema.items():
            if table.max_rows is not None and len(tables[name]) > table.max_rows:
                return f"too many rows in table {name}"

            for row_uuid, row in tables[name].items():
                for col in table.columns.values():
                    if not col.ref_table or col.ref_type != RefType.STRONG:
                        continue
                    for ref in col.references(row.get(col.name)):
                        if ref not in tables[col.ref_table]:
                            return (
                                f"referential integrity violation: row {row_uuid} in table "
                                f"{name} column {col.name} references nonexistent row {ref} "
                                f"in table {col.ref_table}"
                            )
        return None

    def _collect_garbage(self, tables: dict[str, dict[str, dict[str, Any]]]) -> set[RowKey]:
        """Drop non-root rows nothing strongly references, then dangling weak refs."""
        removed: set[RowKey] = set()

        while True:
            referenced: set[RowKey] = set()
            for name, table in self.schema.items():
                for row in tables[name].values():
                    for col in table.columns.values():
                        if col.ref_table and col.ref_type == RefType.STRONG:
                            referenced.update(
                                (col.ref_table, ref) for ref in col.references(row.get(col.name))
                            )

            orphans = [
                (name, row_uuid)
                for name, table in self.schema.items() if not table.is_root
                for row_uuid in tables[name]
                if (name, row_uuid) not in referenced
            ]
            if not orphans:
                break
            for name, row_uuid in orphans:
                del tables[name][row_uuid]
                removed.add((name, row_uuid))

        for name, table in self.schema.items():
            weak_cols = [c for c in table.columns.values()
                         if c.ref_table and c.ref_type == RefType.WEAK]
            for row_uuid, row in list(tables[name].items()):
                pruned = dict(row)
                for col in weak_cols:
                    pruned[col.name] = _prune(col, row.get(col.name), tables[col.ref_table])
                if pruned != row:
                    tables[name][row_uuid] = pruned
                    removed.add((name, row_uuid))

        if removed:
            logger.debug(f"Garbage collected or pruned {len(removed)} rows")
        return removed


def _prune(col, value: Any, targets: dict[str, Any]) -> Any:
    """Remove references to rows missing from ``targets``."""
    if value is None:
        return None
    if col.is_map:
        return {k: v for k, v in value.items() if v in targets}
    if col.is_set:
        return [v for v in value if v in targets]
    return value if value in targets else None
