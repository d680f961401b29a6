"""The object every command callback receives.

A CommandContext bundles one BoundCommand with the snapshot, the batch
transaction, the symbol table and the run options of the current attempt.
Commands read rows and queue mutations only through it, and write output
only into the command's own buffer.
"""
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from ..config.settings import RunOptions
from ..db.schema import TableSchema
from ..db.snapshot import Row, Snapshot, Transaction
from .errors import CommandError, ConflictError
from .output import Table
from .symtab import SymbolTable

if TYPE_CHECKING:
    from ..commands.parser import BoundCommand


@dataclass
class CommandContext:
    command: "BoundCommand"
    snapshot: Snapshot
    symtab: SymbolTable
    options: RunOptions
    txn: Optional[Transaction] = None

    # --- Invocation ---

    @property
    def args(self) -> list[str]:
        return self.command.args

    def has_option(self, name: str) -> bool:
        return name in self.command.options

    def option(self, name: str) -> Optional[str]:
        return self.command.options.get(name)

    # --- Output ---

    def write(self, text: str) -> None:
        self.command.output.write(text)

    def set_table(self, headings: list[str]) -> Table:
        self.command.table = Table(headings)
        return self.command.table

    @property
    def output(self) -> str:
        return self.command.output.getvalue()

    def replace_output(self, text: str) -> None:
        self.command.reset()
        self.command.output.write(text)

    # --- Schema and rows ---

    @property
    def schema(self) -> dict[str, TableSchema]:
        return self.snapshot.schema

    def register_column(self, table: str, column: str) -> None:
        self.snapshot.register_column(table, column)

    def rows(self, table: str) -> list[Row]:
        """Rows of ``table`` including this batch's pending changes."""
        if self.txn is not None:
            return self.txn.rows(table)
        return self.snapshot.rows(table)

    def get_row(self, table: str, row_uuid: str) -> Optional[Row]:
        if self.txn is not None:
            return self.txn.get(table, row_uuid)
        return self.snapshot.get(table, row_uuid)

    def first_row(self, table: str) -> Optional[Row]:
        rows = self.rows(table)
        return rows[0] if rows else None

    def follow(self, row: Row, column: str) -> list[Row]:
        """Rows referenced by ``row[column]``.

        Rows deleted earlier in this batch are skipped. A reference that the
        snapshot itself holds to a row it does not have means the snapshot is
        not consistent yet.

        Raises:
            ConflictError: the snapshot references a row it does not contain
        """
        col = self.schema[row.table].column(column)
        targets = []
        for ref in col.references(row.get(column)):
            target = self.get_row(col.ref_table, ref)
            if target is not None:
                targets.append(target)
                continue
            stored = self.snapshot.get(row.table, row.uuid)
            if (stored is not None and ref in col.references(stored.get(column))
                    and self.snapshot.get(col.ref_table, ref) is None):
                raise ConflictError(
                    f"{row.table} row {row.uuid} references missing {col.ref_table} row {ref}"
                )
        return targets

    # --- Mutations (read-write commands only) ---

    @property
    def transaction(self) -> Transaction:
        if self.txn is None:
            raise CommandError(f"'{self.command.name}' needs a transaction")
        return self.txn

    def insert(self, table: str, values: Optional[dict[str, Any]] = None) -> str:
        return self.transaction.insert(table, values)

    def update(self, row: Row, **values: Any) -> None:
        self.transaction.update(row.table, row.uuid, values)

    def delete(self, row: Row) -> None:
        self.transaction.delete(row.table, row.uuid)

    def verify(self, row: Row) -> None:
        self.transaction.verify(row.table, row.uuid)
