"""Find a row from a user-supplied record identifier.

A record is a UUID, an ``@symbol`` created earlier in the batch, or a name
resolved through the ROW_IDS strategies of its table (first strategy with a
match wins).
"""
import uuid as uuid_lib
from typing import Optional

from ..db.schema import ROW_IDS, RowIdLookup, TableSchema
from ..db.snapshot import Row
from ..engine.context import CommandContext
from ..engine.errors import CommandError, RowNotFoundError


def is_uuid(text: str) -> bool:
    try:
        uuid_lib.UUID(text)
    except ValueError:
        return False
    return True


def _matches(row: Row, lookup: RowIdLookup, record: str) -> bool:
    value = row.get(lookup.name_column)
    if lookup.key is not None:
        return isinstance(value, dict) and value.get(lookup.key) == record
    if isinstance(value, list):
        return record in value
    return value == record


def _by_strategy(ctx: CommandContext, table: TableSchema, lookup: RowIdLookup,
                 record: str) -> Optional[Row]:
    matches = [row for row in ctx.rows(lookup.table) if _matches(row, lookup, record)]
    if len(matches) > 1:
        raise CommandError(f"multiple rows in {lookup.table} match \"{record}\"")
    if not matches:
        return None

    row = matches[0]
    if lookup.ref_column is None:
        return row
    target = row.get(lookup.ref_column)
    if isinstance(target, list):
        target = target[0] if target else None
    return ctx.get_row(table.name, target) if target else None


def get_row(ctx: CommandContext, table: TableSchema, record: str,
            must_exist: bool = True) -> Optional[Row]:
    """Resolve ``record`` to a row of ``table``.

    Raises:
        RowNotFoundError: no match and ``must_exist``
        CommandError: the record is ambiguous
    """
    row = None
    if record.startswith("@"):
        symbol = ctx.symtab.get(record)
        if symbol is not None and symbol.created:
            row = ctx.get_row(table.name, symbol.uuid)
    elif is_uuid(record):
        row = ctx.get_row(table.name, str(uuid_lib.UUID(record)))

    if row is None:
        for lookup in ROW_IDS.get(table.name, []):
            row = _by_strategy(ctx, table, lookup, record)
            if row is not None:
                break

    if row is None and must_exist:
        raise RowNotFoundError(f"no row \"{record}\" in table {table.name}")
    return row


def get_named_row(ctx: CommandContext, table: str, record: str, kind: str,
                  must_exist: bool = True) -> Optional[Row]:
    """Look up an entity by UUID or by its ``name`` column.

    ``kind`` names the entity in errors, e.g. "switch" or "port group".
    """
    if is_uuid(record):
        row = ctx.get_row(table, str(uuid_lib.UUID(record)))
        if row is not None:
            return row

    matches = [row for row in ctx.rows(table) if row.get("name") == record]
    if len(matches) > 1:
        raise CommandError(
            f"Multiple {_plural(kind)} named '{record}'.  Use a UUID."
        )
    if matches:
        return matches[0]
    if must_exist:
        raise RowNotFoundError(f"{record}: {kind} name not found")
    return None


def _plural(kind: str) -> str:
    return {
        "switch": "logical switches",
        "router": "logical routers",
        "port": "logical ports",
        "port group": "port groups",
    }.get(kind, kind + "s")
