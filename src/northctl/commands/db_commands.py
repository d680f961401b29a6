"""Generic database commands that work on any table.

create, list, get, set, add, remove, destroy.
"""
import logging
from typing import Any

from ..db.schema import ColumnSchema, TableSchema, find_table
from ..engine.context import CommandContext
from ..engine.errors import CommandError
from .lookup import get_row
from .registry import AccessMode, Command
from .values import (
    format_atom,
    format_value,
    parse_atom,
    parse_key_value,
    parse_set_arg,
    parse_value,
    split_column_arg,
)

logger = logging.getLogger(__name__)


def _register_columns(ctx: CommandContext, table: TableSchema, args: list[str]) -> None:
    for arg in args:
        column, _, _ = split_column_arg(arg)
        ctx.register_column(table.name, column)


class CreateCommand(Command):
    name = "create"
    min_args = 2
    max_args = None
    options = "--id="
    usage = "create TABLE COLUMN[:KEY]=VALUE..."

    def prerequisites(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        _register_columns(ctx, table, ctx.args[1:])

    def run(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        symbol = ctx.option("--id")
        if symbol is None and not table.is_root:
            logger.warning(
                f"applying \"create\" command to table {table.name} without --id "
                f"option will have no effect"
            )

        values: dict[str, Any] = {}
        for arg in ctx.args[1:]:
            column, value = parse_set_arg(table, arg, ctx.symtab, values)
            values[column] = value

        row_uuid = ctx.insert(table.name, values)
        if symbol is not None:
            ctx.symtab.mark_created(symbol, row_uuid)
            if table.is_root:
                ctx.symtab.mark_strong_ref(symbol)
        ctx.write(f"{row_uuid}\n")

    def postprocess(self, ctx):
        # The output holds the provisional UUID until the commit assigns the real one.
        real = ctx.transaction.get_insert_uuid(ctx.output.strip())
        if real is not None:
            ctx.replace_output(f"{real}\n")


class ListCommand(Command):
    name = "list"
    min_args = 1
    max_args = None
    options = "--columns="
    mode = AccessMode.RO
    usage = "list TABLE [RECORD]..."

    @staticmethod
    def _columns(table: TableSchema, spec) -> list[str]:
        if spec is None:
            return ["_uuid", *table.columns]
        return [c.strip() for c in spec.split(",") if c.strip()]

    def prerequisites(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        for column in self._columns(table, ctx.option("--columns")):
            ctx.register_column(table.name, column)

    def run(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        columns = self._columns(table, ctx.option("--columns"))
        if len(ctx.args) > 1:
            rows = [get_row(ctx, table, record) for record in ctx.args[1:]]
        else:
            rows = ctx.rows(table.name)

        out = ctx.set_table(columns)
        for row in rows:
            out.add_row([format_value(row.get(column)) for column in columns])


class GetCommand(Command):
    name = "get"
    min_args = 2
    max_args = None
    options = "--if-exists"
    mode = AccessMode.RO
    usage = "get TABLE RECORD [COLUMN[:KEY]]..."

    def prerequisites(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        _register_columns(ctx, table, ctx.args[2:])

    def run(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        record = ctx.args[1]
        row = get_row(ctx, table, record, must_exist=not ctx.has_option("--if-exists"))
        if row is None:
            return

        for arg in ctx.args[2:]:
            name, key, value = split_column_arg(arg)
            if value is not None:
                raise CommandError(f"{arg}: \"get\" does not accept a value")
            if name == "_uuid":
                ctx.write(f"{row.uuid}\n")
                continue

            column = table.column(name)
            current = row.get(name)
            if key is None:
                ctx.write(format_value(current) + "\n")
                continue
            if not column.is_map:
                raise CommandError(f"cannot specify key to get for non-map column {name}")
            if key not in current:
                raise CommandError(
                    f"no key \"{key}\" in {table.name} record \"{record}\" column {name}"
                )
            ctx.write(format_atom(current[key]) + "\n")


class SetCommand(Command):
    name = "set"
    min_args = 3
    max_args = None
    usage = "set TABLE RECORD COLUMN[:KEY]=VALUE..."

    def prerequisites(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        _register_columns(ctx, table, ctx.args[2:])

    def run(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        row = get_row(ctx, table, ctx.args[1])
        current = dict(row.data)
        changes = {}
        for arg in ctx.args[2:]:
            column, value = parse_set_arg(table, arg, ctx.symtab, current)
            current[column] = value
            changes[column] = value
        ctx.update(row, **changes)


def _as_list(column: ColumnSchema, value: Any) -> list[Any]:
    if column.is_set:
        return list(value or [])
    return [] if value is None or value == "" else [value]


def _from_list(column: ColumnSchema, table: TableSchema, items: list[Any], op: str) -> Any:
    if column.is_set:
        if column.max is not None and len(items) > column.max:
            raise CommandError(
                f"\"{op}\" operation would put {len(items)} values in column {column.name} "
                f"of table {table.name} but the maximum number is {column.max}"
            )
        if len(items) < column.min:
            raise CommandError(
                f"\"{op}\" operation would put {len(items)} values in column {column.name} "
                f"of table {table.name} but the minimum number is {column.min}"
            )
        return items
    if len(items) > 1:
        raise CommandError(
            f"\"{op}\" operation would put {len(items)} values in column {column.name} "
            f"of table {table.name} but the maximum number is 1"
        )
    if not items:
        if not column.is_optional:
            raise CommandError(
                f"\"{op}\" operation would put 0 values in column {column.name} "
                f"of table {table.name} but the minimum number is 1"
            )
        return None
    return items[0]


class AddCommand(Command):
    name = "add"
    min_args = 4
    max_args = None
    usage = "add TABLE RECORD COLUMN [KEY=]VALUE..."

    def prerequisites(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        ctx.register_column(table.name, ctx.args[2])

    def run(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        row = get_row(ctx, table, ctx.args[1])
        column = table.column(ctx.args[2])
        current = row.get(column.name)

        if column.is_map:
            new_map = dict(current or {})
            for item in ctx.args[3:]:
                key, value = parse_key_value(item, column, ctx.symtab)
                new_map.setdefault(key, value)
            ctx.update(row, **{column.name: new_map})
            return

        items = _as_list(column, current)
        for item in ctx.args[3:]:
            if column.is_set:
                parsed = parse_value(item, column, ctx.symtab)
            else:
                parsed = [parse_atom(item, column.type, column, ctx.symtab)]
            items.extend(v for v in parsed if v not in items)
        ctx.update(row, **{column.name: _from_list(column, table, items, "add")})


class RemoveCommand(Command):
    name = "remove"
    min_args = 4
    max_args = None
    usage = "remove TABLE RECORD COLUMN KEY|VALUE|KEY=VALUE..."

    def prerequisites(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        ctx.register_column(table.name, ctx.args[2])

    def run(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        row = get_row(ctx, table, ctx.args[1])
        column = table.column(ctx.args[2])
        current = row.get(column.name)

        if column.is_map:
            new_map = dict(current or {})
            for item in ctx.args[3:]:
                if "=" in item:
                    key, value = parse_key_value(item, column, ctx.symtab)
                    if new_map.get(key) == value:
                        del new_map[key]
                else:
                    new_map.pop(parse_atom(item, column.key_type), None)
            ctx.update(row, **{column.name: new_map})
            return

        items = _as_list(column, current)
        for item in ctx.args[3:]:
            if column.is_set:
                doomed = parse_value(item, column, ctx.symtab)
            else:
                doomed = [parse_atom(item, column.type, column, ctx.symtab)]
            items = [v for v in items if v not in doomed]
        ctx.update(row, **{column.name: _from_list(column, table, items, "remove")})


class DestroyCommand(Command):
    name = "destroy"
    min_args = 1
    max_args = None
    options = "--if-exists,--all"
    usage = "destroy TABLE [RECORD]..."

    def prerequisites(self, ctx):
        find_table(ctx.args[0], ctx.schema)

    def run(self, ctx):
        table = find_table(ctx.args[0], ctx.schema)
        records = ctx.args[1:]
        if ctx.has_option("--all"):
            if records:
                raise CommandError("--all and records argument should not be specified together")
            for row in ctx.rows(table.name):
                ctx.delete(row)
            return
        if not records:
            raise CommandError("either --all or records argument should be specified")

        if_exists = ctx.has_option("--if-exists")
        for record in records:
            row = get_row(ctx, table, record, must_exist=not if_exists)
            if row is not None:
                ctx.delete(row)


DB_COMMANDS = (
    CreateCommand,
    ListCommand,
    GetCommand,
    SetCommand,
    AddCommand,
    RemoveCommand,
    DestroyCommand,
)
