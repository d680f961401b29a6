"""Column value syntax used on the command line.

    name=sw0                 string (bare or JSON-quoted)
    priority=100             integer
    enabled=true             boolean
    ports=[@p0, @p1]         set, elements may be @symbols or UUIDs
    external_ids={a=b, c=d}  map
    external_ids:a=b         one key of a map
"""
import json
import re
import uuid as uuid_lib
from typing import Any, Optional

from ..db.schema import ColumnSchema, ColumnType, RefType, TableSchema
from ..engine.errors import CommandError
from ..engine.symtab import SymbolTable

BARE_STRING = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")


def split_column_arg(arg: str) -> tuple[str, Optional[str], Optional[str]]:
    """Split ``col[:key][=value]`` into (column, key, value)."""
    left, sep, value = arg.partition("=")
    column, ksep, key = left.partition(":")
    if not column:
        raise CommandError(f"\"{arg}\": missing column name")
    return column, (key if ksep else None), (value if sep else None)


def split_items(text: str) -> list[str]:
    """Split on commas that are outside double quotes."""
    items, current, quoted, escaped = [], [], False, False
    for ch in text:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\" and quoted:
            current.append(ch)
            escaped = True
        elif ch == '"':
            current.append(ch)
            quoted = not quoted
        elif ch == "," and not quoted:
            items.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if quoted:
        raise CommandError(f"{text}: unterminated quoted string")
    tail = "".join(current).strip()
    if tail or items:
        items.append(tail)
    return [item for item in items if item]


def parse_atom(text: str, atom_type: ColumnType, column: Optional[ColumnSchema] = None,
               symtab: Optional[SymbolTable] = None) -> Any:
    """Parse one scalar of ``atom_type``."""
    text = text.strip()
    if atom_type == ColumnType.STRING:
        if text.startswith('"'):
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                raise CommandError(f"{text}: invalid quoted string")
        return text

    if atom_type == ColumnType.INTEGER:
        try:
            return int(text)
        except ValueError:
            raise CommandError(f"\"{text}\" is not a valid integer")

    if atom_type == ColumnType.BOOLEAN:
        if text in ("true", "false"):
            return text == "true"
        raise CommandError(f"\"{text}\" is not a valid boolean (use \"true\" or \"false\")")

    if text.startswith("@"):
        if symtab is None:
            raise CommandError(f"row id \"{text}\" cannot be used here")
        strong = column is None or column.ref_type == RefType.STRONG
        return symtab.reference(text, strong=strong)
    try:
        return str(uuid_lib.UUID(text))
    except ValueError:
        raise CommandError(f"\"{text}\" is not a valid UUID")


def parse_key_value(text: str, column: ColumnSchema, symtab: Optional[SymbolTable] = None) -> tuple[Any, Any]:
    key, sep, value = text.partition("=")
    if not sep:
        raise CommandError(f"\"{text}\": map entries must be written as KEY=VALUE")
    return (
        parse_atom(key, column.key_type or ColumnType.STRING),
        parse_atom(value, column.type, column, symtab),
    )


def parse_value(text: str, column: ColumnSchema, symtab: Optional[SymbolTable] = None) -> Any:
    """Parse the full value of ``column``."""
    text = text.strip()
    if column.is_map:
        body = text[1:-1] if text.startswith("{") and text.endswith("}") else text
        return dict(parse_key_value(item, column, symtab) for item in split_items(body))

    if column.is_set or column.is_optional:
        if text.startswith("[") and text.endswith("]"):
            items = [parse_atom(i, column.type, column, symtab) for i in split_items(text[1:-1])]
        else:
            items = [parse_atom(text, column.type, column, symtab)]
        if column.is_optional:
            if len(items) > 1:
                raise CommandError(f"column {column.name} takes at most one value")
            return items[0] if items else None
        if column.max is not None and len(items) > column.max:
            raise CommandError(f"column {column.name} takes at most {column.max} values")
        return _dedup(items)

    return parse_atom(text, column.type, column, symtab)


def parse_set_arg(table: TableSchema, arg: str, symtab: Optional[SymbolTable] = None,
                  current: Optional[dict[str, Any]] = None) -> tuple[str, Any]:
    """Parse ``col[:key]=value`` into (column, new full column value).

    ``current`` supplies the row's existing map when a single key is set.
    """
    name, key, value = split_column_arg(arg)
    if value is None:
        raise CommandError(f"{arg}: argument does not end in \"=\" followed by a value")
    column = table.column(name)
    if key is None:
        return name, parse_value(value, column, symtab)
    if not column.is_map:
        raise CommandError(f"cannot specify key to set for non-map column {name}")
    new_map = dict((current or {}).get(name) or {})
    new_map[parse_atom(key, column.key_type)] = parse_atom(value, column.type, column, symtab)
    return name, new_map


def _dedup(items: list[Any]) -> list[Any]:
    seen: list[Any] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def format_atom(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    text = str(value)
    if _is_uuid(text) or (BARE_STRING.match(text) and text not in ("true", "false")):
        return text
    return json.dumps(text)


def format_value(value: Any) -> str:
    """Render a column value the way it is accepted on input."""
    if value is None:
        return "[]"
    if isinstance(value, dict):
        return "{" + ", ".join(
            f"{format_atom(k)}={format_atom(v)}" for k, v in sorted(value.items())
        ) + "}"
    if isinstance(value, list):
        return "[" + ", ".join(format_atom(v) for v in sorted(value, key=str)) + "]"
    return format_atom(value)


def _is_uuid(text: str) -> bool:
    try:
        return str(uuid_lib.UUID(text)) == text
    except ValueError:
        return False
