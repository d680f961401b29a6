"""Schema definitions for the northbound database.

Describes tables, column types and references, plus the row-id lookup table
used to resolve a user-supplied name to a row.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..engine.errors import NorthctlError


class SchemaError(NorthctlError, ValueError):
    """Unknown or ambiguous table or column name."""
    pass


class ColumnType(str, Enum):
    """Atomic type of a column, a set element or a map value."""
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    UUID = "uuid"


class RefType(str, Enum):
    """Whether a reference keeps the referenced row alive."""
    STRONG = "strong"
    WEAK = "weak"


@dataclass(frozen=True)
class ColumnSchema:
    """A single column.

    ``min``/``max`` follow OVSDB conventions: (1, 1) is a plain scalar,
    (0, 1) an optional scalar, anything with ``max`` other than 1 is a set.
    Maps have a ``key_type``; ``type`` is then the value type.
    """
    name: str
    type: ColumnType = ColumnType.STRING
    key_type: Optional[ColumnType] = None
    min: int = 1
    max: Optional[int] = 1  # None = unlimited
    ref_table: Optional[str] = None
    ref_type: RefType = RefType.STRONG

    @property
    def is_map(self) -> bool:
        return self.key_type is not None

    @property
    def is_set(self) -> bool:
        return not self.is_map and self.max != 1

    @property
    def is_optional(self) -> bool:
        return not self.is_map and self.min == 0 and self.max == 1

    def default(self) -> Any:
        """Value of the column in a freshly inserted row."""
        if self.is_map:
            return {}
        if self.is_set:
            return []
        if self.is_optional or self.type == ColumnType.UUID:
            return None
        return {
            ColumnType.STRING: "",
            ColumnType.INTEGER: 0,
            ColumnType.BOOLEAN: False,
        }[self.type]

    def references(self, value: Any) -> list[str]:
        """UUIDs referenced by ``value`` if this is a reference column."""
        if not self.ref_table or value is None:
            return []
        if self.is_map:
            return [v for v in value.values() if v]
        if self.is_set:
            return [v for v in value if v]
        return [value]


@dataclass(frozen=True)
class TableSchema:
    """A table: its columns and whether rows survive without references."""
    name: str
    columns: dict[str, ColumnSchema] = field(default_factory=dict)
    is_root: bool = True
    max_rows: Optional[int] = None

    def column(self, name: str) -> ColumnSchema:
        """Find a column by exact name."""
        try:
            return self.columns[name]
        except KeyError:
            raise SchemaError(f"{self.name} does not contain a column whose name matches \"{name}\"")

    def default_row(self) -> dict[str, Any]:
        return {name: col.default() for name, col in self.columns.items()}


@dataclass(frozen=True)
class RowIdLookup:
    """One strategy for finding a row by a user-supplied identifier.

    Rows of ``table`` are matched on ``name_column`` (or on ``name_column[key]``
    when the column is a map). If ``ref_column`` is set, the matched row's
    reference in that column is followed to reach the target row.
    """
    table: str
    name_column: str
    key: Optional[str] = None
    ref_column: Optional[str] = None


def _columns(*cols: ColumnSchema) -> dict[str, ColumnSchema]:
    return {c.name: c for c in cols}


def _string_map(name: str) -> ColumnSchema:
    return ColumnSchema(name, key_type=ColumnType.STRING, min=0, max=None)


def _ref_set(name: str, table: str, ref_type: RefType = RefType.STRONG) -> ColumnSchema:
    return ColumnSchema(name, ColumnType.UUID, min=0, max=None, ref_table=table, ref_type=ref_type)


NB_SCHEMA: dict[str, TableSchema] = {
    t.name: t for t in (
        TableSchema("NB_Global", _columns(
            ColumnSchema("nb_cfg", ColumnType.INTEGER),
            ColumnSchema("sb_cfg", ColumnType.INTEGER),
            ColumnSchema("hv_cfg", ColumnType.INTEGER),
            _string_map("external_ids"),
            _string_map("options"),
        ), max_rows=1),
        TableSchema("Logical_Switch", _columns(
            ColumnSchema("name"),
            _ref_set("ports", "Logical_Switch_Port"),
            _ref_set("acls", "ACL"),
            _string_map("other_config"),
            _string_map("external_ids"),
        )),
        TableSchema("Logical_Switch_Port", _columns(
            ColumnSchema("name"),
            ColumnSchema("type"),
            ColumnSchema("addresses", min=0, max=None),
            ColumnSchema("port_security", min=0, max=None),
            ColumnSchema("enabled", ColumnType.BOOLEAN, min=0, max=1),
            ColumnSchema("up", ColumnType.BOOLEAN, min=0, max=1),
            _string_map("options"),
            ColumnSchema("dhcpv4_options", ColumnType.UUID, min=0, max=1,
                         ref_table="DHCP_Options", ref_type=RefType.WEAK),
            _string_map("external_ids"),
        ), is_root=False),
        TableSchema("Logical_Router", _columns(
            ColumnSchema("name"),
            _ref_set("ports", "Logical_Router_Port"),
            ColumnSchema("enabled", ColumnType.BOOLEAN, min=0, max=1),
            _string_map("external_ids"),
        )),
        TableSchema("Logical_Router_Port", _columns(
            ColumnSchema("name"),
            ColumnSchema("mac"),
            ColumnSchema("networks", min=1, max=None),
            ColumnSchema("enabled", ColumnType.BOOLEAN, min=0, max=1),
            _string_map("external_ids"),
        ), is_root=False),
        TableSchema("ACL", _columns(
            ColumnSchema("name", min=0, max=1),
            ColumnSchema("direction"),
            ColumnSchema("priority", ColumnType.INTEGER),
            ColumnSchema("match"),
            ColumnSchema("action"),
            ColumnSchema("log", ColumnType.BOOLEAN),
            ColumnSchema("severity", min=0, max=1),
            _string_map("external_ids"),
        ), is_root=False),
        TableSchema("Address_Set", _columns(
            ColumnSchema("name"),
            ColumnSchema("addresses", min=0, max=None),
            _string_map("external_ids"),
        )),
        TableSchema("Port_Group", _columns(
            ColumnSchema("name"),
            _ref_set("ports", "Logical_Switch_Port", RefType.WEAK),
            _ref_set("acls", "ACL"),
            _string_map("external_ids"),
        )),
        TableSchema("DHCP_Options", _columns(
            ColumnSchema("cidr"),
            _string_map("options"),
            _string_map("external_ids"),
        )),
    )
}


# Ordered lookup strategies per table, first match wins.
ROW_IDS: dict[str, list[RowIdLookup]] = {
    "Logical_Switch": [
        RowIdLookup("Logical_Switch", "name"),
        RowIdLookup("Logical_Switch", "external_ids", key="neutron:network_name"),
    ],
    "Logical_Switch_Port": [
        RowIdLookup("Logical_Switch_Port", "name"),
        RowIdLookup("Logical_Switch_Port", "external_ids", key="neutron:port_name"),
    ],
    "Logical_Router": [
        RowIdLookup("Logical_Router", "name"),
        RowIdLookup("Logical_Router", "external_ids", key="neutron:router_name"),
    ],
    "Logical_Router_Port": [RowIdLookup("Logical_Router_Port", "name")],
    "Address_Set": [RowIdLookup("Address_Set", "name")],
    "Port_Group": [RowIdLookup("Port_Group", "name")],
    "ACL": [RowIdLookup("ACL", "name")],
    "DHCP_Options": [
        RowIdLookup("Logical_Switch_Port", "name", ref_column="dhcpv4_options"),
        RowIdLookup("Logical_Switch_Port", "external_ids", key="neutron:port_name",
                    ref_column="dhcpv4_options"),
    ],
}


def find_table(name: str, schema: dict[str, TableSchema] = NB_SCHEMA) -> TableSchema:
    """Find a table by case-insensitive name or unique case-insensitive prefix."""
    lowered = name.lower()
    for table in schema.values():
        if table.name.lower() == lowered:
            return table

    matches = [t for t in schema.values() if t.name.lower().startswith(lowered)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise SchemaError(f"unknown table \"{name}\"")
    raise SchemaError(f"multiple table names match \"{name}\"")
