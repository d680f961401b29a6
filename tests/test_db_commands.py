"""Tests for the generic database commands and value syntax."""
import pytest

from northctl.db import NB_SCHEMA, SchemaError, find_table
from northctl.engine.errors import CommandError
from northctl.engine.symtab import SymbolTable
from northctl.commands.values import (
    format_value,
    parse_set_arg,
    parse_value,
    split_column_arg,
    split_items,
)


class TestFindTable:
    """Tests for table name matching."""

    def test_case_insensitive(self):
        assert find_table("logical_switch").name == "Logical_Switch"

    def test_unique_prefix(self):
        assert find_table("nb_g").name == "NB_Global"

    def test_ambiguous_prefix(self):
        with pytest.raises(SchemaError, match="multiple table names match"):
            find_table("Logical_")

    def test_unknown(self):
        with pytest.raises(SchemaError, match="unknown table"):
            find_table("Bridge")


class TestValues:
    """Tests for column value parsing and formatting."""

    def test_split_column_arg(self):
        assert split_column_arg("external_ids:a=b") == ("external_ids", "a", "b")
        assert split_column_arg("name") == ("name", None, None)

    def test_split_items_respects_quotes(self):
        assert split_items('a, "b,c", d') == ["a", '"b,c"', "d"]

    def test_parse_map(self):
        column = NB_SCHEMA["Logical_Switch"].column("external_ids")
        assert parse_value("{a=b, c=\"d e\"}", column) == {"a": "b", "c": "d e"}

    def test_parse_set_dedups(self):
        column = NB_SCHEMA["Logical_Switch_Port"].column("addresses")
        assert parse_value("[a, b, a]", column) == ["a", "b"]

    def test_parse_optional(self):
        column = NB_SCHEMA["Logical_Switch_Port"].column("enabled")
        assert parse_value("[]", column) is None
        assert parse_value("true", column) is True

    def test_parse_integer_error(self):
        column = NB_SCHEMA["ACL"].column("priority")
        with pytest.raises(CommandError, match="is not a valid integer"):
            parse_value("high", column)

    def test_set_single_map_key(self):
        table = NB_SCHEMA["Logical_Switch"]
        current = {"external_ids": {"a": "1"}}
        assert parse_set_arg(table, "external_ids:b=2", None, current) == (
            "external_ids", {"a": "1", "b": "2"}
        )

    def test_symbol_in_value(self):
        symtab = SymbolTable()
        symtab.mark_created("@p", "8c3b1a47-8d9e-4d07-9d6a-2b5b1f7f0c11")
        column = NB_SCHEMA["Logical_Switch"].column("ports")
        assert parse_value("[@p]", column, symtab) == ["8c3b1a47-8d9e-4d07-9d6a-2b5b1f7f0c11"]

    def test_format(self):
        assert format_value(None) == "[]"
        assert format_value(["b", "a"]) == "[a, b]"
        assert format_value({"k": "v w"}) == '{k="v w"}'
        assert format_value(True) == "true"
        assert format_value("true") == '"true"'


class TestDbCommands:
    """Tests for create, list, get, set, add, remove and destroy."""

    @pytest.mark.asyncio
    async def test_create_prints_uuid(self, run, backend):
        output = await run("create", "Address_Set", "name=as0", "addresses=[10.0.0.1]")
        row_uuid = output.strip()
        assert backend.store.tables["Address_Set"][row_uuid]["addresses"] == ["10.0.0.1"]

    @pytest.mark.asyncio
    async def test_get(self, run):
        await run("create", "Address_Set", "name=as0", "external_ids={owner=me}")
        assert await run("get", "Address_Set", "as0", "name", "external_ids:owner") == "as0\nme\n"

    @pytest.mark.asyncio
    async def test_get_missing_key(self, run):
        await run("create", "Address_Set", "name=as0")
        with pytest.raises(CommandError, match="no key \"x\" in Address_Set record \"as0\" column external_ids"):
            await run("get", "Address_Set", "as0", "external_ids:x")

    @pytest.mark.asyncio
    async def test_get_if_exists(self, run):
        assert await run("--if-exists", "get", "Address_Set", "nope", "name") == ""
        with pytest.raises(CommandError, match="no row \"nope\" in table Address_Set"):
            await run("get", "Address_Set", "nope", "name")

    @pytest.mark.asyncio
    async def test_set_and_list(self, run):
        await run("ls-add", "sw0")
        await run("set", "Logical_Switch", "sw0", "external_ids:owner=me", "other_config={a=b}")
        output = await run("list", "Logical_Switch", "--columns=name,external_ids,other_config")
        assert output == (
            "name         : sw0\n"
            "external_ids : {owner=me}\n"
            "other_config : {a=b}\n"
        )

    @pytest.mark.asyncio
    async def test_lookup_by_external_id(self, run):
        await run("ls-add", "sw0", "--", "set", "Logical_Switch", "sw0",
                  "external_ids:neutron:network_name=net1")
        assert await run("get", "Logical_Switch", "net1", "name") == "sw0\n"

    @pytest.mark.asyncio
    async def test_add_and_remove(self, run, backend):
        await run("create", "Address_Set", "name=as0")
        await run("add", "Address_Set", "as0", "addresses", "10.0.0.1", "10.0.0.2")
        await run("add", "Address_Set", "as0", "addresses", "10.0.0.1")
        [row] = backend.store.tables["Address_Set"].values()
        assert row["addresses"] == ["10.0.0.1", "10.0.0.2"]

        await run("remove", "Address_Set", "as0", "addresses", "10.0.0.1")
        [row] = backend.store.tables["Address_Set"].values()
        assert row["addresses"] == ["10.0.0.2"]

    @pytest.mark.asyncio
    async def test_map_add_keeps_existing(self, run, backend):
        await run("create", "Address_Set", "name=as0", "external_ids={a=1}")
        await run("add", "Address_Set", "as0", "external_ids", "a=2", "b=3")
        await run("remove", "Address_Set", "as0", "external_ids", "b")
        [row] = backend.store.tables["Address_Set"].values()
        assert row["external_ids"] == {"a": "1"}

    @pytest.mark.asyncio
    async def test_remove_below_minimum(self, run):
        await run("create", "Logical_Router", "name=lr0")
        await run("--id=@rp", "create", "Logical_Router_Port", "name=rp0", "mac=00:00:00:00:00:01",
                  "networks=[10.0.0.1/24]",
                  "--", "add", "Logical_Router", "lr0", "ports", "@rp")
        with pytest.raises(CommandError, match="but the minimum number is 1"):
            await run("remove", "Logical_Router_Port", "rp0", "networks", "10.0.0.1/24")

    @pytest.mark.asyncio
    async def test_destroy(self, run, backend):
        await run("create", "Address_Set", "name=a", "--", "create", "Address_Set", "name=b")
        await run("destroy", "Address_Set", "a")
        assert [r["name"] for r in backend.store.tables["Address_Set"].values()] == ["b"]
        await run("--if-exists", "destroy", "Address_Set", "a")
        await run("--all", "destroy", "Address_Set")
        assert backend.store.tables["Address_Set"] == {}

    @pytest.mark.asyncio
    async def test_destroy_needs_records(self, run):
        with pytest.raises(CommandError, match="either --all or records argument should be specified"):
            await run("destroy", "Address_Set")

    @pytest.mark.asyncio
    async def test_unknown_column(self, run):
        await run("ls-add", "sw0")
        with pytest.raises(SchemaError, match="does not contain a column whose name matches \"bogus\""):
            await run("set", "Logical_Switch", "sw0", "bogus=1")
