"""Tests for the DataStore commit algorithm and the backends."""
import json

import pytest

from northctl.db import (
    CommitRequest,
    DataStore,
    FileBackend,
    MemoryBackend,
    Snapshot,
    TxnStatus,
    open_backend,
)
from northctl.engine.errors import DatabaseConnectionError


class TestDataStoreCommit:
    """Tests for DataStore.commit()."""

    def test_insert_assigns_permanent_uuids(self):
        store = DataStore()
        result = store.commit(CommitRequest(inserts={("Logical_Switch", "tmp-1"): {"name": "sw0"}}))
        assert result.status == TxnStatus.SUCCESS
        real = result.insert_uuids["tmp-1"]
        assert real != "tmp-1"
        assert store.tables["Logical_Switch"][real]["name"] == "sw0"
        assert store.seqno == 1

    def test_references_to_new_rows_are_remapped(self):
        store = DataStore()
        result = store.commit(CommitRequest(inserts={
            ("Logical_Switch_Port", "tmp-p"): {"name": "p0"},
            ("Logical_Switch", "tmp-s"): {"name": "sw0", "ports": ["tmp-p"]},
        }))
        port = result.insert_uuids["tmp-p"]
        switch = result.insert_uuids["tmp-s"]
        assert store.tables["Logical_Switch"][switch]["ports"] == [port]

    def test_no_change(self):
        store = DataStore()
        row = store.insert_row("Logical_Switch", {"name": "sw0"})
        result = store.commit(CommitRequest(updates={("Logical_Switch", row): {"name": "sw0"}}))
        assert result.status == TxnStatus.UNCHANGED
        assert store.seqno == 1

    def test_stale_verify_is_try_again(self):
        store = DataStore()
        row = store.insert_row("Logical_Switch", {"name": "sw0"})
        version = store.versions[("Logical_Switch", row)]
        store.update_row("Logical_Switch", row, {"name": "renamed"})

        result = store.commit(CommitRequest(
            updates={("Logical_Switch", row): {"name": "sw1"}},
            verified={("Logical_Switch", row): version},
        ))
        assert result.status == TxnStatus.TRY_AGAIN
        assert store.tables["Logical_Switch"][row]["name"] == "renamed"

    def test_dangling_strong_reference(self):
        store = DataStore()
        result = store.commit(CommitRequest(inserts={
            ("Logical_Switch", "tmp"): {"name": "sw0", "ports": ["8c3b1a47-8d9e-4d07-9d6a-2b5b1f7f0c11"]},
        }))
        assert result.status == TxnStatus.ERROR
        assert "referential integrity violation" in result.error
        assert store.tables["Logical_Switch"] == {}

    def test_max_rows(self):
        store = DataStore()
        store.insert_row("NB_Global")
        result = store.commit(CommitRequest(inserts={("NB_Global", "tmp"): {}}))
        assert result.status == TxnStatus.ERROR
        assert result.error == "too many rows in table NB_Global"

    def test_unreferenced_non_root_rows_collected(self):
        """A port nobody references does not survive the commit."""
        store = DataStore()
        store.commit(CommitRequest(inserts={("Logical_Switch_Port", "tmp"): {"name": "p0"}}))
        assert store.tables["Logical_Switch_Port"] == {}

    def test_weak_references_pruned(self):
        store = DataStore()
        result = store.commit(CommitRequest(inserts={
            ("Logical_Switch_Port", "p"): {"name": "p0"},
            ("Logical_Switch", "s"): {"name": "sw0", "ports": ["p"]},
            ("Port_Group", "g"): {"name": "pg0", "ports": ["p"]},
        }))
        switch = result.insert_uuids["s"]
        group = result.insert_uuids["g"]

        store.commit(CommitRequest(updates={("Logical_Switch", switch): {"ports": []}}))
        assert store.tables["Logical_Switch_Port"] == {}
        assert store.tables["Port_Group"][group]["ports"] == []

    def test_increment_only_with_changes(self):
        store = DataStore()
        nb = store.insert_row("NB_Global")
        result = store.commit(CommitRequest(increment=("NB_Global", nb, "nb_cfg")))
        assert result.status == TxnStatus.UNCHANGED
        assert result.increment_value is None

        result = store.commit(CommitRequest(increment=("NB_Global", nb, "nb_cfg"), force_increment=True))
        assert result.status == TxnStatus.SUCCESS
        assert result.increment_value == 1
        assert store.tables["NB_Global"][nb]["nb_cfg"] == 1

    def test_dry_run_applies_nothing(self):
        store = DataStore()
        result = store.commit(CommitRequest(
            inserts={("Logical_Switch", "tmp"): {"name": "sw0"}},
            dry_run=True,
        ))
        assert result.status == TxnStatus.SUCCESS
        assert store.tables["Logical_Switch"] == {}
        assert store.seqno == 0

    def test_dict_round_trip_keeps_versions(self):
        store = DataStore()
        row = store.insert_row("Logical_Switch", {"name": "sw0"})
        copy = DataStore.from_dict(json.loads(json.dumps(store.to_dict())))
        assert copy.seqno == store.seqno
        assert copy.versions == store.versions
        assert copy.tables["Logical_Switch"][row]["name"] == "sw0"


class TestOpenBackend:
    """Tests for remote string handling."""

    def test_memory(self):
        assert isinstance(open_backend("memory:x"), MemoryBackend)

    def test_file(self, tmp_path):
        assert isinstance(open_backend(f"file:{tmp_path}/nb.json"), FileBackend)

    def test_unsupported(self):
        with pytest.raises(DatabaseConnectionError,
                           match=r"tcp:1.2.3.4:6641: database connection failed \(unsupported remote type\)"):
            open_backend("tcp:1.2.3.4:6641")


class TestMemoryBackend:
    """Tests for the shared in-process backend."""

    @pytest.mark.asyncio
    async def test_same_name_shares_store(self):
        a = MemoryBackend("memory:shared")
        b = MemoryBackend("memory:shared")
        row = a.apply_external("Logical_Switch", name="sw0")
        snapshot = Snapshot(b)
        await snapshot.run()
        assert snapshot.get("Logical_Switch", row)["name"] == "sw0"

    @pytest.mark.asyncio
    async def test_wait_for_change(self):
        backend = MemoryBackend("memory:w")
        assert await backend.wait_for_change(backend.store.seqno, timeout=0.05) is False
        assert await backend.wait_for_change(backend.store.seqno + 1) is True

    @pytest.mark.asyncio
    async def test_closed_backend_fails(self):
        backend = MemoryBackend("memory:c")
        await backend.close()
        with pytest.raises(DatabaseConnectionError, match="connection closed"):
            await backend.fetch()
        assert not backend.is_alive()


class TestFileBackend:
    """Tests for the JSON file backend."""

    @pytest.mark.asyncio
    async def test_connect_creates_database(self, tmp_path):
        path = tmp_path / "nb.json"
        backend = FileBackend(f"file:{path}")
        await backend.connect()
        assert path.exists()
        assert json.loads(path.read_text())["seqno"] == 0

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        backend = FileBackend(f"file:{tmp_path}/missing/nb.json")
        with pytest.raises(DatabaseConnectionError, match="database connection failed"):
            await backend.connect()

    @pytest.mark.asyncio
    async def test_commit_visible_to_other_backend(self, tmp_path):
        remote = f"file:{tmp_path}/nb.json"
        writer = Snapshot(FileBackend(remote))
        reader = Snapshot(FileBackend(remote))
        await writer.run()
        await reader.run()

        async with writer.transaction() as txn:
            txn.insert("Logical_Switch", {"name": "sw0"})
            assert await txn.commit() == TxnStatus.SUCCESS

        assert await reader.wait(timeout=1) is True
        await reader.run()
        assert [r["name"] for r in reader.rows("Logical_Switch")] == ["sw0"]

    @pytest.mark.asyncio
    async def test_conflict_between_processes(self, tmp_path):
        """A stale writer gets TRY_AGAIN from the file backend too."""
        remote = f"file:{tmp_path}/nb.json"
        first = Snapshot(FileBackend(remote))
        await first.run()
        async with first.transaction() as txn:
            txn.insert("Logical_Switch", {"name": "sw0"})
            await txn.commit()

        a = Snapshot(FileBackend(remote))
        b = Snapshot(FileBackend(remote))
        await a.run()
        await b.run()
        row_a = a.first("Logical_Switch")
        row_b = b.first("Logical_Switch")

        async with a.transaction() as txn:
            txn.update("Logical_Switch", row_a.uuid, {"name": "from-a"})
            assert await txn.commit() == TxnStatus.SUCCESS
        async with b.transaction() as txn:
            txn.update("Logical_Switch", row_b.uuid, {"name": "from-b"})
            assert await txn.commit() == TxnStatus.TRY_AGAIN

    @pytest.mark.asyncio
    async def test_wait_times_out(self, tmp_path):
        backend = FileBackend(f"file:{tmp_path}/nb.json")
        await backend.connect()
        assert await backend.wait_for_change(0, timeout=0.1) is False
