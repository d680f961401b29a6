"""Tests for the audit journal and logging setup."""
import logging

import pytest

from northctl.engine.errors import CommandError
from northctl.utils.audit_log import (
    TransactionRecord,
    read_journal,
    record_transaction,
    setup_audit_logging,
)
from northctl.utils.logging_config import setup_logging, timed


class TestTransactionRecord:
    """Tests for TransactionRecord serialization."""

    def test_json_round_trip(self):
        record = TransactionRecord(
            timestamp="2024-01-01T00:00:00+00:00",
            remote="memory:test",
            args="ls-add sw0",
            state="committed",
            dry_run=False,
            retries=2,
            next_cfg=7,
        )
        assert TransactionRecord.from_json(record.to_json()) == record


class TestJournal:
    """Tests for writing and reading the journal."""

    def test_nothing_written_without_setup(self, tmp_path):
        record = record_transaction("memory:test", "ls-add sw0", "committed")
        assert record.state == "committed"
        assert read_journal(tmp_path / "audit.jsonl") == []

    def test_newest_first(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        setup_audit_logging(path)
        record_transaction("memory:test", "ls-add a", "committed")
        record_transaction("memory:test", "ls-add b", "fatal", error="boom")

        records = read_journal(path)
        assert [r.args for r in records] == ["ls-add b", "ls-add a"]
        assert records[0].error == "boom"

    def test_malformed_lines_skipped(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        setup_audit_logging(path)
        record_transaction("memory:test", "ls-add a", "committed")
        with open(path, "a") as f:
            f.write("not json\n")
        assert len(read_journal(path)) == 1

    @pytest.mark.asyncio
    async def test_batches_are_journaled(self, run, tmp_path):
        """Read-write batches are recorded whether they succeed or not."""
        path = tmp_path / "audit.jsonl"
        setup_audit_logging(path)

        await run("ls-add", "sw0")
        await run("ls-list")
        with pytest.raises(CommandError):
            await run("ls-del", "nosuch")

        records = read_journal(path)
        assert [(r.args, r.state) for r in records] == [
            ("ls-del nosuch", "fatal"),
            ("ls-add sw0", "committed"),
        ]
        assert records[0].error == "nosuch: switch name not found"


class TestLoggingSetup:
    """Tests for setup_logging and the timing decorator."""

    def test_file_logging(self, tmp_path):
        log_file = tmp_path / "logs" / "northctl.log"
        setup_logging(level=logging.DEBUG, log_file=log_file)
        logging.getLogger("northctl.test").info("hello from the test")
        for handler in logging.getLogger("northctl").handlers:
            handler.flush()
        assert "hello from the test" in log_file.read_text()
        assert (tmp_path / "logs" / "northctl-perf.log").exists()

    def test_setup_replaces_handlers(self):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger("northctl").handlers) == 1

    @pytest.mark.asyncio
    async def test_timed_logs_remote(self, caplog):
        class Worker:
            remote = "memory:perf"

            @timed("attempt")
            async def work(self):
                return 42

        with caplog.at_level(logging.INFO, logger="northctl.perf"):
            assert await Worker().work() == 42
        assert "memory:perf" in caplog.text
        assert "OK" in caplog.text

    @pytest.mark.asyncio
    async def test_commit_is_timed(self, run, caplog):
        with caplog.at_level(logging.INFO, logger="northctl.perf"):
            await run("ls-add", "sw0")
        commits = [r.getMessage() for r in caplog.records if r.getMessage().startswith("commit ")]
        assert len(commits) == 1
        assert "memory:test" in commits[0]
        assert commits[0].endswith("seqno=0")
