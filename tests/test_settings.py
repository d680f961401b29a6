"""Tests for settings, run options and global option parsing."""
import pytest

from northctl.config import (
    DEFAULT_DB,
    ClientSettings,
    WaitType,
    parse_invocation,
    request_args,
)
from northctl.config.options import parse_timeout, split_argv, build_arg_parser
from northctl.engine.errors import UsageError


class TestWaitType:
    """Tests for --wait values."""

    def test_parse(self):
        assert WaitType.parse("sb") == WaitType.SB
        assert WaitType.parse("consumer-b") == WaitType.HV
        assert WaitType.parse("none") == WaitType.NONE

    def test_invalid(self):
        with pytest.raises(ValueError, match="argument to --wait must be"):
            WaitType.parse("forever")

    def test_columns(self):
        assert WaitType.SB.column == "sb_cfg"
        assert WaitType.HV.column == "hv_cfg"
        assert WaitType.NONE.column is None


class TestClientSettings:
    """Tests for the YAML file and environment overrides."""

    def test_defaults_without_file(self, tmp_path):
        settings = ClientSettings.from_file(tmp_path / "missing.yaml")
        assert settings.db == DEFAULT_DB
        assert settings.daemon is None
        assert settings.options == []

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "db: memory:lab\n"
            "leader_only: false\n"
            "audit_log: ~/audit.jsonl\n"
            "options: --oneline --wait=sb\n"
        )
        settings = ClientSettings.from_file(path)
        assert settings.db == "memory:lab"
        assert settings.leader_only is False
        assert settings.audit_log.name == "audit.jsonl"
        assert settings.options == ["--oneline", "--wait=sb"]

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("db: memory:file\noptions: [--oneline]\n")
        settings = ClientSettings.load({
            "NORTHCTL_CONFIG": str(path),
            "NORTHCTL_DB": "memory:env",
            "NORTHCTL_DAEMON": "/tmp/d.ctl",
            "NORTHCTL_OPTIONS": "--dry-run -t 5",
        })
        assert settings.db == "memory:env"
        assert settings.daemon == "/tmp/d.ctl"
        assert settings.options == ["--dry-run", "-t", "5"]


class TestParseInvocation:
    """Tests for global options and the batch split."""

    def test_run_options(self):
        invocation = parse_invocation(["--oneline", "--dry-run", "--wait=hv", "-t", "3", "ls-list"])
        options = invocation.options
        assert options.oneline and options.dry_run
        assert options.wait_type == WaitType.HV
        assert options.timeout == 3
        assert invocation.tokens == ["ls-list"]

    def test_defaults(self):
        options = parse_invocation(["ls-list"]).options
        assert not options.oneline and not options.dry_run
        assert options.wait_type == WaitType.NONE
        assert options.timeout is None
        assert options.table_format == "list"

    def test_no_wait_after_wait(self):
        assert parse_invocation(["--wait=sb", "--no-wait", "ls-list"]).options.wait_type == WaitType.NONE

    def test_local_options_carried(self):
        invocation = parse_invocation(["--oneline", "--may-exist", "ls-add", "sw0"])
        assert invocation.local_options == {"--may-exist": None}
        assert invocation.tokens == ["ls-add", "sw0"]

    def test_local_option_repeated(self):
        with pytest.raises(UsageError, match="specified multiple times"):
            parse_invocation(["--may-exist", "--may-exist", "ls-add", "sw0"])

    def test_bad_timeout(self):
        with pytest.raises(UsageError, match="value 0 on -t or --timeout is invalid"):
            parse_invocation(["-t", "0", "ls-list"])
        with pytest.raises(UsageError, match="value soon on -t or --timeout is invalid"):
            parse_timeout("soon")

    def test_bad_wait(self):
        with pytest.raises(UsageError, match="argument to --wait must be"):
            parse_invocation(["--wait=forever", "ls-list"])

    def test_bad_format(self):
        with pytest.raises(UsageError):
            parse_invocation(["--format=xml", "ls-list"])

    def test_short_option_attached_value(self):
        _, _, tokens = split_argv(build_arg_parser(), ["-t5", "ls-list"])
        assert tokens == ["ls-list"]
        assert parse_invocation(["-t5", "ls-list"]).options.timeout == 5

    def test_request_rejects_process_options(self):
        with pytest.raises(UsageError, match="--db not supported in daemon requests"):
            parse_invocation(["--db", "memory:x", "ls-list"], for_request=True)

    def test_fresh_options_per_parse(self):
        first = parse_invocation(["--oneline", "ls-list"]).options
        second = parse_invocation(["ls-list"]).options
        assert first is not second
        assert not second.oneline


class TestRequestArgs:
    """Tests for the command line forwarded to a daemon."""

    def test_process_options_dropped(self):
        forwarded = request_args(["--db", "memory:x", "-u", "/tmp/s", "--oneline", "-t", "5", "ls-list"])
        assert forwarded == ["--oneline", "-t", "5", "--", "ls-list"]

    def test_local_options_kept(self):
        forwarded = request_args(["--may-exist", "ls-add", "sw0", "--", "ls-list"])
        assert forwarded == ["--may-exist", "--", "ls-add", "sw0", "--", "ls-list"]

    def test_round_trip_through_request_parser(self):
        forwarded = request_args(["--oneline", "--may-exist", "ls-add", "sw0"])
        invocation = parse_invocation(forwarded, for_request=True)
        assert invocation.options.oneline
        assert invocation.local_options == {"--may-exist": None}
