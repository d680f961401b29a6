"""Shared fixtures: in-memory databases and a batch runner."""
import logging
import shutil
import tempfile
from pathlib import Path

import pytest

from northctl.commands import CommandParser, build_registry
from northctl.config.settings import RunOptions
from northctl.db import MemoryBackend, Snapshot
from northctl.db.memory import reset_stores
from northctl.engine.main_loop import run_batch

LOGGERS = ("northctl", "northctl.perf", "northctl.audit")


def _reset_loggers():
    for name in LOGGERS:
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True


@pytest.fixture(autouse=True)
def clean_state(monkeypatch, tmp_path):
    """Fresh in-memory databases, default logging and no user settings."""
    reset_stores()
    _reset_loggers()
    for var in ("NORTHCTL_DB", "NORTHCTL_DAEMON", "NORTHCTL_OPTIONS",
                "NORTHCTL_AUDIT_LOG", "NORTHCTL_LOG_FILE", "NORTHCTL_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("NORTHCTL_CONFIG", str(tmp_path / "no-such-config.yaml"))
    yield
    reset_stores()
    _reset_loggers()


@pytest.fixture
def backend():
    return MemoryBackend("memory:test")


@pytest.fixture
def snapshot(backend):
    return Snapshot(backend)


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def run(snapshot, registry):
    """Run a batch given as tokens, e.g. run("ls-add", "sw0", "--", "ls-list")."""
    parser = CommandParser(registry)

    async def _run(*tokens, **options):
        commands = parser.parse(list(tokens))
        result = await run_batch(snapshot, commands, RunOptions(**options), args=" ".join(tokens))
        return result.output

    return _run


@pytest.fixture
def short_tmp():
    """Short temporary directory; Unix socket paths are length limited."""
    path = Path(tempfile.mkdtemp(prefix="nctl"))
    yield path
    shutil.rmtree(path, ignore_errors=True)
