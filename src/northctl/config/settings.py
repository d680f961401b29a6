"""Client settings and per-invocation run options.

Environment variables:
- NORTHCTL_DB: Default database remote (default: file:~/.northctl/nb.json)
- NORTHCTL_DAEMON: Control socket of a running daemon; switches the CLI
  into client-of-daemon mode
- NORTHCTL_OPTIONS: Default options, prepended to the command line
- NORTHCTL_AUDIT_LOG: Path of the audit journal
- NORTHCTL_CONFIG: YAML settings file (default: ~/.northctl/config.yaml)
"""
import logging
import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".northctl"
DEFAULT_DB = f"file:{DEFAULT_CONFIG_DIR / 'nb.json'}"


class WaitType(str, Enum):
    """Which downstream consumer to wait for after a commit."""
    NONE = "none"
    SB = "sb"
    HV = "hv"

    @classmethod
    def parse(cls, value: str) -> "WaitType":
        aliases = {"consumer-a": cls.SB, "consumer-b": cls.HV}
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"argument to --wait must be \"none\", \"sb\" or \"hv\" (got \"{value}\")")

    @property
    def column(self) -> Optional[str]:
        """NB_Global column holding the consumer's generation counter."""
        return {WaitType.SB: "sb_cfg", WaitType.HV: "hv_cfg"}.get(self)


@dataclass
class RunOptions:
    """Settings that apply to one invocation (or one daemon request).

    A fresh instance is built for every daemon request so nothing leaks
    from one request into the next.
    """
    oneline: bool = False
    dry_run: bool = False
    wait_type: WaitType = WaitType.NONE
    force_wait: bool = False
    timeout: Optional[int] = None
    table_format: str = "list"
    headings: bool = True


@dataclass
class ClientSettings:
    """Settings that outlive a single invocation."""
    db: str = DEFAULT_DB
    leader_only: bool = True
    daemon: Optional[str] = None
    audit_log: Optional[Path] = None
    options: list[str] = field(default_factory=list)

    @classmethod
    def from_file(cls, path: Path) -> "ClientSettings":
        """Load settings from a YAML file; missing file means defaults."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        options = data.get("options", [])
        if isinstance(options, str):
            options = shlex.split(options)

        audit_log = data.get("audit_log")
        return cls(
            db=data.get("db", DEFAULT_DB),
            leader_only=bool(data.get("leader_only", True)),
            daemon=data.get("daemon"),
            audit_log=Path(audit_log).expanduser() if audit_log else None,
            options=[str(o) for o in options],
        )

    @classmethod
    def load(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientSettings":
        """Build settings from the YAML file, then apply environment overrides."""
        env = os.environ if environ is None else environ
        config_path = Path(env.get("NORTHCTL_CONFIG", DEFAULT_CONFIG_DIR / "config.yaml")).expanduser()
        settings = cls.from_file(config_path)

        if env.get("NORTHCTL_DB"):
            settings.db = env["NORTHCTL_DB"]
        if env.get("NORTHCTL_DAEMON"):
            settings.daemon = env["NORTHCTL_DAEMON"]
        if env.get("NORTHCTL_AUDIT_LOG"):
            settings.audit_log = Path(env["NORTHCTL_AUDIT_LOG"]).expanduser()
        if env.get("NORTHCTL_OPTIONS"):
            settings.options = shlex.split(env["NORTHCTL_OPTIONS"])

        logger.debug(f"Settings: db={settings.db}, daemon={settings.daemon}")
        return settings
