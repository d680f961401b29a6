"""Audit journal for committed batches.

Every read-write invocation that reaches a terminal state is appended to a
JSON-lines journal:
- Timestamp, remote and the full argument string
- Final executor state and retry count
- Generation counter value the batch was committed at (if waited for)
"""
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Dedicated audit logger
audit_logger = logging.getLogger("northctl.audit")


def setup_audit_logging(log_file: Path) -> None:
    """Configure the audit journal to append to ``log_file``."""
    log_file = Path(log_file).expanduser()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    audit_logger.setLevel(logging.INFO)

    # Remove existing handlers
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()

    handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )

    # One JSON document per line
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    # Don't propagate to the console
    audit_logger.propagate = False


@dataclass
class TransactionRecord:
    """Record of one read-write invocation."""
    timestamp: str
    remote: str
    args: str
    state: str  # committed, no_change, fatal
    dry_run: bool
    retries: int = 0
    next_cfg: Optional[int] = None
    error: Optional[str] = None

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), indent=None)

    @classmethod
    def from_json(cls, json_str: str) -> "TransactionRecord":
        """Parse from JSON string."""
        return cls(**json.loads(json_str))


def record_transaction(
    remote: str,
    args: str,
    state: str,
    dry_run: bool = False,
    retries: int = 0,
    next_cfg: Optional[int] = None,
    error: Optional[str] = None,
) -> TransactionRecord:
    """Append a record to the audit journal and return it.

    Nothing is written unless setup_audit_logging() installed a handler.
    """
    record = TransactionRecord(
        timestamp=datetime.now(timezone.utc).isoformat(),
        remote=remote,
        args=args,
        state=state,
        dry_run=dry_run,
        retries=retries,
        next_cfg=next_cfg,
        error=error,
    )
    if audit_logger.handlers:
        audit_logger.info(record.to_json())
    return record


def read_journal(log_file: Path, limit: int = 100) -> list[TransactionRecord]:
    """Read the most recent records, newest first."""
    log_file = Path(log_file).expanduser()
    if not log_file.exists():
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                records.append(TransactionRecord.from_json(line))
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

    return list(reversed(records[-limit:]))
