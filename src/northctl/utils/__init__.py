"""Utility modules for logging, auditing and connection retries."""
from .connection import with_retry, RETRYABLE_EXCEPTIONS
from .logging_config import (
    setup_logging,
    timed,
    timed_section,
    perf_logger,
)
from .audit_log import (
    setup_audit_logging,
    record_transaction,
    read_journal,
    TransactionRecord,
)

__all__ = [
    "with_retry",
    "RETRYABLE_EXCEPTIONS",
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
    "setup_audit_logging",
    "record_transaction",
    "read_journal",
    "TransactionRecord",
]
