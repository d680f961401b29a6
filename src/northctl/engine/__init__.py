"""Transactional execution engine.

- symtab: batch-local ``@name`` row references
- executor: one attempt at running and committing a batch
- main_loop: retries until a terminal outcome
- waiter: blocks until downstream consumers catch up
- output: oneline and table rendering
"""
from .errors import (
    NorthctlError,
    UsageError,
    UnknownCommandError,
    CommandError,
    RowNotFoundError,
    SymbolError,
    ConflictError,
    DatabaseConnectionError,
    TimeoutExpired,
    DaemonError,
)

__all__ = [
    "NorthctlError",
    "UsageError",
    "UnknownCommandError",
    "CommandError",
    "RowNotFoundError",
    "SymbolError",
    "ConflictError",
    "DatabaseConnectionError",
    "TimeoutExpired",
    "DaemonError",
]
