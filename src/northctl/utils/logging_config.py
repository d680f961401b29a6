"""Logging configuration for northctl.

Provides configurable logging with:
- Console output on stderr (quiet by default, this is a CLI)
- Optional file-based logging with rotation
- Performance timing decorators for attempts and commits

Environment Variables:
    NORTHCTL_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: WARNING)
    NORTHCTL_LOG_FILE: Path to log file (default: no file logging)
    NORTHCTL_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    NORTHCTL_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from northctl.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("attempt")
    async def attempt(self):
        ...

    # Or use context manager for sections:
    async with timed_section("commit", remote="memory:test"):
        ...
"""
import functools
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("northctl.perf")
main_logger = logging.getLogger("northctl")

MAIN_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-25s | %(levelname)-7s | %(message)s"
CONSOLE_FORMAT = "northctl: %(levelname)s: %(message)s"


def get_log_level(default: str = "WARNING") -> int:
    """Get log level from environment."""
    level_str = os.environ.get("NORTHCTL_LOG_LEVEL", default).upper()
    return getattr(logging, level_str, logging.WARNING)


def get_log_file() -> Optional[Path]:
    """Get log file path from environment, if any."""
    path_str = os.environ.get("NORTHCTL_LOG_FILE")
    return Path(path_str).expanduser() if path_str else None


def setup_logging(level: Optional[int] = None, log_file: Optional[Path] = None) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler on stderr (WARNING+ by default, respects NORTHCTL_LOG_LEVEL)
    - File handler with rotation (DEBUG level) when a log file is configured
    - Performance logger for timing metrics (file only)

    Calling it again replaces the handlers installed by the previous call.
    """
    log_level = level if level is not None else get_log_level()
    log_file = log_file or get_log_file()
    max_size_mb = int(os.environ.get("NORTHCTL_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("NORTHCTL_LOG_BACKUPS", "5"))

    for logger in (main_logger, perf_logger):
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    main_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    main_logger.addHandler(console_handler)
    main_logger.propagate = False

    perf_logger.setLevel(logging.DEBUG)
    perf_logger.propagate = False

    if log_file is None:
        perf_logger.addHandler(logging.NullHandler())
        return

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(MAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # File handler - captures DEBUG and above (everything)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)
    main_logger.addHandler(file_handler)

    # Performance file handler - separate file for easy analysis
    perf_log_file = log_file.parent / f"{log_file.stem}-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)
    perf_logger.addHandler(perf_handler)

    main_logger.debug(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")


def timed(operation: str, remote: Optional[str] = None):
    """Decorator to log execution time of a coroutine.

    Args:
        operation: Name of the operation (e.g., "attempt", "commit")
        remote: Optional database remote (can also be inferred from self.remote)
    """
    def decorator(func: Callable) -> Callable:
        def _remote(args) -> str:
            if remote is not None:
                return remote
            if args and hasattr(args[0], "remote"):
                return str(args[0].remote)
            return "N/A"

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000  # ms
                perf_logger.info(
                    f"{operation:20s} | {_remote(args):20s} | {elapsed:8.2f}ms | OK"
                )
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(
                    f"{operation:20s} | {_remote(args):20s} | {elapsed:8.2f}ms | FAIL: {e}"
                )
                raise

        return async_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, remote: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Usage:
        async with timed_section("commit", remote="file:/tmp/nb.json", seqno=4):
            status = await txn.commit()
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
        elapsed = (time.perf_counter() - start) * 1000
        msg = f"{operation:20s} | {remote or 'N/A':20s} | {elapsed:8.2f}ms | OK"
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.info(msg)
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = f"{operation:20s} | {remote or 'N/A':20s} | {elapsed:8.2f}ms | FAIL: {e}"
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.warning(msg)
        raise
