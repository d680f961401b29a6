"""Daemon mode: one warm snapshot serving many command lines."""
from .client import DaemonClient, run_via_daemon, stop_daemon
from .protocol import DaemonResponse, ExitRequest, RunRequest
from .server import DaemonServer, daemonize, default_socket_path, serve

__all__ = [
    "DaemonClient",
    "DaemonResponse",
    "DaemonServer",
    "ExitRequest",
    "RunRequest",
    "daemonize",
    "default_socket_path",
    "run_via_daemon",
    "serve",
    "stop_daemon",
]
