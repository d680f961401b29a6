"""Client configuration."""
from .settings import ClientSettings, RunOptions, WaitType, DEFAULT_DB, DEFAULT_CONFIG_DIR
from .options import Invocation, build_arg_parser, parse_invocation, request_args

__all__ = [
    "ClientSettings",
    "RunOptions",
    "WaitType",
    "DEFAULT_DB",
    "DEFAULT_CONFIG_DIR",
    "Invocation",
    "build_arg_parser",
    "parse_invocation",
    "request_args",
]
