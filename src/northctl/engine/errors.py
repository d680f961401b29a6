"""Error taxonomy shared by the parser, the executor and the daemon."""


class NorthctlError(Exception):
    """Base class for every error reported to the caller."""
    pass


class UsageError(NorthctlError):
    """Bad argument count or malformed option, detected before any transaction."""
    pass


class UnknownCommandError(UsageError):
    """The leading token of a command segment is not a registered command."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unknown command '{name}'; use --help for help")


class CommandError(NorthctlError):
    """Local error raised by a command callback; aborts the whole batch."""
    pass


class RowNotFoundError(CommandError, LookupError):
    """A referenced row could not be found by name or UUID."""
    pass


class SymbolError(NorthctlError):
    """Unresolved or duplicate row-id symbol."""
    pass


class ConflictError(NorthctlError):
    """The database changed underneath the transaction."""
    pass


class DatabaseConnectionError(NorthctlError, ConnectionError):
    """Database unreachable or connection dropped."""
    pass


class TimeoutExpired(NorthctlError, TimeoutError):
    """The invocation deadline elapsed at a blocking point."""

    def __init__(self, message: str = "timeout expired"):
        super().__init__(message)


class DaemonError(NorthctlError):
    """The daemon could not be reached or returned a malformed reply."""
    pass
