"""Transaction executor: one attempt at committing a batch.

    INIT -> PREREQ -> RUNNING -> COMMIT_PENDING -> {COMMITTED, NO_CHANGE, RETRY, FATAL}

An attempt re-runs every command from scratch against the current snapshot
inside a single transaction. Nothing from a failed or retried attempt
survives: outputs are reset, the symbol table is rebuilt and the
transaction is aborted on every exit path.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..config.settings import RunOptions, WaitType
from ..db.snapshot import Snapshot, Transaction
from ..db.store import TxnStatus
from ..utils.logging_config import timed, timed_section
from .context import CommandContext
from .errors import CommandError, ConflictError, NorthctlError
from .output import render_output
from .symtab import SymbolTable

if TYPE_CHECKING:
    from ..commands.parser import BoundCommand

logger = logging.getLogger(__name__)


class AttemptState(str, Enum):
    INIT = "init"
    PREREQ = "prereq"
    RUNNING = "running"
    COMMIT_PENDING = "commit_pending"
    COMMITTED = "committed"
    NO_CHANGE = "no_change"
    RETRY = "retry"
    FATAL = "fatal"


@dataclass
class AttemptResult:
    """Outcome of one attempt."""
    state: AttemptState
    error: Optional[str] = None
    output: str = ""
    next_cfg: Optional[int] = None
    warnings: list[str] = field(default_factory=list)
    exception: Optional[NorthctlError] = None

    @property
    def done(self) -> bool:
        return self.state in (AttemptState.COMMITTED, AttemptState.NO_CHANGE, AttemptState.FATAL)


class TransactionExecutor:
    """Runs a parsed batch against a snapshot, one attempt at a time."""

    def __init__(
        self,
        snapshot: Snapshot,
        commands: list["BoundCommand"],
        options: RunOptions,
        args: str = "",
    ):
        self.snapshot = snapshot
        self.commands = commands
        self.options = options
        self.args = args
        self.state = AttemptState.INIT
        self.attempts = 0

    @property
    def remote(self) -> str:
        return self.snapshot.remote

    def _context(self, command: "BoundCommand", symtab: SymbolTable,
                 txn: Optional[Transaction] = None) -> CommandContext:
        return CommandContext(command, self.snapshot, symtab, self.options, txn)

    def run_prerequisites(self) -> None:
        """Let every command declare what it reads (INIT -> PREREQ).

        Raises:
            NorthctlError: a command rejected its arguments against the schema
        """
        if self.state != AttemptState.INIT:
            return
        symtab = SymbolTable()
        for command in self.commands:
            try:
                command.descriptor.handler.prerequisites(self._context(command, symtab))
            except NorthctlError:
                self.state = AttemptState.FATAL
                raise
        self.state = AttemptState.PREREQ

    @timed("attempt")
    async def attempt(self) -> AttemptResult:
        """Run every command and try to commit."""
        self.run_prerequisites()
        self.attempts += 1
        for command in self.commands:
            command.reset()

        symtab = SymbolTable()
        async with self.snapshot.transaction() as txn:
            txn.set_dry_run(self.options.dry_run)
            txn.add_comment(f"northctl: {self.args}")

            nb = self.snapshot.first("NB_Global")
            nb_uuid = nb.uuid if nb else txn.insert("NB_Global")
            if self.options.wait_type != WaitType.NONE:
                txn.increment("NB_Global", nb_uuid, "nb_cfg", force=self.options.force_wait)

            self.state = AttemptState.RUNNING
            try:
                for command in self.commands:
                    command.descriptor.handler.run(self._context(command, symtab, txn))
                warnings = symtab.validate()
            except ConflictError as e:
                logger.debug(f"Attempt abandoned, try again: {e}")
                self.state = AttemptState.RETRY
                return AttemptResult(self.state)
            except NorthctlError as e:
                return self._fatal(e)

            for warning in warnings:
                logger.warning(warning)

            self.state = AttemptState.COMMIT_PENDING
            try:
                async with timed_section("commit", remote=self.remote, seqno=self.snapshot.seqno):
                    status = await txn.commit()
            except NorthctlError as e:
                return self._fatal(e)
            except Exception as e:
                logger.exception(f"Commit failed: {e}")
                return self._fatal(CommandError(f"transaction failed: {e}"))

            result = self._result_for(status, txn, warnings)
            self.state = result.state
            if result.state not in (AttemptState.COMMITTED, AttemptState.NO_CHANGE):
                return result

            try:
                for command in self.commands:
                    command.descriptor.handler.postprocess(self._context(command, symtab, txn))
            except NorthctlError as e:
                return self._fatal(e)

            result.output = "".join(
                render_output(
                    command.output.getvalue(),
                    command.table,
                    self.options.oneline,
                    self.options.table_format,
                    self.options.headings,
                )
                for command in self.commands
            )
            return result

    def _fatal(self, error: NorthctlError) -> AttemptResult:
        self.state = AttemptState.FATAL
        return AttemptResult(self.state, error=str(error), exception=error)

    def _result_for(self, status: TxnStatus, txn: Transaction, warnings: list[str]) -> AttemptResult:
        if status == TxnStatus.SUCCESS:
            next_cfg = txn.increment_new_value if self.options.wait_type != WaitType.NONE else None
            return AttemptResult(AttemptState.COMMITTED, next_cfg=next_cfg, warnings=warnings)
        if status == TxnStatus.UNCHANGED:
            return AttemptResult(AttemptState.NO_CHANGE, warnings=warnings)
        if status == TxnStatus.TRY_AGAIN:
            logger.debug("Database changed during commit, try again")
            return AttemptResult(AttemptState.RETRY)
        if status == TxnStatus.ERROR:
            error = f"transaction error: {txn.error}"
            return AttemptResult(AttemptState.FATAL, error=error, exception=CommandError(error))
        if status == TxnStatus.ABORTED:
            return AttemptResult(AttemptState.FATAL, error="transaction aborted",
                                 exception=CommandError("transaction aborted"))
        raise AssertionError(f"unexpected transaction status {status}")
