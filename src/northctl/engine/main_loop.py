"""Main loop: drive the snapshot and executor until a terminal outcome.

The loop attempts the batch whenever the snapshot's sequence number moves
(or immediately on a warm snapshot), retries transparently on conflicts and
hands a successful commit to the convergence waiter.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from ..commands.registry import CommandRegistry
from ..config.settings import RunOptions, WaitType
from ..db.snapshot import Snapshot
from ..utils.audit_log import record_transaction
from .errors import CommandError, DatabaseConnectionError, NorthctlError, TimeoutExpired
from .executor import AttemptState, TransactionExecutor
from .waiter import ConvergenceWaiter, Deadline, WaitTarget

if TYPE_CHECKING:
    from ..commands.parser import BoundCommand

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    output: str
    state: AttemptState
    retries: int = 0
    next_cfg: Optional[int] = None


class MainLoop:
    """Repeats executor attempts until COMMITTED, NO_CHANGE or FATAL.

    Args:
        snapshot: Snapshot to run against (may already be warm in a daemon)
        executor: Executor for the parsed batch
        options: Run options of this invocation
        deadline: Optional deadline for every blocking wait
        emit: Called with the rendered output before any convergence wait
    """

    def __init__(
        self,
        snapshot: Snapshot,
        executor: TransactionExecutor,
        options: RunOptions,
        deadline: Optional[Deadline] = None,
        emit: Optional[Callable[[str], None]] = None,
    ):
        self.snapshot = snapshot
        self.executor = executor
        self.options = options
        self.deadline = deadline or Deadline(options.timeout)
        self.emit = emit

    def _check_alive(self) -> None:
        if not self.snapshot.is_alive():
            reason = self.snapshot.backend.last_error or "connection closed"
            raise DatabaseConnectionError(
                f"{self.snapshot.remote}: database connection failed ({reason})"
            )

    async def run(self) -> RunResult:
        """Run the batch to completion.

        Raises:
            NorthctlError: the error that made the batch fail (CommandError,
                SymbolError, SchemaError and so on)
            DatabaseConnectionError: the database went away
            TimeoutExpired: the deadline passed while blocked
        """
        warm = self.snapshot.has_ever_connected
        last_seqno: Optional[int] = None
        retries = 0

        while True:
            await self.snapshot.run()
            self._check_alive()

            due = (warm and last_seqno is None) or self.snapshot.seqno != last_seqno
            if due:
                last_seqno = self.snapshot.seqno
                result = await self.executor.attempt()

                if result.state == AttemptState.RETRY:
                    retries += 1
                    logger.debug(f"Retrying batch (retry {retries}) after seqno {last_seqno}")
                    if self.deadline.expired:
                        raise TimeoutExpired()
                    continue

                if result.state == AttemptState.FATAL:
                    raise result.exception or CommandError(result.error or "transaction failed")

                if self.emit is not None:
                    self.emit(result.output)
                await self._wait_for_consumers(result.state, result.next_cfg)
                return RunResult(result.output, result.state, retries, result.next_cfg)

            if self.deadline.expired:
                raise TimeoutExpired()
            changed = await self.snapshot.wait(self.deadline.remaining())
            if not changed and self.deadline.expired:
                raise TimeoutExpired()

    async def _wait_for_consumers(self, state: AttemptState, next_cfg: Optional[int]) -> None:
        column = self.options.wait_type.column
        if self.options.wait_type == WaitType.NONE or column is None:
            return
        if state != AttemptState.COMMITTED or self.options.dry_run or next_cfg is None:
            logger.debug("Nothing committed, not waiting for consumers")
            return
        waiter = ConvergenceWaiter(self.snapshot, self.deadline)
        await waiter.wait(WaitTarget(column, next_cfg))


async def run_batch(
    snapshot: Snapshot,
    commands: list["BoundCommand"],
    options: RunOptions,
    args: str = "",
    emit: Optional[Callable[[str], None]] = None,
) -> RunResult:
    """Run a parsed batch end to end and journal it if it could write.

    Args:
        snapshot: Snapshot to run against
        commands: Parsed batch
        options: Run options of this invocation
        args: The command line, for logs, the transaction comment and the journal
        emit: Receives the output before any convergence wait

    Returns:
        RunResult of the main loop
    """
    read_write = CommandRegistry.might_write(commands)
    logger.log(logging.INFO if read_write else logging.DEBUG, f"Called as {args}")

    executor = TransactionExecutor(snapshot, commands, options, args)
    try:
        executor.run_prerequisites()
        result = await MainLoop(snapshot, executor, options, emit=emit).run()
    except NorthctlError as e:
        if read_write:
            record_transaction(snapshot.remote, args, AttemptState.FATAL.value,
                               dry_run=options.dry_run, error=str(e))
        raise

    if read_write:
        record_transaction(snapshot.remote, args, result.state.value,
                           dry_run=options.dry_run, retries=result.retries,
                           next_cfg=result.next_cfg)
    return result
