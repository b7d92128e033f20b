"""Task execution orchestration for simplotask.

The Process runner resolves a task and a target into a command list and
a host list, then runs the commands on every host concurrently:

- one asyncio task per host, bounded by a semaphore of size concurrency
- commands run in declared order on each host, stopping at the first
  failure unless the command ignores errors
- a host's failure (connect or command) never affects other hosts
- cancellation through the ExecutionContext stops hosts that haven't
  started and aborts in-flight hosts at the next suspension point
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol, Sequence

from .context import ContextCanceled, ExecutionContext
from .exceptions import ConnectError, RunCanceledError
from .logging import StructuredLogger, get_logger, log_performance
from .remote import Connector, Session
from .types import (
    Command,
    CommandOutcome,
    CommandStatus,
    Host,
    HostResult,
    HostStatus,
    RunResult,
    Task,
)

logger = logging.getLogger(__name__)

HostCallback = Callable[[HostResult], None]


class Resolver(Protocol):
    """Source of tasks and target hosts, implemented by PlayBook."""

    def task(self, name: str) -> Task:
        ...

    async def target_hosts(self, name: str) -> list[Host]:
        ...


def filter_commands(
    commands: Iterable[Command],
    only: Iterable[str] | None = None,
    skip: Iterable[str] | None = None,
) -> list[Command]:
    """Apply the Only and Skip filters to a command list.

    Only is applied first: when non-empty, only commands whose name is
    listed are kept, so unnamed commands are dropped. Skip then drops
    commands whose name is listed. Commands marked ``no_auto`` are kept
    only when named in Only. Declared order is preserved.

    Example:
        >>> cmds = [Command("true", name=n) for n in "abcd"]
        >>> [c.name for c in filter_commands(cmds, only=["a", "c"], skip=["c"])]
        ['a']
    """
    only_set = set(only or ())
    skip_set = set(skip or ())

    result = []
    for command in commands:
        if only_set and command.name not in only_set:
            continue
        if command.name is not None and command.name in skip_set:
            continue
        if command.options.no_auto and command.name not in only_set:
            continue
        result.append(command)
    return result


@dataclass
class Process:
    """Runs one task against one target across all resolved hosts.

    Attributes:
        connector: Opens a session per host, shared by all host units
        config: Resolver for tasks and target hosts
        concurrency: Maximum number of hosts with a live session (min 1)
        only: Command names to run exclusively
        skip: Command names to skip
        command_timeout: Per-command timeout in seconds (None for no limit)
        connect_timeout: Per-host connect timeout (None for connector default)
        on_host_done: Called with each HostResult as soon as the host finishes

    Example:
        >>> process = Process(connector=connector, config=playbook, concurrency=5)
        >>> result = await process.run(ExecutionContext(), "deploy", "prod")
        >>> print(f"{result.successful} of {result.total_hosts} hosts succeeded")
    """

    connector: Connector
    config: Resolver
    concurrency: int = 1
    only: Sequence[str] = field(default_factory=list)
    skip: Sequence[str] = field(default_factory=list)
    command_timeout: float | None = None
    connect_timeout: float | None = None
    on_host_done: HostCallback | None = None

    async def run(self, ctx: ExecutionContext, task_name: str, target_name: str) -> RunResult:
        """Run a task on every host of a target.

        Per-host failures are reported in the returned RunResult.

        Raises:
            UnknownTaskError: If the task is not defined
            UnknownTargetError: If the target can't be resolved
            InventoryError: If the target's inventory can't be loaded
            RunCanceledError: If cancellation happened before any host completed
        """
        task = self.config.task(task_name)
        try:
            hosts = await ctx.guard(self.config.target_hosts(target_name))
        except ContextCanceled as e:
            raise RunCanceledError(RunResult(task=task.name, target=target_name, error=e.reason)) from None

        commands = filter_commands(task.commands, self.only, self.skip)
        concurrency = max(1, self.concurrency)
        log = get_logger(__name__, task=task.name, target=target_name)
        log.info(
            f"Running {len(commands)} of {len(task.commands)} command(s) on {len(hosts)} host(s)",
            concurrency=concurrency,
        )

        semaphore = asyncio.Semaphore(concurrency)
        units = [
            asyncio.create_task(self._run_host(ctx, semaphore, host, commands, log))
            for host in hosts
        ]

        with log_performance(logger, f"Task {task.name}", hosts=len(hosts)):
            await asyncio.gather(*units, return_exceptions=True)

        host_results: list[HostResult] = []
        for host, unit in zip(hosts, units):
            error = unit.exception()
            if error is None:
                host_results.append(unit.result())
                continue
            # unexpected errors are confined to their host
            logger.error(f"Execution failed on {host.display_name}: {error!r}")
            host_result = HostResult(host=host, status=HostStatus.FAILED, error=str(error) or repr(error))
            self._report(host_result)
            host_results.append(host_result)

        result = RunResult(task=task.name, target=target_name, hosts=host_results)
        if ctx.cancelled and not all(r.completed for r in host_results):
            result.error = f"canceled: {ctx.reason}"
            if not any(r.completed for r in host_results):
                raise RunCanceledError(result)

        log.info(
            f"Completed: {result.successful} succeeded, {result.failed} failed, "
            f"{result.canceled} canceled, {result.not_run} not run"
        )
        return result

    async def _run_host(
        self,
        ctx: ExecutionContext,
        semaphore: asyncio.Semaphore,
        host: Host,
        commands: list[Command],
        log: StructuredLogger,
    ) -> HostResult:
        """Connect to one host and run the command list on it."""
        try:
            await ctx.guard(semaphore.acquire())
        except ContextCanceled as e:
            return self._report(HostResult(host=host, status=HostStatus.NOT_RUN, error=e.reason))

        try:
            start = time.perf_counter()
            with log.scope("Host", host=host.display_name) as host_log:
                try:
                    session = await self.connector.connect(ctx, host, timeout=self.connect_timeout)
                except ContextCanceled as e:
                    host_log.warning("Connect canceled")
                    result = HostResult(host=host, status=HostStatus.CANCELED, error=e.reason)
                except ConnectError as e:
                    host_log.error(str(e), kind=e.kind.value)
                    result = HostResult(host=host, status=HostStatus.FAILED, error=str(e))
                else:
                    try:
                        result = await self._run_commands(ctx, session, commands, host_log)
                    finally:
                        await self._close(session, host_log)

            result.duration = time.perf_counter() - start
            return self._report(result)
        finally:
            semaphore.release()

    async def _run_commands(
        self,
        ctx: ExecutionContext,
        session: Session,
        commands: list[Command],
        log: StructuredLogger,
    ) -> HostResult:
        """Run commands in order on an open session, stopping at the first failure."""
        outcomes: list[CommandOutcome] = []
        status = HostStatus.SUCCESS
        error = None

        for command in commands:
            if ctx.cancelled:
                status, error = HostStatus.CANCELED, ctx.reason
                break

            log.debug(f"Running command '{command.label}'")
            outcome = await session.run(ctx, command, timeout=self.command_timeout)
            if outcome.status == CommandStatus.FAILED and command.options.ignore_errors:
                outcome.ignored = True
            outcomes.append(outcome)

            for line in outcome.output.splitlines():
                log.debug(f"  {line}")

            if outcome.status == CommandStatus.CANCELED:
                log.warning(f"Command '{command.label}' canceled")
                status, error = HostStatus.CANCELED, outcome.error
                break
            if outcome.ignored:
                log.warning(f"Command '{command.label}' failed, ignored: {outcome.error}")
            elif outcome.failed:
                log.error(f"Command '{command.label}' failed: {outcome.error}")
                status, error = HostStatus.FAILED, f"Command '{command.label}' failed: {outcome.error}"
                break
            else:
                log.info(f"Command '{command.label}' completed")

        for command in commands[len(outcomes):]:
            outcomes.append(CommandOutcome(command, CommandStatus.SKIPPED))

        return HostResult(host=session.host, status=status, outcomes=outcomes, error=error)

    async def _close(self, session: Session, log: StructuredLogger) -> None:
        """Close a session, logging failures so command outcomes are kept."""
        try:
            await session.close()
        except Exception as e:
            log.warning(f"Closing session failed: {e!r}")

    def _report(self, result: HostResult) -> HostResult:
        if self.on_host_done is not None:
            self.on_host_done(result)
        return result
