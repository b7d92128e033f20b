"""Command-line interface for simplotask."""

import asyncio
import contextlib
import json
import logging
import signal
import time
from datetime import datetime, timezone
from typing import Optional

import click

from simplotask import __version__
from simplotask.config import DEFAULT_PLAYBOOK, Overrides, PlayBook, load_playbook, resolve_connection
from simplotask.context import ExecutionContext
from simplotask.exceptions import RunCanceledError, SimplotaskError
from simplotask.logging import (
    configure_logging,
    get_level_from_name,
    get_level_from_verbosity,
    get_logger,
)
from simplotask.remote import DEFAULT_CONNECT_TIMEOUT, SSHConnector
from simplotask.runner import Process
from simplotask.types import CommandStatus, HostResult, HostStatus, RunResult

logger = get_logger("simplotask.cli")

HOST_STATUS_LABELS = {
    HostStatus.SUCCESS: "OK",
    HostStatus.FAILED: "FAILED",
    HostStatus.CANCELED: "CANCELED",
    HostStatus.NOT_RUN: "NOT RUN",
}


def format_host_result(result: HostResult, verbose: bool = False) -> str:
    """Format one host's result as human-readable text."""
    label = HOST_STATUS_LABELS[result.status]
    ran = sum(1 for o in result.outcomes if o.status != CommandStatus.SKIPPED)
    lines = [f"  {result.host.display_name}: {label} ({ran}/{len(result.outcomes)} commands, {result.duration:.3f}s)"]
    if result.error:
        lines.append(f"    Error: {result.error}")

    for outcome in result.outcomes:
        if not verbose and not outcome.failed:
            continue
        suffix = " (ignored)" if outcome.ignored else ""
        lines.append(f"    [{outcome.status.value}] {outcome.command.label}{suffix}")
        for line in outcome.output.rstrip().splitlines():
            lines.append(f"      {line}")
    return "\n".join(lines)


def format_results_text(result: RunResult) -> str:
    """Format the summary of a run as human-readable text."""
    lines = [
        "",
        f"Task '{result.task}' on '{result.target}':",
        f"Total hosts: {result.total_hosts}",
        f"Successful: {result.successful}",
        f"Failed: {result.failed}",
    ]
    if result.canceled or result.not_run:
        lines.append(f"Canceled: {result.canceled}")
        lines.append(f"Not run: {result.not_run}")
    if result.error:
        lines.append(f"Aborted: {result.error}")
    lines.append("")
    return "\n".join(lines)


def format_results_json(result: RunResult, duration: float) -> str:
    """Format a run result as JSON."""
    output = result.to_dict()
    output["duration"] = round(duration, 3)
    output["timestamp"] = datetime.now(timezone.utc).isoformat()
    return json.dumps(output, indent=2)


def setup_logging(
    verbose: int,
    log_level: Optional[str],
    log_file: Optional[str],
    dbg: bool,
    dev: bool,
) -> None:
    """Configure logging from CLI flags.

    --log-level wins over -v; --dbg and --dev imply at least debug.
    """
    level = get_level_from_name(log_level) if log_level else get_level_from_verbosity(verbose)
    if dbg or dev:
        level = min(level, logging.DEBUG)
    configure_logging(level=level, dev=dev, log_file=log_file)


async def execute(process: Process, task: str, target: str) -> RunResult:
    """Run a process with SIGINT/SIGTERM wired to cancellation."""
    ctx = ExecutionContext()
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        # not available on every platform
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, ctx.cancel, f"received signal {sig.name}")
    try:
        return await process.run(ctx, task, target)
    finally:
        for sig in signals:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)


def _load(file: str, hosts: tuple[str, ...], inventory: Optional[str], inventory_http: Optional[str]) -> PlayBook:
    overrides = Overrides(hosts=list(hosts), inventory_file=inventory, inventory_http=inventory_http)
    try:
        return load_playbook(file, overrides)
    except SimplotaskError as e:
        raise click.ClickException(f"can't read config: {e}")


def target_options(func):
    """Options shared by commands that resolve a target."""
    options = [
        click.option("--file", "-f", "file", default=DEFAULT_PLAYBOOK, show_default=True, help="Playbook file"),
        click.option("--target", "-t", default="default", show_default=True, help="Target name"),
        click.option("--host", "-h", "hosts", multiple=True, help="Destination host (overrides target, can repeat)"),
        click.option("--inventory", "-i", default=None, help="Inventory file (overrides target)"),
        click.option("--inventory-http", "-H", default=None, help="Inventory HTTP URL (overrides target)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """simplotask - run playbook tasks on remote hosts over SSH."""
    if version:
        click.echo(f"simplotask {__version__}")
        ctx.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("run")
@target_options
@click.option("--name", "-n", "task_name", default="default", show_default=True, help="Task name")
@click.option("--concurrent", "-c", type=int, default=1, show_default=True, help="Number of hosts to run concurrently")
@click.option("--user", "-u", default=None, help="SSH user (overrides task and playbook)")
@click.option("--key", "-k", default=None, help="SSH private key (overrides playbook)")
@click.option("--skip", "-s", multiple=True, help="Skip command by name (can repeat)")
@click.option("--only", "-o", multiple=True, help="Run only command by name (can repeat)")
@click.option("--timeout", type=float, default=None, help="Per-command timeout in seconds")
@click.option("--connect-timeout", type=float, default=DEFAULT_CONNECT_TIMEOUT, show_default=True,
              help="Connection timeout in seconds")
@click.option("--format", "output_format", type=click.Choice(["text", "json"]), default="text",
              show_default=True, help="Output format")
@click.option("-v", "--verbose", count=True, help="Increase verbosity: -v=info, -vv=debug, -vvv=trace")
@click.option("--log-level", type=click.Choice(["trace", "debug", "info", "warning", "error"]),
              default=None, help="Set log level explicitly (overrides -v)")
@click.option("--log-file", type=click.Path(), default=None, help="Write logs to file (in addition to console)")
@click.option("--dbg", is_flag=True, help="Debug mode")
@click.option("--dev", is_flag=True, help="Development mode, logs include caller details")
def run_task(
    file: str,
    target: str,
    hosts: tuple[str, ...],
    inventory: Optional[str],
    inventory_http: Optional[str],
    task_name: str,
    concurrent: int,
    user: Optional[str],
    key: Optional[str],
    skip: tuple[str, ...],
    only: tuple[str, ...],
    timeout: Optional[float],
    connect_timeout: float,
    output_format: str,
    verbose: int,
    log_level: Optional[str],
    log_file: Optional[str],
    dbg: bool,
    dev: bool,
) -> None:
    """Run a task on all hosts of a target.

    Examples:
        spt run -f spt.yml -n deploy -t prod -c 5

        spt run -n deploy -h web01.example.com -h web02.example.com:2222

        spt run -n deploy -t prod --only restart --skip cleanup
    """
    setup_logging(verbose, log_level, log_file, dbg, dev)

    playbook = _load(file, hosts, inventory, inventory_http)
    spec = resolve_connection(user, key, playbook.tasks.get(task_name), playbook)
    try:
        connector = SSHConnector(spec.user, spec.key_path, connect_timeout=connect_timeout)
    except SimplotaskError as e:
        raise click.ClickException(f"can't create connector: {e}")

    def on_host_done(result: HostResult) -> None:
        if output_format == "text":
            click.echo(format_host_result(result, verbose=verbose > 0))

    process = Process(
        connector=connector,
        config=playbook,
        concurrency=concurrent,
        only=list(only),
        skip=list(skip),
        command_timeout=timeout,
        connect_timeout=connect_timeout,
        on_host_done=on_host_done,
    )

    logger.info("Starting run", task=task_name, target=target, user=spec.user)
    start = time.perf_counter()
    try:
        result = asyncio.run(execute(process, task_name, target))
    except RunCanceledError as e:
        result = e.result
        if output_format == "json":
            click.echo(format_results_json(result, time.perf_counter() - start))
        raise click.ClickException(str(e))
    except SimplotaskError as e:
        raise click.ClickException(str(e))
    duration = time.perf_counter() - start

    if output_format == "json":
        click.echo(format_results_json(result, duration))
    else:
        click.echo(format_results_text(result))

    if not result.is_success():
        raise click.ClickException(
            f"{result.total_hosts - result.successful} of {result.total_hosts} host(s) did not succeed"
        )


@cli.command("hosts")
@target_options
def list_hosts(
    file: str,
    target: str,
    hosts: tuple[str, ...],
    inventory: Optional[str],
    inventory_http: Optional[str],
) -> None:
    """Show the hosts a target resolves to."""
    playbook = _load(file, hosts, inventory, inventory_http)
    try:
        resolved = asyncio.run(playbook.target_hosts(target))
    except SimplotaskError as e:
        raise click.ClickException(str(e))

    click.echo(f"Target '{target}': {len(resolved)} host(s)")
    for host in resolved:
        user = f" (user: {host.user})" if host.user else ""
        click.echo(f"  - {host.display_name} -> {host.address}:{host.port}{user}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
