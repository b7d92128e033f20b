"""Type definitions for simplotask.

This module defines the data types shared by the playbook resolver, the
connector and the process runner. Playbook types (Host, Command, Task,
Target) are immutable once loaded; outcome types (CommandOutcome,
HostResult, RunResult) are produced by a run and consumed by the caller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class Host:
    """A destination host for remote execution.

    Attributes:
        address: Hostname or IP address used for the SSH connection
        port: SSH port number (default: 22)
        user: Optional per-host user, refines the run's effective user
        name: Optional display name (defaults to address:port)

    Example:
        >>> host = Host(address="10.0.0.1", port=2222)
        >>> host.display_name
        '10.0.0.1:2222'
        >>> Host.parse("web01.example.com:2200").port
        2200
    """

    address: str
    port: int = 22
    user: str | None = None
    name: str | None = None

    @property
    def display_name(self) -> str:
        """Name used in logs and results."""
        return self.name or f"{self.address}:{self.port}"

    @property
    def key(self) -> tuple[str, int]:
        """Identity used for deduplication."""
        return self.address, self.port

    @classmethod
    def parse(cls, value: str) -> "Host":
        """Parse an ``address[:port]`` string.

        Raises:
            ValueError: If the address is empty or the port is not a number
        """
        value = value.strip()
        if value.startswith("["):
            address, _, rest = value[1:].partition("]")
            port = rest[1:] if rest.startswith(":") else ""
        elif value.count(":") == 1:
            address, _, port = value.partition(":")
        else:
            # no port, or a bare IPv6 address
            address, port = value, ""
        if not address:
            raise ValueError(f"Invalid host: {value!r}")
        if not port:
            return cls(address=address)
        try:
            return cls(address=address, port=int(port))
        except ValueError:
            raise ValueError(f"Invalid port in host {value!r}") from None


@dataclass(frozen=True)
class CommandOptions:
    """Per-command execution options.

    Attributes:
        ignore_errors: A failure of this command does not stop or fail the host
        no_auto: Only run this command when it is explicitly listed in Only
    """

    ignore_errors: bool = False
    no_auto: bool = False


@dataclass(frozen=True)
class Command:
    """A single remote shell instruction.

    Attributes:
        script: Shell script to run (may span multiple lines)
        name: Optional name used by the Only/Skip filters
        env: Environment variables exported before the script runs
        options: Execution options
    """

    script: str
    name: str | None = None
    env: dict[str, str] = field(default_factory=dict, hash=False)
    options: CommandOptions = field(default_factory=CommandOptions)

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        lines = self.script.strip().splitlines()
        return lines[0][:60] if lines else ""


@dataclass(frozen=True)
class Task:
    """A named, ordered sequence of commands.

    Attributes:
        name: Task name, unique within a playbook
        commands: Commands in declared execution order
        user: Optional per-task user override
    """

    name: str
    commands: tuple[Command, ...] = ()
    user: str | None = None


@dataclass(frozen=True)
class Target:
    """A named set of destination hosts.

    Hosts are resolved lazily at run time, since an inventory URL may
    return a different list on every request.

    Attributes:
        name: Target name
        hosts: Explicitly declared hosts
        inventory_file: Optional path of an inventory file
        inventory_url: Optional URL of an HTTP inventory
    """

    name: str
    hosts: tuple[Host, ...] = ()
    inventory_file: str | None = None
    inventory_url: str | None = None


@dataclass(frozen=True)
class ConnectionSpec:
    """Resolved credentials used to authenticate every host of a run."""

    user: str
    key_path: str


class CommandStatus(str, Enum):
    """Status of one command on one host."""

    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELED = "canceled"


class HostStatus(str, Enum):
    """Overall status of one host's command sequence."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"
    NOT_RUN = "not-run"


@dataclass
class CommandOutcome:
    """Result of running one command on one host.

    Attributes:
        command: The command that was (or was not) executed
        status: Outcome status
        output: Combined stdout/stderr captured from the remote shell
        exit_status: Remote exit status, None if the command never finished
        error: Error detail when the command failed or was canceled
        ignored: True when a failure was tolerated via ignore_errors
    """

    command: Command
    status: CommandStatus
    output: str = ""
    exit_status: int | None = None
    error: str | None = None
    ignored: bool = False

    @property
    def ok(self) -> bool:
        return self.status == CommandStatus.OK

    @property
    def failed(self) -> bool:
        return self.status in (CommandStatus.FAILED, CommandStatus.CANCELED) and not self.ignored


@dataclass
class HostResult:
    """Aggregate of all command outcomes for one host.

    Attributes:
        host: The host these outcomes belong to
        status: Overall host status
        outcomes: Outcomes in execution order
        error: Host-level error (connect failure, cancellation)
        duration: Seconds spent on the host, including connect
    """

    host: Host
    status: HostStatus
    outcomes: list[CommandOutcome] = field(default_factory=list)
    error: str | None = None
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == HostStatus.SUCCESS

    @property
    def completed(self) -> bool:
        """Whether the host ran to a terminal success or failure."""
        return self.status in (HostStatus.SUCCESS, HostStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "host": self.host.display_name,
            "status": self.status.value,
            "error": self.error,
            "duration": round(self.duration, 3),
            "commands": [
                {
                    "name": outcome.command.label,
                    "status": outcome.status.value,
                    "exit_status": outcome.exit_status,
                    "output": outcome.output,
                    "error": outcome.error,
                    "ignored": outcome.ignored,
                }
                for outcome in self.outcomes
            ],
        }


@dataclass
class RunResult:
    """Aggregate outcome of one task-against-target invocation.

    Attributes:
        task: Task name
        target: Target name
        hosts: One result per resolved host, in resolved host order
        error: Process-level error if the run was aborted before completion

    Example:
        >>> result = RunResult(task="deploy", target="prod")
        >>> result.is_success()
        True
    """

    task: str
    target: str
    hosts: list[HostResult] = field(default_factory=list)
    error: str | None = None

    @property
    def total_hosts(self) -> int:
        return len(self.hosts)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.hosts if r.status == HostStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.hosts if r.status == HostStatus.FAILED)

    @property
    def canceled(self) -> int:
        return sum(1 for r in self.hosts if r.status == HostStatus.CANCELED)

    @property
    def not_run(self) -> int:
        return sum(1 for r in self.hosts if r.status == HostStatus.NOT_RUN)

    def is_success(self) -> bool:
        """Check if every host succeeded and the run was not aborted."""
        return self.error is None and all(r.success for r in self.hosts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "target": self.target,
            "total_hosts": self.total_hosts,
            "successful": self.successful,
            "failed": self.failed,
            "canceled": self.canceled,
            "not_run": self.not_run,
            "error": self.error,
            "hosts": [r.to_dict() for r in self.hosts],
        }
