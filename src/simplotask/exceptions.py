"""Simplotask exceptions.

Configuration errors (unknown task or target, inventory and connector
build failures) are fatal for a run and propagate to the caller.
ConnectError is host-scoped: the runner captures it into that host's
result and never lets it abort sibling hosts.
"""

from enum import Enum
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from .types import RunResult


class SimplotaskError(Exception):
    """Base class for all simplotask errors.

    Attributes:
        msg: Human-readable error message
        details: Structured fields describing the error

    Example:
        raise SimplotaskError("Bad playbook", path="spt.yml")
        # details: {"msg": "Bad playbook", "path": "spt.yml"}
    """

    def __init__(self, msg: str, **details: Any) -> None:
        super().__init__(msg)
        self.msg = msg
        self.details: dict[str, Any] = {"msg": msg, **details}

    def __str__(self) -> str:
        return self.msg


class ConfigError(SimplotaskError):
    """Raised when a playbook cannot be loaded or is malformed."""


class UnknownTaskError(ConfigError):
    """Raised when a task name is not defined in the playbook."""

    def __init__(self, task: str) -> None:
        super().__init__(f"Unknown task '{task}'", task=task)
        self.task = task


class UnknownTargetError(ConfigError):
    """Raised when a target name cannot be resolved to any host source."""

    def __init__(self, target: str) -> None:
        super().__init__(f"Unknown target '{target}'", target=target)
        self.target = target


class InventoryError(ConfigError):
    """Raised when an inventory file or URL cannot be read or parsed."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"Can't load inventory from {source}: {reason}", source=source)
        self.source = source


class ConnectorBuildError(SimplotaskError):
    """Raised when a connector cannot be constructed from user and key."""

    def __init__(self, key_path: str, reason: str) -> None:
        super().__init__(f"Can't use ssh key {key_path}: {reason}", key_path=key_path)
        self.key_path = key_path


class ConnectErrorKind(str, Enum):
    UNREACHABLE = "unreachable"
    AUTH_FAILED = "auth-failed"
    KEY_UNREADABLE = "key-unreadable"
    TIMEOUT = "timeout"


class ConnectError(SimplotaskError):
    """Raised when a session to a single host cannot be established."""

    def __init__(self, host: str, kind: ConnectErrorKind, reason: str = "") -> None:
        msg = f"Can't connect to {host}: {kind.value}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg, host=host, kind=kind.value)
        self.host = host
        self.kind = kind


class RunCanceledError(SimplotaskError):
    """Raised when a run is canceled before any host completed.

    The partial result (hosts marked canceled or not-run) is attached.
    """

    def __init__(self, result: "RunResult") -> None:
        super().__init__(
            f"Run of task '{result.task}' on '{result.target}' canceled before any host completed",
            task=result.task,
            target=result.target,
        )
        self.result = result
