"""Remote execution transport for simplotask.

Defines the Connector and Session capabilities used by the runner and
their asyncssh implementation.

- A Connector is built once per run from the resolved (user, key) pair
  and is safe to share between concurrent host units.
- Connector.connect() opens one Session per host. Sessions are never
  shared and must be closed on every exit path.
- Session.run() executes one command and always returns a
  CommandOutcome; a non-zero exit status is a command failure, not an
  exception.
"""

import asyncio
import logging
import os
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import asyncssh

from .context import ContextCanceled, ExecutionContext
from .exceptions import ConnectError, ConnectErrorKind, ConnectorBuildError
from .logging import TRACE
from .types import Command, CommandOutcome, CommandStatus, ConnectionSpec, Host

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0


def build_shell_command(command: Command) -> str:
    """Render a command into the line executed by the remote shell.

    Single-line scripts without environment run as-is. Multi-line
    scripts and scripts with environment are wrapped in ``sh -c`` with
    ``set -e``, so the first failing line fails the command.

    Example:
        >>> build_shell_command(Command(script="uptime"))
        'uptime'
        >>> build_shell_command(Command(script="ls /tmp", env={"A": "1"}))
        "sh -c 'set -e\\nexport A=1\\nls /tmp'"
    """
    lines = [line for line in command.script.strip().splitlines() if line.strip()]
    if len(lines) == 1 and not command.env:
        return lines[0].strip()

    body = ["set -e"]
    body.extend(f"export {key}={shlex.quote(str(value))}" for key, value in command.env.items())
    body.extend(lines)
    script = "\n".join(body)
    return f"sh -c {shlex.quote(script)}"


class Session(ABC):
    """A live authenticated connection to a single host."""

    host: Host

    @abstractmethod
    async def run(
        self,
        ctx: ExecutionContext,
        command: Command,
        timeout: float | None = None,
    ) -> CommandOutcome:
        """Run one command and capture its combined output.

        Must return a CANCELED outcome promptly if ``ctx`` is cancelled
        while the command is in flight.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. Calling it again is a no-op."""


class Connector(ABC):
    """Opens sessions to hosts with a fixed connection spec."""

    @property
    @abstractmethod
    def spec(self) -> ConnectionSpec:
        """Credentials used for every connection."""

    @abstractmethod
    async def connect(
        self,
        ctx: ExecutionContext,
        host: Host,
        timeout: float | None = None,
    ) -> Session:
        """Open a session to ``host``.

        Raises:
            ConnectError: If the host can't be reached or authenticated
            ContextCanceled: If ``ctx`` is cancelled before the session opens
        """


def expand_key_path(key_path: str) -> Path:
    """Expand a home-directory shorthand in a private key path.

    Raises:
        ConnectorBuildError: If the path is empty or can't be expanded
    """
    if not key_path:
        raise ConnectorBuildError(key_path, "key path is empty")
    expanded = os.path.expanduser(key_path)
    if expanded.startswith("~"):
        raise ConnectorBuildError(key_path, "can't expand home directory")
    return Path(expanded)


class SSHSession(Session):
    """Session backed by an asyncssh client connection."""

    def __init__(self, host: Host, conn: asyncssh.SSHClientConnection) -> None:
        self.host = host
        self._conn = conn
        self._closed = False

    async def run(
        self,
        ctx: ExecutionContext,
        command: Command,
        timeout: float | None = None,
    ) -> CommandOutcome:
        if self._closed:
            raise RuntimeError(f"Session to {self.host.display_name} is closed")

        shell = build_shell_command(command)
        logger.log(TRACE, f"Running on {self.host.display_name}: {shell[:200]}")

        try:
            result = await ctx.guard(
                asyncio.wait_for(
                    self._conn.run(shell, check=False, stderr=asyncssh.STDOUT),
                    timeout=timeout,
                )
            )
        except ContextCanceled as e:
            logger.debug(f"Command canceled on {self.host.display_name}: {command.label}")
            return CommandOutcome(command, CommandStatus.CANCELED, error=e.reason)
        except asyncio.TimeoutError:
            logger.error(f"Command timed out after {timeout}s on {self.host.display_name}: {command.label}")
            return CommandOutcome(command, CommandStatus.FAILED, error=f"Command timed out after {timeout}s")
        except (asyncssh.Error, OSError) as e:
            logger.error(f"Command error on {self.host.display_name}: {e}")
            return CommandOutcome(command, CommandStatus.FAILED, error=f"Command error: {e}")

        output = result.stdout or ""
        if isinstance(output, bytes):
            output = output.decode(errors="replace")
        exit_status = result.exit_status

        logger.debug(
            f"Command completed on {self.host.display_name}: rc={exit_status}, "
            f"output={len(output)} bytes"
        )

        # asyncssh reports exit_status -1 for signal-terminated commands
        if result.exit_signal:
            error = f"Command killed by signal {result.exit_signal[0]}"
        elif exit_status == 0:
            return CommandOutcome(command, CommandStatus.OK, output=output, exit_status=0)
        else:
            error = f"Command exited with status {exit_status}"
        return CommandOutcome(command, CommandStatus.FAILED, output=output, exit_status=exit_status, error=error)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._conn.close()
        await self._conn.wait_closed()
        logger.debug(f"Disconnected from {self.host.display_name}")


class SSHConnector(Connector):
    """Connector opening asyncssh sessions with key authentication.

    Example:
        connector = SSHConnector("deploy", "~/.ssh/id_ed25519")
        session = await connector.connect(ctx, Host("web01.example.com"))
        try:
            outcome = await session.run(ctx, Command(script="uptime"))
        finally:
            await session.close()
    """

    def __init__(
        self,
        user: str,
        key_path: str,
        known_hosts: str | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        keepalive_interval: float = 30.0,
    ) -> None:
        """Initialize the connector.

        Args:
            user: SSH username, may be refined per host
            key_path: Private key path, ``~`` is expanded
            known_hosts: Known hosts file (None to disable checking)
            connect_timeout: Default connection timeout in seconds
            keepalive_interval: Keepalive interval (0 to disable)

        Raises:
            ConnectorBuildError: If the user is empty or the key can't be read
        """
        key = expand_key_path(key_path)
        if not user:
            raise ConnectorBuildError(key_path, "ssh user is empty")
        try:
            with open(key, "rb"):
                pass
        except OSError as e:
            raise ConnectorBuildError(key_path, e.strerror or str(e)) from e

        self._spec = ConnectionSpec(user=user, key_path=str(key))
        self.known_hosts = known_hosts
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval

    @property
    def spec(self) -> ConnectionSpec:
        return self._spec

    def _connect_options(self, host: Host, timeout: float) -> dict[str, Any]:
        """Build asyncssh.connect() kwargs for a host."""
        return {
            "host": host.address,
            "port": host.port,
            "username": host.user or self._spec.user,
            "client_keys": [self._spec.key_path],
            "known_hosts": self.known_hosts,
            "connect_timeout": timeout,
            "keepalive_interval": self.keepalive_interval,
        }

    async def connect(
        self,
        ctx: ExecutionContext,
        host: Host,
        timeout: float | None = None,
    ) -> Session:
        name = host.display_name
        if not host.address:
            raise ConnectError(name, ConnectErrorKind.UNREACHABLE, "empty address")
        if not os.access(self._spec.key_path, os.R_OK):
            raise ConnectError(name, ConnectErrorKind.KEY_UNREADABLE, self._spec.key_path)

        timeout = timeout or self.connect_timeout
        options = self._connect_options(host, timeout)
        logger.debug(f"Connecting to {options['username']}@{host.address}:{host.port}")

        try:
            conn = await ctx.guard(asyncio.wait_for(asyncssh.connect(**options), timeout=timeout))
        except asyncio.TimeoutError:
            raise ConnectError(name, ConnectErrorKind.TIMEOUT, f"no response in {timeout}s") from None
        except asyncssh.PermissionDenied as e:
            raise ConnectError(name, ConnectErrorKind.AUTH_FAILED, e.reason) from e
        except asyncssh.KeyImportError as e:
            raise ConnectError(name, ConnectErrorKind.KEY_UNREADABLE, str(e)) from e
        except asyncssh.Error as e:
            raise ConnectError(name, ConnectErrorKind.UNREACHABLE, e.reason) from e
        except OSError as e:
            raise ConnectError(name, ConnectErrorKind.UNREACHABLE, e.strerror or str(e)) from e

        logger.info(f"Connected to {name}")
        return SSHSession(host, conn)
