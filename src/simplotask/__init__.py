"""simplotask - run playbook tasks on remote hosts over SSH.

Quick Start:
    from simplotask import ExecutionContext, Process, SSHConnector, load_playbook

    playbook = load_playbook("spt.yml")
    connector = SSHConnector("deploy", "~/.ssh/id_rsa")
    process = Process(connector=connector, config=playbook, concurrency=5)
    result = await process.run(ExecutionContext(), "deploy", "prod")
"""

__version__ = "0.1.0"

from simplotask.config import Overrides, PlayBook, load_playbook, resolve_connection
from simplotask.context import ExecutionContext
from simplotask.remote import Connector, Session, SSHConnector
from simplotask.runner import Process, filter_commands
from simplotask.types import HostResult, HostStatus, RunResult

__all__ = [
    "__version__",
    "Connector",
    "ExecutionContext",
    "HostResult",
    "HostStatus",
    "Overrides",
    "PlayBook",
    "Process",
    "RunResult",
    "SSHConnector",
    "Session",
    "filter_commands",
    "load_playbook",
    "resolve_connection",
]
