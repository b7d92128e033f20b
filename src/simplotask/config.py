"""Playbook loading and resolution for simplotask.

A playbook is a YAML document with global defaults, targets and tasks:

    user: deploy
    ssh_key: ~/.ssh/id_rsa
    targets:
      prod:
        hosts: ["h1.example.com", "h2.example.com:2222"]
        inventory_file: inventory.yml
        inventory_url: http://inventory.local/hosts
    tasks:
      deploy:
        user: app
        commands:
          - name: pull
            script: docker pull app
          - name: restart
            script: docker restart app
            options: {ignore_errors: true}

The PlayBook resolves a task name into its command list and a target
name into a host list, applying command-line overrides. Target hosts
are resolved at run time, not at load time.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError, UnknownTargetError, UnknownTaskError
from .inventory import load_inventory_file, load_inventory_http, parse_host_entry, unique_hosts
from .types import Command, CommandOptions, ConnectionSpec, Host, Target, Task

logger = logging.getLogger(__name__)

DEFAULT_PLAYBOOK = "spt.yml"
DEFAULT_SSH_KEY = "~/.ssh/id_rsa"


@dataclass
class Overrides:
    """Command-line overrides for target resolution.

    At most one source is used, in this order: hosts, inventory_file,
    inventory_http, then the target declared in the playbook.
    """

    hosts: list[str] = field(default_factory=list)
    inventory_file: str | None = None
    inventory_http: str | None = None


@dataclass
class PlayBook:
    """Tasks, targets and global defaults loaded from a playbook file.

    Attributes:
        tasks: Tasks by name
        targets: Targets by name
        user: Global default SSH user
        ssh_key: Global default private key path
        overrides: Command-line overrides applied to target resolution
        source: Path of the file the playbook was loaded from
    """

    tasks: dict[str, Task] = field(default_factory=dict)
    targets: dict[str, Target] = field(default_factory=dict)
    user: str = ""
    ssh_key: str = DEFAULT_SSH_KEY
    overrides: Overrides = field(default_factory=Overrides)
    source: Path | None = None

    def task(self, name: str) -> Task:
        """Get a task by name.

        Raises:
            UnknownTaskError: If the task is not defined
        """
        try:
            return self.tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    async def target_hosts(self, name: str) -> list[Host]:
        """Resolve a target into a deduplicated host list.

        Exactly one source is used: the first set of hosts, inventory_file
        or inventory_http overrides, else the first of the target's hosts,
        inventory_file or inventory_url.

        Raises:
            UnknownTargetError: If no override is set and the target is not defined
            InventoryError: If an inventory source can't be loaded
        """
        overrides = self.overrides
        if overrides.hosts:
            logger.debug(f"Using {len(overrides.hosts)} host(s) from command line")
            return unique_hosts(_parse_override_hosts(overrides.hosts))
        if overrides.inventory_file:
            return load_inventory_file(overrides.inventory_file)
        if overrides.inventory_http:
            return await load_inventory_http(overrides.inventory_http)

        target = self.targets.get(name)
        if target is None:
            raise UnknownTargetError(name)

        # one source per target, same order as the overrides
        if target.hosts:
            return unique_hosts(target.hosts)
        if target.inventory_file:
            return load_inventory_file(self._relative(target.inventory_file))
        if target.inventory_url:
            return await load_inventory_http(target.inventory_url)
        raise UnknownTargetError(name)

    def _relative(self, path: str) -> Path:
        """Resolve a path declared in the playbook against its directory."""
        resolved = Path(path).expanduser()
        if not resolved.is_absolute() and self.source is not None:
            resolved = self.source.parent / resolved
        return resolved


def _parse_override_hosts(values: list[str]) -> list[Host]:
    hosts = []
    for value in values:
        try:
            hosts.append(Host.parse(value))
        except ValueError as e:
            raise ConfigError(str(e), host=value) from None
    return hosts


def resolve_connection(
    cmdline_user: str | None,
    cmdline_key: str | None,
    task: Task | None,
    playbook: PlayBook,
) -> ConnectionSpec:
    """Compute the effective (user, key) pair for a run.

    User precedence: command line > task > playbook default.
    Key precedence: command line > playbook default.

    Example:
        >>> pb = PlayBook(user="global", ssh_key="~/.ssh/global")
        >>> resolve_connection(None, None, Task(name="t", user="tuser"), pb)
        ConnectionSpec(user='tuser', key_path='~/.ssh/global')
    """
    user = playbook.user
    if task is not None and task.user:
        user = task.user
    if cmdline_user:
        user = cmdline_user

    key = playbook.ssh_key or DEFAULT_SSH_KEY
    if cmdline_key:
        key = cmdline_key
    return ConnectionSpec(user=user, key_path=key)


def _parse_command(raw: Any, where: str) -> Command:
    if isinstance(raw, str):
        return Command(script=raw)
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: command must be a mapping or a string")

    script = raw.get("script") or raw.get("cmd")
    if not script or not str(script).strip():
        raise ConfigError(f"{where}: command has no script")

    env = raw.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigError(f"{where}: 'env' must be a mapping")

    opts = raw.get("options") or {}
    if not isinstance(opts, dict):
        raise ConfigError(f"{where}: 'options' must be a mapping")
    unknown = set(opts) - {"ignore_errors", "no_auto"}
    if unknown:
        raise ConfigError(f"{where}: unknown options {sorted(unknown)}")

    name = raw.get("name")
    return Command(
        script=str(script),
        name=str(name) if name is not None else None,
        env={str(k): str(v) for k, v in env.items()},
        options=CommandOptions(
            ignore_errors=bool(opts.get("ignore_errors", False)),
            no_auto=bool(opts.get("no_auto", False)),
        ),
    )


def _parse_task(name: str, raw: Any) -> Task:
    if not isinstance(raw, dict):
        raise ConfigError(f"task '{name}' must be a mapping")
    raw_commands = raw.get("commands") or []
    if not isinstance(raw_commands, list):
        raise ConfigError(f"task '{name}': 'commands' must be a list")
    commands = tuple(
        _parse_command(cmd, f"task '{name}' command {pos}")
        for pos, cmd in enumerate(raw_commands, start=1)
    )
    return Task(name=name, commands=commands, user=raw.get("user") or None)


def _parse_tasks(raw: Any) -> dict[str, Task]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        items = list(raw.items())
    elif isinstance(raw, list):
        items = []
        for pos, entry in enumerate(raw, start=1):
            if not isinstance(entry, dict) or not entry.get("name"):
                raise ConfigError(f"task {pos} must be a mapping with a 'name'")
            items.append((entry["name"], entry))
    else:
        raise ConfigError("'tasks' must be a mapping or a list")

    tasks: dict[str, Task] = {}
    for name, entry in items:
        if name in tasks:
            raise ConfigError(f"duplicate task '{name}'")
        tasks[str(name)] = _parse_task(str(name), entry)
    return tasks


def _parse_target(name: str, raw: Any) -> Target:
    if isinstance(raw, list):
        raw = {"hosts": raw}
    if not isinstance(raw, dict):
        raise ConfigError(f"target '{name}' must be a mapping or a host list")
    raw_hosts = raw.get("hosts") or []
    if not isinstance(raw_hosts, list):
        raise ConfigError(f"target '{name}': 'hosts' must be a list")
    try:
        hosts = tuple(parse_host_entry(entry) for entry in raw_hosts)
    except ValueError as e:
        raise ConfigError(f"target '{name}': {e}") from None
    return Target(
        name=name,
        hosts=hosts,
        inventory_file=raw.get("inventory_file"),
        inventory_url=raw.get("inventory_url"),
    )


def parse_playbook(data: Any, overrides: Overrides | None = None) -> PlayBook:
    """Build a PlayBook from parsed YAML data.

    Raises:
        ConfigError: If the data is malformed
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("playbook must be a mapping")

    raw_targets = data.get("targets") or {}
    if not isinstance(raw_targets, dict):
        raise ConfigError("'targets' must be a mapping")

    return PlayBook(
        tasks=_parse_tasks(data.get("tasks")),
        targets={str(name): _parse_target(str(name), raw) for name, raw in raw_targets.items()},
        user=str(data.get("user") or ""),
        ssh_key=str(data.get("ssh_key") or DEFAULT_SSH_KEY),
        overrides=overrides or Overrides(),
    )


def load_playbook(path: str | Path, overrides: Overrides | None = None) -> PlayBook:
    """Load a playbook file.

    Raises:
        ConfigError: If the file can't be read or is malformed
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"Can't read playbook {path}: {e.strerror or e}", path=str(path)) from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Can't parse playbook {path}: {e}", path=str(path)) from e

    try:
        playbook = parse_playbook(data, overrides)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e.msg}", path=str(path)) from None

    playbook.source = path.resolve()
    logger.debug(f"Loaded playbook {path}: {len(playbook.tasks)} task(s), {len(playbook.targets)} target(s)")
    return playbook
