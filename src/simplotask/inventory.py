"""Inventory loading for simplotask.

Host lists can come from an inventory file or an inventory HTTP
endpoint. Both return the same payload formats:

- Plain text: one ``address[:port]`` per line, ``#`` starts a comment
- YAML/JSON list of host entries (strings or mappings)
- YAML/JSON mapping with a top-level ``hosts`` key
- Ansible-style groups, either YAML (``hosts`` as a mapping of host
  vars) or ``--list`` JSON (``hosts`` as names plus ``_meta.hostvars``)

A host entry mapping accepts ``host``/``address``/``ansible_host``,
``port``/``ansible_port``, ``user``/``ansible_user`` and ``name``.
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterable

import httpx
import yaml

from .exceptions import InventoryError
from .types import Host

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 30.0


def parse_host_entry(entry: Any, name: str | None = None) -> Host:
    """Build a Host from a string or mapping entry.

    Args:
        entry: ``address[:port]`` string or mapping of host fields
        name: Host name to use when the mapping doesn't carry an address

    Raises:
        ValueError: If the entry is not a valid host

    Example:
        >>> parse_host_entry("10.0.0.1:2222")
        Host(address='10.0.0.1', port=2222, user=None, name=None)
        >>> parse_host_entry({"ansible_host": "10.0.0.2", "ansible_user": "ops"}, name="web02")
        Host(address='10.0.0.2', port=22, user='ops', name='web02')
    """
    if isinstance(entry, str):
        host = Host.parse(entry)
        return Host(address=host.address, port=host.port, name=name) if name else host

    if entry is None:
        entry = {}
    if not isinstance(entry, dict):
        raise ValueError(f"Invalid host entry: {entry!r}")

    address = entry.get("host") or entry.get("address") or entry.get("ansible_host") or name
    if not address:
        raise ValueError(f"Host entry has no address: {entry!r}")
    port = entry.get("port", entry.get("ansible_port", 22))
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid port for host {address}: {port!r}") from None
    user = entry.get("user") or entry.get("ansible_user") or None
    return Host(address=str(address), port=port, user=user, name=entry.get("name") or name)


def unique_hosts(hosts: Iterable[Host]) -> list[Host]:
    """Drop hosts with an already seen (address, port), keeping order."""
    seen: set[tuple[str, int]] = set()
    result: list[Host] = []
    for host in hosts:
        if host.key in seen:
            logger.debug(f"Skipping duplicate host {host.display_name}")
            continue
        seen.add(host.key)
        result.append(host)
    return result


def _parse_plain(text: str) -> list[Host]:
    hosts = []
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if line:
            hosts.append(Host.parse(line))
    return hosts


def _parse_hosts_value(value: Any, hostvars: dict[str, Any]) -> list[Host]:
    if isinstance(value, list):
        hosts = []
        for entry in value:
            if isinstance(entry, str) and entry in hostvars:
                hosts.append(parse_host_entry(hostvars[entry], name=entry))
            else:
                hosts.append(parse_host_entry(entry))
        return hosts
    if isinstance(value, dict):
        return [parse_host_entry(vars_, name=name) for name, vars_ in value.items()]
    raise ValueError(f"'hosts' must be a list or a mapping, got {type(value).__name__}")


def _parse_structured(data: Any) -> list[Host]:
    if isinstance(data, list):
        return [parse_host_entry(entry) for entry in data]

    meta = data.get("_meta")
    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise ValueError(f"'_meta' must be a mapping, got {type(meta).__name__}")
    hostvars = meta.get("hostvars")
    if hostvars is None:
        hostvars = {}
    if not isinstance(hostvars, dict):
        raise ValueError(f"'_meta.hostvars' must be a mapping, got {type(hostvars).__name__}")

    if "hosts" in data:
        return _parse_hosts_value(data["hosts"], hostvars)

    hosts: list[Host] = []
    for group_name, group_data in data.items():
        if group_name == "_meta" or not isinstance(group_data, dict):
            continue
        if "hosts" in group_data:
            hosts.extend(_parse_hosts_value(group_data["hosts"], hostvars))
    return hosts


def parse_inventory(text: str) -> list[Host]:
    """Parse an inventory payload into a deduplicated host list.

    Raises:
        ValueError: If the payload is malformed or contains no hosts
    """
    stripped = text.lstrip()
    if stripped.startswith(("{", "[")):
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)

    if isinstance(data, (list, dict)):
        hosts = _parse_structured(data)
    else:
        hosts = _parse_plain(text)

    if not hosts:
        raise ValueError("no hosts found")
    return unique_hosts(hosts)


def load_inventory_file(path: str | Path) -> list[Host]:
    """Load hosts from an inventory file.

    Raises:
        InventoryError: If the file can't be read or parsed
    """
    path = Path(path).expanduser()
    try:
        text = path.read_text()
    except OSError as e:
        raise InventoryError(str(path), e.strerror or str(e)) from e

    try:
        hosts = parse_inventory(text)
    except (ValueError, yaml.YAMLError) as e:
        raise InventoryError(str(path), str(e)) from e

    logger.debug(f"Loaded {len(hosts)} host(s) from {path}")
    return hosts


async def load_inventory_http(url: str, timeout: float = DEFAULT_HTTP_TIMEOUT) -> list[Host]:
    """Fetch hosts from an inventory HTTP endpoint.

    The endpoint is queried on every call, so dynamic inventories are
    always current.

    Raises:
        InventoryError: On transport errors, non-2xx status or bad payload
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.TimeoutException:
        raise InventoryError(url, f"request timed out after {timeout}s") from None
    except httpx.HTTPStatusError as e:
        raise InventoryError(url, f"HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise InventoryError(url, str(e)) from e

    try:
        hosts = parse_inventory(response.text)
    except (ValueError, yaml.YAMLError) as e:
        raise InventoryError(url, str(e)) from e

    logger.debug(f"Loaded {len(hosts)} host(s) from {url}")
    return hosts
