"""Tests for inventory loading."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from simplotask.exceptions import InventoryError
from simplotask.inventory import (
    load_inventory_file,
    load_inventory_http,
    parse_host_entry,
    parse_inventory,
    unique_hosts,
)
from simplotask.types import Host


INVENTORY_URL = "http://inventory.local/hosts"


def addresses(hosts):
    return [(h.address, h.port) for h in hosts]


def mock_http(mock_client, response=None, error=None):
    """Wire a patched httpx.AsyncClient to return a response or raise."""
    client = AsyncMock()
    if error is not None:
        client.get.side_effect = error
    else:
        client.get.return_value = response
    mock_client.return_value.__aenter__.return_value = client
    return client


def http_response(status: int, text: str = "") -> httpx.Response:
    return httpx.Response(status, text=text, request=httpx.Request("GET", INVENTORY_URL))


class TestParseHostEntry:
    """Tests for parse_host_entry."""

    def test_string(self):
        """Test address:port strings."""
        assert parse_host_entry("10.0.0.1:2222") == Host(address="10.0.0.1", port=2222)

    def test_string_with_name(self):
        """Test a name is attached to a string entry."""
        host = parse_host_entry("10.0.0.1", name="web01")
        assert host.name == "web01"
        assert host.display_name == "web01"

    def test_mapping(self):
        """Test mapping entries with plain keys."""
        host = parse_host_entry({"host": "h1", "port": "2200", "user": "ops", "name": "one"})
        assert host == Host(address="h1", port=2200, user="ops", name="one")

    def test_ansible_vars(self):
        """Test mapping entries with Ansible host vars."""
        host = parse_host_entry({"ansible_host": "10.0.0.2", "ansible_port": 2022}, name="web02")
        assert host == Host(address="10.0.0.2", port=2022, name="web02")

    def test_name_as_address(self):
        """Test the inventory name is the address when no vars are set."""
        assert parse_host_entry(None, name="db01").address == "db01"

    def test_no_address(self):
        """Test a mapping without address fails."""
        with pytest.raises(ValueError, match="no address"):
            parse_host_entry({"port": 22})

    def test_bad_port(self):
        """Test a non-numeric port fails."""
        with pytest.raises(ValueError, match="Invalid port"):
            parse_host_entry({"host": "h1", "port": "ssh"})

    def test_bad_type(self):
        """Test unsupported entry types fail."""
        with pytest.raises(ValueError):
            parse_host_entry(42)


class TestUniqueHosts:
    """Tests for host deduplication."""

    def test_dedupe_keeps_first(self):
        """Test duplicates by (address, port) are dropped, first one wins."""
        hosts = [
            Host("h1", name="first"),
            Host("h2"),
            Host("h1", name="second"),
            Host("h1", port=2222),
        ]
        result = unique_hosts(hosts)
        assert addresses(result) == [("h1", 22), ("h2", 22), ("h1", 2222)]
        assert result[0].name == "first"


class TestParseInventory:
    """Tests for inventory payload formats."""

    def test_plain_text(self):
        """Test one host per line with comments."""
        text = "# web tier\nh1\nh2:2222  # alt port\n\nh3\n"
        assert addresses(parse_inventory(text)) == [("h1", 22), ("h2", 2222), ("h3", 22)]

    def test_yaml_list(self):
        """Test a YAML list of strings and mappings."""
        text = "- h1\n- host: h2\n  port: 2200\n  user: ops\n"
        hosts = parse_inventory(text)
        assert addresses(hosts) == [("h1", 22), ("h2", 2200)]
        assert hosts[1].user == "ops"

    def test_hosts_key(self):
        """Test a mapping with a top-level hosts list."""
        text = "hosts:\n  - h1\n  - h2\n"
        assert addresses(parse_inventory(text)) == [("h1", 22), ("h2", 22)]

    def test_ansible_yaml_groups(self):
        """Test Ansible-style YAML groups with host vars."""
        text = (
            "webservers:\n"
            "  hosts:\n"
            "    web01:\n"
            "      ansible_host: 10.0.0.1\n"
            "    web02:\n"
            "      ansible_host: 10.0.0.2\n"
            "      ansible_port: 2222\n"
            "databases:\n"
            "  hosts:\n"
            "    db01:\n"
        )
        hosts = parse_inventory(text)
        assert addresses(hosts) == [("10.0.0.1", 22), ("10.0.0.2", 2222), ("db01", 22)]
        assert [h.name for h in hosts] == ["web01", "web02", "db01"]

    def test_ansible_json_list(self):
        """Test Ansible --list JSON with _meta.hostvars."""
        text = """
        {
            "web": {"hosts": ["web01", "web02"]},
            "db": {"hosts": ["web01"]},
            "_meta": {"hostvars": {"web01": {"ansible_host": "10.0.0.1"}}}
        }
        """
        hosts = parse_inventory(text)
        assert addresses(hosts) == [("10.0.0.1", 22), ("web02", 22)]
        assert hosts[0].name == "web01"

    def test_json_list(self):
        """Test a JSON list payload."""
        hosts = parse_inventory('["h1:2201", {"address": "h2"}]')
        assert addresses(hosts) == [("h1", 2201), ("h2", 22)]

    def test_duplicates_removed(self):
        """Test duplicate hosts across groups are removed."""
        text = "a:\n  hosts: [h1, h2]\nb:\n  hosts: [h2, h1]\n"
        assert addresses(parse_inventory(text)) == [("h1", 22), ("h2", 22)]

    def test_empty(self):
        """Test an empty payload fails."""
        with pytest.raises(ValueError, match="no hosts found"):
            parse_inventory("# nothing here\n")

    def test_bad_json(self):
        """Test malformed JSON fails with ValueError."""
        with pytest.raises(ValueError):
            parse_inventory('{"hosts": [')


class TestLoadInventoryFile:
    """Tests for load_inventory_file."""

    def test_load(self, tmp_path):
        """Test loading a YAML inventory file."""
        path = tmp_path / "inventory.yml"
        path.write_text("hosts:\n  - h1\n  - h2:2222\n")
        assert addresses(load_inventory_file(path)) == [("h1", 22), ("h2", 2222)]

    def test_missing(self, tmp_path):
        """Test a missing file raises InventoryError."""
        path = tmp_path / "missing.yml"
        with pytest.raises(InventoryError) as exc_info:
            load_inventory_file(path)
        assert exc_info.value.source == str(path)

    def test_malformed(self, tmp_path):
        """Test a malformed file raises InventoryError."""
        path = tmp_path / "bad.yml"
        path.write_text("hosts: [h1\n")
        with pytest.raises(InventoryError):
            load_inventory_file(path)

    @pytest.mark.parametrize(
        "content",
        ["_meta: []\nall:\n  hosts: [h1]\n", "_meta:\n  hostvars: [h1]\nall:\n  hosts: [h1]\n"],
    )
    def test_malformed_meta(self, tmp_path, content):
        """Test a non-mapping _meta or hostvars raises InventoryError."""
        path = tmp_path / "inventory.yml"
        path.write_text(content)
        with pytest.raises(InventoryError, match="must be a mapping"):
            load_inventory_file(path)

    def test_empty(self, tmp_path):
        """Test an inventory without hosts raises InventoryError."""
        path = tmp_path / "empty.yml"
        path.write_text("")
        with pytest.raises(InventoryError, match="no hosts found"):
            load_inventory_file(path)


class TestLoadInventoryHttp:
    """Tests for load_inventory_http."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Test hosts are parsed from the response body."""
        with patch("simplotask.inventory.httpx.AsyncClient") as mock_client:
            client = mock_http(mock_client, http_response(200, "- h1\n- h2:2222\n"))

            hosts = await load_inventory_http(INVENTORY_URL, timeout=5)

            assert addresses(hosts) == [("h1", 22), ("h2", 2222)]
            client.get.assert_awaited_once_with(INVENTORY_URL)
            mock_client.assert_called_once_with(timeout=5, follow_redirects=True)

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        """Test a non-2xx response raises InventoryError."""
        with patch("simplotask.inventory.httpx.AsyncClient") as mock_client:
            mock_http(mock_client, http_response(404, "Not Found"))

            with pytest.raises(InventoryError) as exc_info:
                await load_inventory_http(INVENTORY_URL)

            assert "HTTP 404" in str(exc_info.value)
            assert exc_info.value.source == INVENTORY_URL

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test a timeout raises InventoryError."""
        with patch("simplotask.inventory.httpx.AsyncClient") as mock_client:
            mock_http(mock_client, error=httpx.ConnectTimeout("timed out"))

            with pytest.raises(InventoryError, match="timed out"):
                await load_inventory_http(INVENTORY_URL, timeout=1)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Test a transport error raises InventoryError."""
        with patch("simplotask.inventory.httpx.AsyncClient") as mock_client:
            mock_http(mock_client, error=httpx.ConnectError("connection refused"))

            with pytest.raises(InventoryError, match="connection refused"):
                await load_inventory_http(INVENTORY_URL)

    @pytest.mark.asyncio
    async def test_malformed_meta(self):
        """Test a --list payload with a non-mapping _meta raises InventoryError."""
        with patch("simplotask.inventory.httpx.AsyncClient") as mock_client:
            mock_http(mock_client, http_response(200, '{"_meta": [], "web": {"hosts": ["h1"]}}'))

            with pytest.raises(InventoryError, match="'_meta' must be a mapping"):
                await load_inventory_http(INVENTORY_URL)

    @pytest.mark.asyncio
    async def test_bad_payload(self):
        """Test an empty body raises InventoryError."""
        with patch("simplotask.inventory.httpx.AsyncClient") as mock_client:
            mock_http(mock_client, http_response(200, ""))

            with pytest.raises(InventoryError, match="no hosts found"):
                await load_inventory_http(INVENTORY_URL)
