"""Translation of MCP connectors into each agent backend's config dialect.

Every backend declares tool servers differently: CLI flags (Claude), TOML
tables (Codex) or one of several JSON shapes. All of them are generated
from the same ConnectorConfig.
"""

import json
import logging
import re
import shlex
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

OPENCODE_SCHEMA_URL = "https://opencode.ai/config.json"


@dataclass(frozen=True)
class ConnectorConfig:
    """Decrypted connector handed read-only to an adapter for one execution."""

    name: str
    type: str
    command: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    base_url: str | None = None
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None

    @property
    def is_local(self) -> bool:
        return self.type == "local"

    @property
    def server_name(self) -> str:
        """Lowercase slug used as the server key in every dialect."""
        return re.sub(r"[^a-z0-9]", "-", self.name.lower())

    def command_parts(self) -> tuple[str, list[str]]:
        """Split the local command into executable and arguments."""
        parts = shlex.split(self.command or "")
        if not parts:
            raise ValueError(f"Connector {self.name} has no command")
        return parts[0], parts[1:]

    def auth_headers(self) -> dict[str, str]:
        headers = {}
        if self.oauth_client_secret:
            headers["Authorization"] = f"Bearer {self.oauth_client_secret}"
        if self.oauth_client_id:
            headers["X-Client-ID"] = self.oauth_client_id
        return headers


def usable_connectors(connectors: list[ConnectorConfig]) -> list[ConnectorConfig]:
    """Drop local connectors whose command line cannot be parsed."""
    usable = []
    for connector in connectors:
        if connector.is_local:
            try:
                connector.command_parts()
            except ValueError as e:
                logger.warning(f"Skipping MCP server {connector.name}: {e}")
                continue
        usable.append(connector)
    return usable


def _stdio_entry(connector: ConnectorConfig) -> dict[str, Any]:
    executable, args = connector.command_parts()
    entry: dict[str, Any] = {"command": executable, "args": args}
    if connector.env:
        entry["env"] = dict(connector.env)
    return entry


def _remote_entry(connector: ConnectorConfig, url_key: str = "url") -> dict[str, Any]:
    entry: dict[str, Any] = {url_key: connector.base_url}
    headers = connector.auth_headers()
    if headers:
        entry["headers"] = headers
    return entry


def claude_mcp_commands(
    connectors: list[ConnectorConfig],
) -> list[tuple[str, list[str]]]:
    """(server name, argv) pairs for ``claude mcp add``, one per connector."""
    commands = []
    for connector in usable_connectors(connectors):
        name = connector.server_name
        if connector.is_local:
            executable, args = connector.command_parts()
            argv = ["claude", "mcp", "add", name]
            for key, value in connector.env.items():
                argv += ["-e", f"{key}={value}"]
            argv += ["--", executable, *args]
        else:
            argv = ["claude", "mcp", "add", "--transport", "http", name, connector.base_url]
            for header, value in connector.auth_headers().items():
                argv += ["--header", f"{header}: {value}"]
        commands.append((name, argv))
    return commands


def _toml_string(value: str) -> str:
    # JSON string escapes are a subset of TOML basic string escapes
    return json.dumps(value, ensure_ascii=False)


def _toml_inline_table(values: dict[str, str]) -> str:
    pairs = ", ".join(f"{_toml_string(k)} = {_toml_string(v)}" for k, v in values.items())
    return "{ " + pairs + " }" if pairs else "{}"


def codex_mcp_toml(connectors: list[ConnectorConfig]) -> str:
    """``[mcp_servers.<name>]`` tables for ``~/.codex/config.toml``."""
    sections = []
    for connector in usable_connectors(connectors):
        lines = [f"[mcp_servers.{connector.server_name}]"]
        if connector.is_local:
            executable, args = connector.command_parts()
            lines.append(f"command = {_toml_string(executable)}")
            lines.append("args = [" + ", ".join(_toml_string(a) for a in args) + "]")
            if connector.env:
                lines.append(f"env = {_toml_inline_table(connector.env)}")
        else:
            lines.append(f"url = {_toml_string(connector.base_url or '')}")
            if connector.oauth_client_secret:
                lines.append(f"bearer_token = {_toml_string(connector.oauth_client_secret)}")
            if connector.oauth_client_id:
                headers = {"X-Client-ID": connector.oauth_client_id}
                lines.append(f"http_headers = {_toml_inline_table(headers)}")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def mcp_servers_json(connectors: list[ConnectorConfig]) -> dict[str, Any]:
    """``{"mcpServers": ...}`` shape shared by Cursor, Cline and Kilo."""
    servers = {}
    for connector in usable_connectors(connectors):
        if connector.is_local:
            servers[connector.server_name] = _stdio_entry(connector)
        else:
            servers[connector.server_name] = _remote_entry(connector)
    return {"mcpServers": servers}


def gemini_mcp_json(connectors: list[ConnectorConfig]) -> dict[str, Any]:
    """Gemini settings.json; remote servers use ``httpUrl``."""
    servers = {}
    for connector in usable_connectors(connectors):
        if connector.is_local:
            servers[connector.server_name] = _stdio_entry(connector)
        else:
            servers[connector.server_name] = _remote_entry(connector, url_key="httpUrl")
    return {"mcpServers": servers}


def copilot_mcp_json(connectors: list[ConnectorConfig]) -> dict[str, Any]:
    """Copilot mcp-config.json with explicit server types and tool allow-lists."""
    servers = {}
    for connector in usable_connectors(connectors):
        if connector.is_local:
            entry = {"type": "stdio", **_stdio_entry(connector)}
        else:
            entry = {"type": "http", **_remote_entry(connector)}
        entry["tools"] = ["*"]
        servers[connector.server_name] = entry
    return {"mcpServers": servers}


def opencode_config_json(connectors: list[ConnectorConfig]) -> dict[str, Any]:
    """OpenCode config.json; local commands are a single list."""
    servers = {}
    for connector in usable_connectors(connectors):
        if connector.is_local:
            executable, args = connector.command_parts()
            entry: dict[str, Any] = {
                "type": "local",
                "command": [executable, *args],
                "enabled": True,
            }
            if connector.env:
                entry["environment"] = dict(connector.env)
        else:
            entry = {"type": "remote", "url": connector.base_url, "enabled": True}
            headers = connector.auth_headers()
            if headers:
                entry["headers"] = headers
        servers[connector.server_name] = entry
    return {"$schema": OPENCODE_SCHEMA_URL, "mcp": servers}
