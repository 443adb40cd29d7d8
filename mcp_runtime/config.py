"""
Server configuration records and runtime settings.

Configuration records come from an external store as plain dicts. Each
record describes one MCP server reachable either by spawning a local
process (stdio) or by POSTing to a URL (http):

    {"name": "fs", "transport": "stdio",
     "command": "npx", "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
     "env": {"DEBUG": "1"}, "enabled": true}

    {"name": "remote", "transport": "http",
     "url": "https://tools.example.com/mcp",
     "headers": {"Authorization": "Bearer ..."}}
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from mcp_runtime import __version__

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

# Seconds to wait for a response before failing a request
REQUEST_TIMEOUT = 30.0

CLIENT_INFO = {"name": "mcp-runtime", "version": __version__}

CLIENT_CAPABILITIES = {
    "roots": {"listChanged": True},
    "sampling": {},
}

# Any of these being set means we are running somewhere child processes
# cannot outlive the request (serverless functions).
SERVERLESS_MARKERS = ("AWS_LAMBDA_FUNCTION_NAME", "VERCEL", "NETLIFY")

PROCESS_TRANSPORT_OVERRIDE = "MCP_ALLOW_PROCESS_TRANSPORT"


class TransportKind(str, Enum):
    PROCESS = "stdio"
    HTTP = "http"

    @classmethod
    def parse(cls, value: Any) -> "TransportKind":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        if normalized in ("stdio", "process"):
            return cls.PROCESS
        if normalized == "http":
            return cls.HTTP
        raise ValueError(f"Unknown MCP transport: {value!r}")


@dataclass
class ServerConfig:
    """One configured MCP server. Only the fields of its transport are meaningful."""
    name: str
    transport: TransportKind
    description: str | None = None
    # process transport
    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    # http transport
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    enabled: bool = True

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "ServerConfig":
        if not isinstance(record, Mapping):
            raise ValueError(f"MCP server record must be an object: {record!r}")
        name = record.get("name")
        if not name or not isinstance(name, str):
            raise ValueError(f"MCP server record has no name: {record!r}")

        return cls(
            name=name,
            transport=TransportKind.parse(record.get("transport")),
            description=record.get("description"),
            command=record.get("command"),
            args=[str(a) for a in _field(record, "args", list)],
            env={str(k): str(v) for k, v in _field(record, "env", Mapping).items()},
            url=record.get("url"),
            headers={str(k): str(v) for k, v in _field(record, "headers", Mapping).items()},
            enabled=bool(record.get("enabled", True)),
        )

    @property
    def is_complete(self) -> bool:
        """Whether the field its transport needs (command or url) is present."""
        if self.transport is TransportKind.PROCESS:
            return bool(self.command)
        return bool(self.url)

    def transport_params(self) -> dict[str, Any]:
        """The parameters that require a restart when they change."""
        if self.transport is TransportKind.PROCESS:
            return {
                "name": self.name,
                "transport": self.transport.value,
                "command": self.command,
                "args": list(self.args),
                "env": dict(self.env),
            }
        return {
            "name": self.name,
            "transport": self.transport.value,
            "url": self.url,
            "headers": dict(self.headers),
        }

    def fingerprint(self) -> str:
        return json.dumps(self.transport_params(), sort_keys=True)


def _field(record: Mapping[str, Any], key: str, kind: type) -> Any:
    """Container-valued record field, empty when absent; wrong shapes raise ValueError."""
    value = record.get(key)
    if value is None:
        return [] if kind is list else {}
    if kind is list and isinstance(value, (list, tuple)):
        return value
    if kind is Mapping and isinstance(value, Mapping):
        return value
    expected = "list" if kind is list else "mapping"
    raise ValueError(
        f"MCP server {record.get('name')!r}: {key} must be a {expected}, got {type(value).__name__}"
    )


def configuration_fingerprint(configs: Iterable[ServerConfig]) -> str:
    """Structural fingerprint of a set of configs, order-sensitive like the store."""
    return json.dumps([c.transport_params() for c in configs], sort_keys=True)


def coerce_config(record: ServerConfig | Mapping[str, Any]) -> ServerConfig:
    if isinstance(record, ServerConfig):
        return record
    return ServerConfig.from_dict(record)


def process_transport_permitted(environ: Mapping[str, str] | None = None) -> bool:
    """
    Whether spawning child processes is allowed in this deployment.

    An explicit MCP_ALLOW_PROCESS_TRANSPORT wins; otherwise any serverless
    marker disables process transport.
    """
    environ = os.environ if environ is None else environ

    override = environ.get(PROCESS_TRANSPORT_OVERRIDE, "").strip().lower()
    if override in ("1", "true", "yes"):
        return True
    if override in ("0", "false", "no"):
        return False

    return not any(environ.get(marker) for marker in SERVERLESS_MARKERS)


def load_server_configs(path: str | Path) -> list[ServerConfig]:
    """
    Read server records from a JSON file.

    Accepts either a bare list of records or {"servers": [...]}.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("servers", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of MCP server records")

    configs = [ServerConfig.from_dict(record) for record in data]
    logger.info(f"Loaded {len(configs)} MCP server configs from {path}")
    return configs
