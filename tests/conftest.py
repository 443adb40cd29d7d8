"""
Shared fixtures for mcp_runtime tests.

FakeTransport stands in for a real server: it answers the handshake,
serves a fixed tool list and echoes tools/call arguments back, while
recording everything it was asked to do.
"""

import asyncio
import json
from typing import Any

import pytest

from mcp_runtime.config import ServerConfig, TransportKind
from mcp_runtime.errors import RpcError, TransportStartError
from mcp_runtime.transport import Transport


def tool_descriptor(name: str, **properties: str) -> dict:
    """Build a tools/list entry; keyword args map property name → JSON type."""
    return {
        "name": name,
        "description": f"{name} tool",
        "inputSchema": {
            "type": "object",
            "properties": {p: {"type": t} for p, t in properties.items()},
            "required": list(properties)[:1],
        },
    }


def process_config(name: str, command: str = "server-bin", **kwargs: Any) -> ServerConfig:
    return ServerConfig(name=name, transport=TransportKind.PROCESS, command=command, **kwargs)


def http_config(name: str, url: str | None = None, **kwargs: Any) -> ServerConfig:
    return ServerConfig(
        name=name,
        transport=TransportKind.HTTP,
        url=url or f"https://{name}.example.com/mcp",
        **kwargs,
    )


class FakeTransport(Transport):
    def __init__(
        self,
        name: str,
        tools: list[dict] | None = None,
        fail_method: str | None = None,
        fail_start: bool = False,
    ):
        super().__init__(name)
        self.tools = tools or []
        self.fail_method = fail_method
        self.fail_start = fail_start
        self.requests: list[tuple[str, Any]] = []
        self.notifications: list[tuple[str, Any]] = []
        self.start_calls = 0
        self.stop_calls = 0
        self.gate: asyncio.Event | None = None
        self._alive = False

    @property
    def handshakes(self) -> int:
        return sum(1 for method, _ in self.requests if method == "initialize")

    @property
    def methods(self) -> list[str]:
        return [m for m, _ in self.requests]

    def is_alive(self) -> bool:
        return self._alive

    async def start(self) -> None:
        self.start_calls += 1
        if self.fail_start:
            raise TransportStartError(f"cannot start {self.name}")
        self._alive = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self._alive = False

    async def send_request(self, method: str, params: dict | None = None) -> Any:
        self.requests.append((method, params))
        if method == self.fail_method:
            raise RpcError(-32603, f"{method} failed")
        if method == "initialize":
            return {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": "1.0"},
            }
        if method == "tools/list":
            return {"tools": self.tools}
        if method == "tools/call":
            if self.gate is not None:
                await self.gate.wait()
            return {"content": [{"type": "text", "text": json.dumps(params)}]}
        raise RpcError(-32601, f"Unknown method: {method}")

    async def send_notification(self, method: str, params: dict | None = None) -> None:
        self.requests.append((method, params))
        self.notifications.append((method, params))


class FakeTransportFactory:
    """transport_factory for SessionRegistry that records every transport built."""

    def __init__(self, tools: dict[str, list[dict]] | None = None, failing: tuple[str, ...] = ()):
        self.tools = tools or {}
        self.failing = set(failing)
        self.created: list[FakeTransport] = []

    def __call__(self, config: ServerConfig) -> FakeTransport:
        transport = FakeTransport(
            config.name,
            tools=self.tools.get(config.name, []),
            fail_method="initialize" if config.name in self.failing else None,
        )
        self.created.append(transport)
        return transport

    def handshakes(self, name: str) -> int:
        return sum(t.handshakes for t in self.created if t.name == name)

    def for_server(self, name: str) -> list[FakeTransport]:
        return [t for t in self.created if t.name == name]


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport("fs", tools=[
        tool_descriptor("read", path="string"),
        tool_descriptor("write", path="string", content="string"),
    ])


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory(tools={
        "fs": [tool_descriptor("read", path="string"), tool_descriptor("write", path="string")],
        "git": [tool_descriptor("log", limit="number")],
        "remote": [tool_descriptor("search", query="string")],
        "docs": [tool_descriptor("lookup", term="string")],
    })
