"""
MCP session: one handshaken connection to one configured server.

Lifecycle:

    Created --start()--> Initializing --handshake ok--> Ready --stop()--> Stopped
                              └──── handshake fails ──> Failed

A session is never restarted. Recovery always means building a new
session from the config.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from mcp_runtime.config import (
    CLIENT_CAPABILITIES,
    CLIENT_INFO,
    PROTOCOL_VERSION,
    REQUEST_TIMEOUT,
    ServerConfig,
)
from mcp_runtime.errors import SessionNotReadyError
from mcp_runtime.schema import ParameterShape, translate
from mcp_runtime.transport import Transport

logger = logging.getLogger(__name__)

TOOL_PREFIX = "mcp"


def qualified_tool_name(server_name: str, tool_name: str) -> str:
    return f"{TOOL_PREFIX}_{server_name}_{tool_name}"


class SessionState(str, Enum):
    CREATED = "created"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool as reported by tools/list."""
    name: str
    description: str | None = None
    input_schema: Any = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolDescriptor":
        return cls(
            name=str(data["name"]),
            description=data.get("description"),
            input_schema=data.get("inputSchema") or {},
        )


@dataclass(frozen=True)
class CallableTool:
    """A discovered tool bound to the session that serves it."""
    qualified_name: str
    server_name: str
    tool_name: str
    description: str
    parameters: ParameterShape
    invoke: Callable[[dict[str, Any]], Awaitable[Any]]

    async def __call__(self, arguments: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.invoke({**(arguments or {}), **kwargs})


class MCPSession:
    """
    Owns one Transport and the tool catalog fetched over it.

    Usage:
        session = MCPSession(config, StdioTransport("fs", "npx", [...]))
        await session.start()
        tools = session.get_tools()            # {"mcp_fs_read": CallableTool, ...}
        result = await tools["mcp_fs_read"]({"path": "/tmp/x"})
        await session.stop()
    """

    def __init__(
        self,
        config: ServerConfig,
        transport: Transport,
        drain_timeout: float = REQUEST_TIMEOUT,
    ):
        self.config = config
        self.transport = transport
        self.drain_timeout = drain_timeout
        self.state = SessionState.CREATED
        self.server_info: dict[str, Any] = {}
        self.server_capabilities: dict[str, Any] = {}
        self._tools: list[ToolDescriptor] = []
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closing = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def fingerprint(self) -> str:
        return self.config.fingerprint()

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY and not self._closing

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(self._tools)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def start(self) -> list[ToolDescriptor]:
        """Open the transport, handshake, and fetch the tool catalog."""
        if self.state is not SessionState.CREATED:
            raise SessionNotReadyError(f"MCP session {self.name} cannot start from state {self.state.value}")

        self.state = SessionState.INITIALIZING
        try:
            await self.transport.start()
            await self._initialize()
            await self._fetch_tools()
        except BaseException:
            self.state = SessionState.FAILED
            await self.transport.stop()
            raise

        self.state = SessionState.READY
        return self.tools

    async def _initialize(self) -> None:
        result = await self.transport.send_request("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": CLIENT_CAPABILITIES,
            "clientInfo": CLIENT_INFO,
        })
        result = result if isinstance(result, dict) else {}
        self.server_info = result.get("serverInfo") or {}
        self.server_capabilities = result.get("capabilities") or {}
        logger.info(f"MCP server {self.name} initialized: {self.server_info}")

        await self.transport.send_notification("notifications/initialized", {})

    async def _fetch_tools(self) -> None:
        result = await self.transport.send_request("tools/list", {})
        if isinstance(result, dict) and isinstance(result.get("tools"), list):
            self._tools = [
                ToolDescriptor.from_dict(t)
                for t in result["tools"]
                if isinstance(t, dict) and t.get("name")
            ]
        names = ", ".join(t.name for t in self._tools)
        logger.info(f"MCP server {self.name} has {len(self._tools)} tools: {names}")

    def get_tools(self) -> dict[str, CallableTool]:
        """Project the tool catalog into callables keyed by qualified name."""
        tools = {}
        for descriptor in self._tools:
            qualified = qualified_tool_name(self.name, descriptor.name)
            tools[qualified] = CallableTool(
                qualified_name=qualified,
                server_name=self.name,
                tool_name=descriptor.name,
                description=descriptor.description or descriptor.name,
                parameters=translate(descriptor.input_schema),
                invoke=self._invoker(descriptor.name),
            )
        return tools

    def _invoker(self, tool_name: str) -> Callable[[dict[str, Any]], Awaitable[Any]]:
        async def invoke(arguments: dict[str, Any]) -> Any:
            return await self.call_tool(tool_name, arguments)
        return invoke

    async def call_tool(self, tool_name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Run tools/call and return the raw result."""
        if not self.is_ready:
            raise SessionNotReadyError(f"MCP server {self.name} is not ready ({self.state.value})")

        logger.info(f"Calling MCP tool {self.name}.{tool_name}")
        self._in_flight += 1
        self._idle.clear()
        try:
            return await self.transport.send_request("tools/call", {
                "name": tool_name,
                "arguments": arguments or {},
            })
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def stop(self, drain_timeout: float | None = None) -> None:
        """
        Stop accepting calls, let in-flight calls finish, then release the transport.

        Args:
            drain_timeout: Max seconds to wait for in-flight calls
                           (defaults to the session's drain_timeout).
        """
        if self._closing or self.state is SessionState.STOPPED:
            return
        self._closing = True

        timeout = self.drain_timeout if drain_timeout is None else drain_timeout
        if self._in_flight:
            logger.info(f"Waiting for {self._in_flight} in-flight calls on {self.name}")
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"MCP server {self.name} still has {self._in_flight} calls after {timeout:g}s; stopping anyway")

        await self.transport.stop()
        self._tools = []
        self.state = SessionState.STOPPED
