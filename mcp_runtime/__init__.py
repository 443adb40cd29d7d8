"""
MCP Runtime: live Model Context Protocol sessions for a chat agent.

Architecture:
    ┌──────────────┐   stdio pipes   ┌──────────────┐
    │              │ ─────────────── │  Tool Server  │
    │  Chat Agent  │    JSON-RPC     │  (subprocess) │
    │  (LangChain) │                 └──────────────┘
    │              │   HTTP POST     ┌──────────────┐
    │              │ ─────────────── │  Tool Server  │
    └──────────────┘    JSON-RPC     │   (remote)    │
                                     └──────────────┘

Each configured server gets one MCPSession, which owns a Transport
(StdioTransport or HttpTransport), performs the initialize handshake and
lists the server's tools. The SessionRegistry keeps sessions in line with
the configured servers and aggregates their tools as
``mcp_<server>_<tool>``. load_mcp_tools() is the entry point the chat
backend calls on each turn; shutdown_mcp_servers() must be awaited when
the host process exits.
"""

__version__ = "0.1.0"

from mcp_runtime.config import ServerConfig, TransportKind, process_transport_permitted
from mcp_runtime.errors import (
    HttpTimeout,
    MCPError,
    RequestTimeout,
    RpcError,
    SessionNotReadyError,
    TransportError,
    TransportStartError,
)
from mcp_runtime.loader import load_mcp_tools, shutdown_mcp_servers
from mcp_runtime.manager import SessionRegistry
from mcp_runtime.schema import ParameterShape, ParamType, translate
from mcp_runtime.session import CallableTool, MCPSession, SessionState
from mcp_runtime.transport import HttpTransport, StdioTransport, Transport


# Bridge requires langchain; lazy import to keep the core standalone
def to_langchain_tools(*args, **kwargs):
    from mcp_runtime.bridge import to_langchain_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "CallableTool",
    "HttpTimeout",
    "HttpTransport",
    "MCPError",
    "MCPSession",
    "ParamType",
    "ParameterShape",
    "RequestTimeout",
    "RpcError",
    "ServerConfig",
    "SessionNotReadyError",
    "SessionRegistry",
    "SessionState",
    "StdioTransport",
    "Transport",
    "TransportError",
    "TransportKind",
    "TransportStartError",
    "load_mcp_tools",
    "process_transport_permitted",
    "shutdown_mcp_servers",
    "to_langchain_tools",
    "translate",
]
