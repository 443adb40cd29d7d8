"""
Error taxonomy for MCP sessions.

    MCPError
    ├── TransportStartError   channel could not be created (spawn / bad URL)
    ├── TransportError        pipe or network failure, non-2xx, bad payload
    │   └── SessionNotReadyError
    ├── RpcError              the server answered with a JSON-RPC error
    └── RequestTimeout        no response within the request window
        └── HttpTimeout       httpx timed out; also a TransportError

Startup failures are isolated per server by the registry. Everything raised
from a tool call reaches the caller of that tool only.
"""

from __future__ import annotations

from typing import Any


class MCPError(Exception):
    """Base class for every error raised by mcp_runtime."""


class TransportStartError(MCPError):
    """The underlying resource (child process, endpoint) could not be created."""


class TransportError(MCPError):
    """Transport-level failure: broken pipe, HTTP status, unparseable payload."""


class SessionNotReadyError(TransportError):
    """A call was made on a session that is not (or no longer) Ready."""


class RpcError(MCPError):
    """JSON-RPC error object returned by the remote server."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"MCP error {code}: {message}")

    @classmethod
    def from_error(cls, error: Any) -> "RpcError":
        if isinstance(error, dict):
            return cls(
                code=error.get("code", -1),
                message=error.get("message", "Unknown error"),
                data=error.get("data"),
            )
        return cls(code=-1, message=str(error))


class RequestTimeout(MCPError, TimeoutError):
    """No matching response arrived in time. The remote call may still be running."""

    def __init__(self, method: str, timeout: float):
        self.method = method
        self.timeout = timeout
        super().__init__(f"Request timeout for {method} after {timeout:g}s")


class HttpTimeout(RequestTimeout, TransportError):
    """An HTTP request timed out at the network level.

    Caught by both `except RequestTimeout` and `except TransportError`.
    """
