"""
Minimal stdio MCP tool server.

Speaks newline-delimited JSON-RPC on stdin/stdout: answers the MCP
handshake, lists registered ToolHandlers and dispatches tools/call to
them. Logs go to stderr so they never corrupt the protocol stream.

It exists so the stdio transport can be exercised end to end without
third-party servers. For example:

    from mcp_runtime.server import StdioToolServer, ToolHandler

    class WordCount(ToolHandler):
        name = "word_count"
        description = "Counts the words in a text"
        parameters = {"text": {"type": "string"}}
        required = ["text"]

        def handle(self, params: dict) -> int:
            return len(params["text"].split())

    server = StdioToolServer("words")
    server.register(WordCount())
    server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

from mcp_runtime.config import PROTOCOL_VERSION

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602


class ToolHandler(ABC):
    """One tool exposed by a StdioToolServer.

    `parameters` holds JSON Schema properties and `required` their mandatory
    subset; both end up in the tools/list descriptor.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool with the given arguments.

        Returns:
            The tool result (JSON-serialized into a text content block)
        """
        ...

    def get_schema(self) -> dict:
        """Return the tool descriptor for tools/list."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.parameters,
                "required": list(self.required),
            },
        }


class JsonRpcServerError(Exception):
    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class StdioToolServer:
    """
    MCP server speaking newline-delimited JSON-RPC over stdin/stdout.

    Supports methods:
        - "initialize"       → protocol version, capabilities, server info
        - "notifications/*"  → accepted silently
        - "ping"             → empty result
        - "tools/list"       → {"tools": [descriptor, ...]}
        - "tools/call"       → {"content": [{"type": "text", ...}], "isError": bool}
    """

    def __init__(self, name: str = "mcp-runtime-server", version: str = "0.1.0"):
        self.name = name
        self.version = version
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """
        Main loop: read messages from stdin, dispatch, write responses to stdout.

        This blocks until stdin is closed (parent process terminates).
        """
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        logger.info(f"Tool server {self.name} starting with tools: {list(self._handlers)}")

        for line in stdin:
            line = line.strip()
            if not line:
                continue
            response = self.handle_line(line)
            if response is not None:
                stdout.write(json.dumps(response) + "\n")
                stdout.flush()

    def handle_line(self, line: str) -> dict | None:
        """Process one message. Returns the response, or None for notifications."""
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            return _error(None, PARSE_ERROR, f"Parse error: {e}")
        if not isinstance(message, dict):
            return _error(None, PARSE_ERROR, "Message must be an object")

        request_id = message.get("id")
        method = message.get("method", "")
        params = message.get("params") or {}

        if "id" not in message:
            logger.debug(f"Notification: {method}")
            return None

        try:
            return {"jsonrpc": "2.0", "id": request_id, "result": self._dispatch(method, params)}
        except JsonRpcServerError as e:
            return _error(request_id, e.code, e.message)

    def _dispatch(self, method: str, params: dict) -> Any:
        """Route a method call to the appropriate handler."""

        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            tool_name = params.get("name", "")
            handler = self._handlers.get(tool_name)
            if not handler:
                raise JsonRpcServerError(
                    INVALID_PARAMS,
                    f"Unknown tool: '{tool_name}'. Available: {list(self._handlers)}",
                )
            return self._call(handler, params.get("arguments") or {})

        raise JsonRpcServerError(METHOD_NOT_FOUND, f"Unknown method: '{method}'")

    def _call(self, handler: ToolHandler, arguments: dict) -> dict:
        try:
            result = handler.handle(arguments)
        except Exception as e:
            logger.exception(f"Tool {handler.name} failed")
            return {"content": [{"type": "text", "text": str(e)}], "isError": True}

        text = result if isinstance(result, str) else json.dumps(result)
        return {"content": [{"type": "text", "text": text}], "isError": False}


def _error(request_id: Any, code: int, message: str) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }
