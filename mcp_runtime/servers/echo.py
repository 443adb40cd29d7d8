"""
Echo MCP tool server: minimal reference implementation.

Use this as a template for building new tool servers, and as a live
stdio server when testing the transport layer.

Launch:
    python -m mcp_runtime.servers.echo

Test:
    echo '{"jsonrpc":"2.0","method":"tools/list","params":{},"id":1}' | python -m mcp_runtime.servers.echo
"""

import logging

from mcp_runtime.server import StdioToolServer, ToolHandler


class EchoTool(ToolHandler):
    name = "echo"
    description = "Returns the message unchanged, with its character and word counts."
    parameters = {"message": {"type": "string", "description": "Text sent back verbatim"}}
    required = ["message"]

    def handle(self, params: dict) -> dict:
        message = str(params["message"])
        return {"message": message, "chars": len(message), "words": len(message.split())}


class ReverseTool(ToolHandler):
    name = "reverse"
    description = "Reverses the input text, optionally upper-casing it."
    parameters = {
        "text": {"type": "string", "description": "Text to reverse"},
        "upper": {"type": "boolean", "description": "Upper-case the result"},
    }
    required = ["text"]

    def handle(self, params: dict) -> str:
        text = str(params.get("text", ""))[::-1]
        return text.upper() if params.get("upper") else text


def main() -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    server = StdioToolServer("echo")
    server.register(EchoTool())
    server.register(ReverseTool())
    server.run()


if __name__ == "__main__":
    main()
