"""
mcp-tools: load MCP servers from a config file and use their tools.

It:
1. Reads server records from a JSON file
2. Starts sessions (stdio subprocesses and/or HTTP endpoints)
3. Lists the qualified tools they expose
4. Optionally invokes one tool and prints the raw result
5. Shuts every session down, also on SIGINT/SIGTERM

Usage:
    # List loaded tools
    mcp-tools --config servers.json

    # Call a tool
    mcp-tools --config servers.json --call mcp_fs_read --args '{"path": "/tmp/x"}'

    # Print the system-prompt block the agent would get
    mcp-tools --config servers.json --prompt

    # HTTP servers only (as in a serverless deployment)
    mcp-tools --config servers.json --no-process
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

from mcp_runtime.config import REQUEST_TIMEOUT, load_server_configs
from mcp_runtime.errors import MCPError
from mcp_runtime.loader import load_mcp_tools, shutdown_mcp_servers
from mcp_runtime.manager import SessionRegistry
from mcp_runtime.prompts import tools_prompt

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-tools",
        description="Load MCP servers and list or call their tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcp-tools --config servers.json
  mcp-tools --config servers.json --call mcp_echo_echo --args '{"message": "hi"}'
        """,
    )
    parser.add_argument("--config", "-c", required=True, help="JSON file with MCP server records")
    parser.add_argument("--call", type=str, default=None, help="Qualified tool name to invoke")
    parser.add_argument("--args", type=str, default="{}", help="JSON object of tool arguments")
    parser.add_argument("--prompt", action="store_true", help="Print the tools system-prompt block")
    parser.add_argument("--no-process", action="store_true", help="Skip stdio servers")
    parser.add_argument("--timeout", type=float, default=REQUEST_TIMEOUT, help="Request timeout in seconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    return parser


async def run(args: argparse.Namespace) -> int:
    configs = load_server_configs(args.config)
    registry = SessionRegistry(request_timeout=args.timeout)

    # Graceful shutdown on SIGINT/SIGTERM: cancel run() so finally stops servers
    loop = asyncio.get_running_loop()
    current = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, current.cancel)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        tools = await load_mcp_tools(
            registry, configs, allow_process=False if args.no_process else None,
        )

        if args.prompt:
            print(tools_prompt(tools))
        elif not args.call:
            print(f"\nLoaded {len(tools)} MCP tools:\n")
            for name, tool in tools.items():
                print(f"  {name:<40} {tool.description}")

        if args.call:
            tool = tools.get(args.call)
            if tool is None:
                print(f"Error: tool '{args.call}' not loaded. Available: {list(tools)}")
                return 1
            try:
                result = await tool(json.loads(args.args))
            except MCPError as e:
                print(f"Tool call failed: {e}")
                return 1
            print(json.dumps(result, indent=2))
        return 0
    except asyncio.CancelledError:
        print("\nShutting down MCP servers...")
        return 130
    finally:
        await shutdown_mcp_servers(registry, drain_timeout=0)
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
