"""System-prompt text describing the MCP tools available to the agent."""

from __future__ import annotations

from typing import Mapping

from mcp_runtime.session import TOOL_PREFIX, CallableTool


def mcp_guidelines(has_mcp_servers: bool) -> str:
    """Prompt block introducing MCP tools, or "" when no servers are configured."""
    if not has_mcp_servers:
        return ""

    return f"""<mcp_servers>
The user has configured custom MCP (Model Context Protocol) servers that provide
additional tools and capabilities. These tools are available alongside the standard
tools.

MCP tools are prefixed with `{TOOL_PREFIX}_<servername>_` to indicate which server provides them.
Use these tools naturally when they're relevant to the user's request.

For example:
- If a filesystem MCP server is configured, you can use it to read/write files outside
  the project directory
- If a database MCP server is configured, you can use it to query databases
- If a web search MCP server is configured, you can use it to search the web

Treat MCP tools the same way you treat built-in tools - use them when they're the best
solution for the task at hand.
</mcp_servers>"""


def tool_instructions(tool: CallableTool) -> str:
    """Generate prompt instructions from a tool's parameter shape."""
    lines = [f"## Tool: {tool.qualified_name}", tool.description, ""]
    if len(tool.parameters):
        lines.append("Parameters:")
        for param in tool.parameters:
            optional = "" if param.required else ", optional"
            lines.append(f"  - {param.name} ({param.type.value}{optional}): {param.description or ''}".rstrip())

    return "\n".join(lines).rstrip()


def tools_prompt(tools: Mapping[str, CallableTool]) -> str:
    """Guidelines plus per-tool instructions for every loaded tool."""
    if not tools:
        return ""
    blocks = [mcp_guidelines(True)]
    blocks.extend(tool_instructions(tool) for tool in tools.values())
    return "\n\n".join(blocks)
