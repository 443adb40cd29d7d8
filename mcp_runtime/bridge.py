"""
Bridge between MCP sessions and LangChain.

Converts the registry's CallableTools into LangChain tools the agent can
bind to a model.

Usage:
    from mcp_runtime.bridge import to_langchain_tools

    tools = await load_mcp_tools(registry, servers)
    agent = create_agent(model, tools=to_langchain_tools(tools))
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

from langchain_core.tools import StructuredTool

from mcp_runtime.errors import MCPError
from mcp_runtime.session import CallableTool


def _model_name(qualified_name: str) -> str:
    words = re.split(r"[^0-9a-zA-Z]+", qualified_name)
    return "".join(w[:1].upper() + w[1:] for w in words if w) + "Input"


def to_langchain_tool(tool: CallableTool, description_override: str | None = None) -> StructuredTool:
    """
    Create a LangChain StructuredTool that proxies to an MCP tool.

    The returned tool, when invoked by an agent, sends tools/call over
    the owning session's transport. Failures come back as an error string
    so the agent sees a failed tool result instead of an exception.

    Args:
        tool: A CallableTool from SessionRegistry.get_all_tools()
        description_override: Optional override for the tool description
    """
    args_schema = tool.parameters.to_pydantic(_model_name(tool.qualified_name))
    # field name -> property name the server expects
    property_names = {name: f.alias or name for name, f in args_schema.model_fields.items()}

    async def _call_mcp(**kwargs: Any) -> str:
        """Proxy call to MCP server."""
        arguments = {property_names.get(k, k): v for k, v in kwargs.items() if v is not None}
        try:
            result = await tool.invoke(arguments)
        except MCPError as e:
            return f"Error calling {tool.qualified_name}: {e}"
        if isinstance(result, str):
            return result
        return json.dumps(result, indent=2)

    return StructuredTool.from_function(
        coroutine=_call_mcp,
        name=tool.qualified_name,
        description=description_override or tool.description,
        args_schema=args_schema,
    )


def to_langchain_tools(tools: Mapping[str, CallableTool]) -> list[StructuredTool]:
    """Convert every tool of a registry mapping, keeping its order."""
    return [to_langchain_tool(tool) for tool in tools.values()]
