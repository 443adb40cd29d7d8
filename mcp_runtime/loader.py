"""
Load MCP tools for a chat turn.

This is the entry point the chat backend calls: hand it the current server
records and a registry, get back the flat mapping of callable tools.

Note: stdio servers need a long-lived process to host their children. That
holds for local development, self-hosted deployments and containers, but
not for serverless functions, where only HTTP servers are loaded.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from mcp_runtime.config import (
    ServerConfig,
    TransportKind,
    coerce_config,
    process_transport_permitted,
)
from mcp_runtime.manager import SessionRegistry
from mcp_runtime.session import CallableTool

logger = logging.getLogger(__name__)


def _usable_configs(servers: Iterable[ServerConfig | Mapping[str, Any]]) -> list[ServerConfig]:
    configs = []
    for record in servers:
        try:
            config = coerce_config(record)
        except ValueError as e:
            logger.warning(f"Skipping invalid MCP server record: {e}")
            continue
        if not config.enabled:
            logger.debug(f"Skipping disabled MCP server {config.name}")
            continue
        if not config.is_complete:
            field = "command" if config.transport is TransportKind.PROCESS else "url"
            logger.warning(f"Skipping MCP server {config.name}: no {field} configured")
            continue
        configs.append(config)
    return configs


async def load_mcp_tools(
    registry: SessionRegistry,
    servers: Iterable[ServerConfig | Mapping[str, Any]],
    allow_process: bool | None = None,
) -> dict[str, CallableTool]:
    """
    Reconcile the registry against the configured servers and return their tools.

    Args:
        registry: The registry owning the live sessions.
        servers: Complete snapshot of server records (ServerConfig or dicts).
        allow_process: Whether stdio servers may be spawned here
                       (default: detected from the environment).

    Returns:
        {qualified tool name: CallableTool}. Empty if loading failed;
        a broken MCP setup must not break the chat turn.
    """
    if allow_process is None:
        allow_process = process_transport_permitted()

    try:
        configs = _usable_configs(servers)
        process_configs = [c for c in configs if c.transport is TransportKind.PROCESS]
        http_configs = [c for c in configs if c.transport is TransportKind.HTTP]

        if process_configs and not allow_process:
            logger.warning(
                f"Skipping {len(process_configs)} stdio MCP servers: process transport "
                "is not available in this environment. Use HTTP transport instead."
            )
            process_configs = []

        await registry.reconcile(process_configs + http_configs)

        tools = registry.get_all_tools()
        logger.info(f"Loaded {len(tools)} total MCP tools")
        return tools
    except Exception:
        logger.exception("Failed to load MCP tools")
        return {}


async def shutdown_mcp_servers(registry: SessionRegistry, drain_timeout: float | None = None) -> None:
    """Stop every MCP server. Call from the host's shutdown path."""
    logger.info("Cleaning up MCP servers")
    await registry.stop_all(drain_timeout)
