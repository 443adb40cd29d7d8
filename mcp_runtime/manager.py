"""
Session Registry: owns the live MCP sessions, keyed by server name.

The registry is the bridge between the desired configuration (a snapshot
from the config store) and the running sessions, and it aggregates every
session's tools into one flat mapping for the agent.

Usage:
    registry = SessionRegistry()

    # Bring live sessions in line with the configured servers
    await registry.reconcile(configs)

    # Everything the agent may call: {"mcp_fs_read": CallableTool, ...}
    tools = registry.get_all_tools()
    result = await tools["mcp_fs_read"]({"path": "/tmp/notes.txt"})

    # On shutdown
    await registry.stop_all()

Reconciliation rules:
    - An unchanged snapshot is a no-op.
    - Process (stdio) servers form one cohort: if any of their configs
      change, the whole cohort is rebuilt.
    - HTTP servers are rebuilt individually, only when their own
      url/headers change or they are removed.
    - One server failing its handshake is logged and skipped; the rest
      still come up.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable

from mcp_runtime.config import (
    REQUEST_TIMEOUT,
    ServerConfig,
    TransportKind,
    configuration_fingerprint,
)
from mcp_runtime.session import CallableTool, MCPSession, SessionState
from mcp_runtime.transport import Transport, build_transport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[ServerConfig], Transport]


class SessionRegistry:
    """
    Manages the lifecycle of MCP sessions.

    Responsibilities:
    - Start sessions for configured servers (stdio or HTTP transport)
    - Restart sessions whose configuration changed
    - Aggregate discovered tools under collision-free names
    - Graceful shutdown
    """

    def __init__(
        self,
        transport_factory: TransportFactory | None = None,
        request_timeout: float = REQUEST_TIMEOUT,
    ):
        """
        Args:
            transport_factory: Builds a Transport for a config
                               (defaults to build_transport).
            request_timeout: Per-request timeout, also used as the drain
                             timeout when sessions are stopped.
        """
        self.request_timeout = request_timeout
        self._transport_factory = transport_factory or (
            lambda config: build_transport(config, request_timeout=request_timeout)
        )
        self._sessions: dict[str, MCPSession] = {}
        self._fingerprint: str | None = None
        self._process_fingerprint: str | None = None
        self._lock = asyncio.Lock()

    # ── Session bookkeeping ─────────────────────────────────

    def get_session(self, name: str) -> MCPSession | None:
        return self._sessions.get(name)

    def list_servers(self) -> dict[str, SessionState]:
        """List all sessions and their state."""
        return {name: s.state for name, s in self._sessions.items()}

    def _new_session(self, config: ServerConfig) -> MCPSession:
        return MCPSession(
            config,
            self._transport_factory(config),
            drain_timeout=self.request_timeout,
        )

    async def _start(self, config: ServerConfig) -> MCPSession:
        logger.info(f"Starting {config.transport.value} MCP server: {config.name}")
        session = self._new_session(config)
        await session.start()
        self._sessions[config.name] = session
        return session

    async def _start_isolated(self, config: ServerConfig) -> MCPSession | None:
        try:
            return await self._start(config)
        except Exception as e:
            logger.error(f"Failed to start MCP server {config.name}: {e}")
            return None

    async def _stop(self, name: str) -> None:
        session = self._sessions.pop(name, None)
        if session is not None:
            await session.stop()
            logger.info(f"Stopped MCP server {name}")

    # ── Public operations ───────────────────────────────────

    async def add_server(self, config: ServerConfig) -> MCPSession:
        """
        Start a session for one server. Existing names are left alone.

        Raises whatever the session's startup raised.
        """
        async with self._lock:
            existing = self._sessions.get(config.name)
            if existing is not None:
                logger.warning(f"MCP server {config.name} already exists")
                return existing
            self._fingerprint = None
            return await self._start(config)

    async def remove_server(self, name: str) -> None:
        """Stop and forget one server. Unknown names are ignored."""
        async with self._lock:
            if name in self._sessions:
                self._fingerprint = None
                await self._stop(name)

    async def reconcile(self, configs: Iterable[ServerConfig]) -> None:
        """Bring live sessions in line with the desired configuration snapshot."""
        configs = _unique_by_name(configs)
        async with self._lock:
            fingerprint = configuration_fingerprint(configs)
            if fingerprint == self._fingerprint:
                return

            process_configs = [c for c in configs if c.transport is TransportKind.PROCESS]
            http_configs = {c.name: c for c in configs if c.transport is TransportKind.HTTP}
            process_fingerprint = configuration_fingerprint(process_configs)
            process_changed = process_fingerprint != self._process_fingerprint

            to_stop = []
            for name, session in self._sessions.items():
                if session.config.transport is TransportKind.PROCESS:
                    if process_changed:
                        to_stop.append(name)
                    continue
                desired = http_configs.get(name)
                if desired is None or desired.fingerprint() != session.fingerprint:
                    to_stop.append(name)

            if process_changed and self._process_fingerprint is not None:
                logger.info("Stdio MCP server configs changed, restarting cohort")
            await asyncio.gather(*(self._stop(name) for name in to_stop))

            to_start = list(process_configs) if process_changed else []
            to_start += [c for name, c in http_configs.items() if name not in self._sessions]
            started = await asyncio.gather(*(self._start_isolated(c) for c in to_start))
            failed = sum(1 for s in started if s is None)

            self._fingerprint = fingerprint
            self._process_fingerprint = process_fingerprint
            logger.info(
                f"Reconciled MCP servers: {len(self._sessions)} running, "
                f"{len(to_stop)} stopped, {len(to_start) - failed} started, {failed} failed"
            )

    def get_all_tools(self) -> dict[str, CallableTool]:
        """Union of every ready session's tools."""
        all_tools: dict[str, CallableTool] = {}
        for session in self._sessions.values():
            if session.is_ready:
                all_tools.update(session.get_tools())
        return all_tools

    async def stop_all(self, drain_timeout: float | None = None) -> None:
        """Stop every session concurrently and wait for all of them."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._fingerprint = None
            self._process_fingerprint = None

            results = await asyncio.gather(
                *(s.stop(drain_timeout) for s in sessions),
                return_exceptions=True,
            )
            for session, result in zip(sessions, results):
                if isinstance(result, Exception):
                    logger.error(f"Error stopping MCP server {session.name}: {result}")
            if sessions:
                logger.info(f"Stopped {len(sessions)} MCP servers")


def _unique_by_name(configs: Iterable[ServerConfig]) -> list[ServerConfig]:
    unique: dict[str, ServerConfig] = {}
    for config in configs:
        if config.name in unique:
            logger.warning(f"Duplicate MCP server name {config.name}, keeping the first")
            continue
        unique[config.name] = config
    return list(unique.values())
