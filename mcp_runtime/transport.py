"""
Transport layer for MCP communication.

Implements:
  - StdioTransport: JSON-RPC over a child process's stdin/stdout (local)
  - HttpTransport: one JSON-RPC POST per message (remote)

Both share one contract: start(), send_request(), send_notification(), stop().
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from mcp_runtime.config import REQUEST_TIMEOUT, ServerConfig, TransportKind
from mcp_runtime.errors import (
    HttpTimeout,
    RequestTimeout,
    RpcError,
    TransportError,
    TransportStartError,
)

logger = logging.getLogger(__name__)

# Seconds to wait for a terminated child before killing it
STOP_GRACE_PERIOD = 5.0

READ_CHUNK_SIZE = 64 * 1024


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. A request without an id is a notification."""
    method: str
    params: dict[str, Any] | None = None
    id: int | str | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": "2.0", "method": self.method}
        if self.id is not None:
            data["id"] = self.id
        if self.params is not None:
            data["params"] = self.params
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: dict | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JsonRpcResponse":
        return cls(
            id=data.get("id"),
            result=data.get("result"),
            error=data.get("error"),
        )

    @classmethod
    def from_json(cls, data: str) -> "JsonRpcResponse":
        return cls.from_dict(json.loads(data))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self) -> Any:
        """Return the result, or raise the remote error."""
        if self.is_error:
            raise RpcError.from_error(self.error)
        return self.result


class Transport(ABC):
    """Abstract transport layer for MCP communication."""

    def __init__(self, name: str):
        self.name = name
        self._request_id = 0

    def next_id(self) -> int:
        """Generate the next request ID. Never reused within a transport."""
        self._request_id += 1
        return self._request_id

    @abstractmethod
    async def start(self) -> None:
        """Establish the channel. A second call is a logged no-op."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Release the channel. Idempotent."""
        ...

    @abstractmethod
    async def send_request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and return the ``result`` of the matching response."""
        ...

    @abstractmethod
    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification. Failures are logged, never raised."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the transport is active."""
        ...


@dataclass
class PendingRequest:
    """An outstanding stdio request awaiting its response."""
    id: int | str
    method: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)

    def resolve(self, response: JsonRpcResponse) -> bool:
        """Complete the waiter once. Returns False if it was already settled."""
        if self.future.done():
            return False
        self.future.set_result(response)
        return True

    def fail(self, exc: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(exc)
        return True


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a child process.

    This is MCP's native local transport. The tool server runs as
    a child process. Requests are written to its stdin; its stdout is
    read in chunks into a buffer and every complete line is one message.
    Responses are matched to requests by id, so many requests can be
    outstanding at once and answers may arrive in any order.
    """

    def __init__(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        request_timeout: float = REQUEST_TIMEOUT,
    ):
        """
        Args:
            name: Server name, used in logs.
            command: Executable to launch, e.g. "npx".
            args: Arguments for the executable.
            env: Variables layered over this process's environment.
            request_timeout: Seconds before an unanswered request fails.
        """
        super().__init__(name)
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.request_timeout = request_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._active = False
        self._buffer = b""
        self._pending: dict[int | str, PendingRequest] = {}
        self._tasks: list[asyncio.Task] = []

    @property
    def pending(self) -> dict[int | str, PendingRequest]:
        return self._pending

    def is_alive(self) -> bool:
        return self._active and self._process is not None

    async def start(self) -> None:
        """Launch the tool server subprocess."""
        if self._process is not None:
            logger.warning(f"MCP server {self.name} already started")
            return

        logger.info(f"Starting stdio transport {self.name}: {self.command} {' '.join(self.args)}")
        env = {**os.environ, **self.env}
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except (OSError, ValueError) as e:
            raise TransportStartError(
                f"Failed to start MCP server {self.name} ({self.command}): {e}"
            ) from e

        self._active = True
        self._tasks = [
            asyncio.create_task(self._read_stdout()),
            asyncio.create_task(self._read_stderr()),
            asyncio.create_task(self._watch_exit()),
        ]

    async def stop(self) -> None:
        """Terminate the tool server subprocess."""
        process = self._process
        if process is None:
            return

        logger.info(f"Stopping MCP server: {self.name}")
        self._active = False
        self._process = None

        if process.returncode is None:
            try:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=STOP_GRACE_PERIOD)
                except asyncio.TimeoutError:
                    process.kill()
                    await process.wait()
            except ProcessLookupError:
                pass

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        pending, self._pending = self._pending, {}
        for entry in pending.values():
            entry.fail(TransportError(f"MCP server {self.name} stopped"))
        self._buffer = b""

    async def send_request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        request = JsonRpcRequest(method=method, params=params, id=self.next_id())
        future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = PendingRequest(request.id, method, future)

        try:
            await self._write(request)
            response = await asyncio.wait_for(future, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(method, self.request_timeout) from None
        finally:
            # Single removal: either the reader popped it already or we do here
            self._pending.pop(request.id, None)

        return response.unwrap()

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        try:
            await self._write(JsonRpcRequest(method=method, params=params))
        except TransportError as e:
            logger.warning(f"Notification {method} to {self.name} failed: {e}")

    async def _write(self, message: JsonRpcRequest) -> None:
        process = self._process
        if not self.is_alive() or process is None or process.stdin is None:
            raise TransportError(f"MCP server {self.name} is not running")

        try:
            process.stdin.write((message.to_json() + "\n").encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportError(f"Write to MCP server {self.name} failed: {e}") from e

    def feed_data(self, chunk: bytes) -> None:
        """Append raw stdout bytes and dispatch every complete line."""
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")

        for raw in lines:
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                logger.error(f"Failed to parse MCP message from {self.name}: {e}: {line[:200]}")
                continue
            if not isinstance(message, dict):
                logger.error(f"Ignoring non-object MCP message from {self.name}: {line[:200]}")
                continue
            self._handle_message(message)

    def _handle_message(self, message: dict[str, Any]) -> None:
        method = message.get("method")
        if method is not None:
            if "id" in message:
                logger.warning(f"Unexpected request from MCP server {self.name}: {method}")
            else:
                logger.info(f"MCP notification from {self.name}: {method}")
            return

        request_id = message.get("id")
        entry = self._pending.pop(request_id, None) if isinstance(request_id, (int, str)) else None
        if entry is None:
            logger.debug(f"Discarding unmatched response from {self.name}: id={request_id!r}")
            return
        entry.resolve(JsonRpcResponse.from_dict(message))

    async def _read_stdout(self) -> None:
        stdout = self._process.stdout if self._process else None
        if stdout is None:
            return
        while True:
            chunk = await stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self.feed_data(chunk)
        if self._buffer.strip():
            logger.debug(f"Discarding unterminated output from {self.name}: {self._buffer[:200]!r}")
        self._buffer = b""

    async def _read_stderr(self) -> None:
        stderr = self._process.stderr if self._process else None
        if stderr is None:
            return
        while True:
            line = await stderr.readline()
            if not line:
                break
            logger.warning(f"MCP server {self.name} stderr: {line.decode('utf-8', errors='replace').rstrip()}")

    async def _watch_exit(self) -> None:
        process = self._process
        if process is None:
            return
        code = await process.wait()
        logger.info(f"MCP server {self.name} exited with code {code}")
        # Pending requests are left to their own timeouts
        if self._process is process:
            self._active = False


class HttpTransport(Transport):
    """
    JSON-RPC over HTTP POST to a remote MCP server.

    Every request and notification is an independent POST; the response
    body is the JSON-RPC response, so no correlation table is needed.
    """

    def __init__(
        self,
        name: str,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            name: Server name, used in logs.
            url: Endpoint receiving JSON-RPC POSTs.
            headers: Extra headers (e.g. Authorization) sent with every call.
            timeout: Per-call timeout in seconds.
            client: Optional shared client; by default each call opens its own.
        """
        super().__init__(name)
        self.url = url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self._client = client
        self._started = False

    def is_alive(self) -> bool:
        return self._started

    @property
    def request_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json, text/event-stream",
            **self.headers,
            "Content-Type": "application/json",
        }

    async def start(self) -> None:
        if self._started:
            logger.warning(f"HTTP MCP server {self.name} already initialized")
            return
        try:
            url = httpx.URL(self.url)
        except (httpx.InvalidURL, TypeError) as e:
            raise TransportStartError(f"Invalid URL for MCP server {self.name}: {self.url!r}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise TransportStartError(f"Invalid URL for MCP server {self.name}: {self.url!r}")

        logger.info(f"Using HTTP transport for MCP server {self.name} at {self.url}")
        self._started = True

    async def stop(self) -> None:
        if self._started:
            logger.info(f"Stopping HTTP MCP server: {self.name}")
        self._started = False

    async def send_request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        request = JsonRpcRequest(method=method, params=params, id=self.next_id())
        response = await self._post(request)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {response.status_code} from MCP server {self.name}: {response.text[:500]}"
            ) from e

        return self._parse(response, request.id).unwrap()

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        try:
            response = await self._post(JsonRpcRequest(method=method, params=params))
        except TransportError as e:
            logger.error(f"HTTP notification to {self.name} failed: {e}")
            return
        if response.status_code >= 400:
            logger.warning(f"Notification {method} to {self.name} returned status {response.status_code}")

    async def _post(self, message: JsonRpcRequest) -> httpx.Response:
        if not self._started:
            raise TransportError(f"HTTP MCP server {self.name} is not started")

        try:
            if self._client is not None:
                return await self._client.post(
                    self.url, json=message.to_dict(), headers=self.request_headers,
                    timeout=self.timeout,
                )
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(self.url, json=message.to_dict(), headers=self.request_headers)
        except httpx.TimeoutException as e:
            raise HttpTimeout(message.method, self.timeout) from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP request to {self.name} failed: {e}") from e

    def _parse(self, response: httpx.Response, request_id: int | str) -> JsonRpcResponse:
        content_type = response.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            return self._parse_event_stream(response.text, request_id)

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"Could not parse response from {self.name}: {response.text[:500]}"
            ) from e
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response from {self.name}: {response.text[:500]}")
        return JsonRpcResponse.from_dict(data)

    def _parse_event_stream(self, text: str, request_id: int | str) -> JsonRpcResponse:
        """Pick the JSON-RPC response carrying our id out of an SSE body."""
        for line in text.splitlines():
            if not line.startswith("data:"):
                continue
            try:
                message = json.loads(line[len("data:"):].strip())
            except json.JSONDecodeError:
                logger.debug(f"Skipping unparseable SSE line from {self.name}: {line[:100]}")
                continue
            if isinstance(message, dict) and message.get("id") == request_id:
                return JsonRpcResponse.from_dict(message)

        raise TransportError(f"No response for request {request_id} in event stream from {self.name}")


def build_transport(
    config: ServerConfig,
    request_timeout: float = REQUEST_TIMEOUT,
    http_client: httpx.AsyncClient | None = None,
) -> Transport:
    """Create the transport matching a server config's kind."""
    if config.transport is TransportKind.PROCESS:
        if not config.command:
            raise TransportStartError(f"MCP server {config.name} has no command")
        return StdioTransport(
            config.name,
            config.command,
            args=config.args,
            env=config.env,
            request_timeout=request_timeout,
        )

    if not config.url:
        raise TransportStartError(f"MCP server {config.name} has no url")
    return HttpTransport(
        config.name,
        config.url,
        headers=config.headers,
        timeout=request_timeout,
        client=http_client,
    )
