"""Tests for the HTTP transport, using httpx.MockTransport."""

import json

import httpx
import pytest

from mcp_runtime.errors import HttpTimeout, RequestTimeout, RpcError, TransportError, TransportStartError
from mcp_runtime.transport import HttpTransport

URL = "https://tools.example.com/mcp"


def make_transport(handler, headers=None) -> HttpTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpTransport("remote", URL, headers=headers, client=client)


@pytest.mark.asyncio
async def test_request_posts_json_rpc_and_returns_result():
    seen = []

    async def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        seen.append((request, body))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"tools": []}})

    transport = make_transport(handler, headers={
        "Authorization": "Bearer token",
        "Content-Type": "text/plain",
    })
    await transport.start()

    assert await transport.send_request("tools/list", {}) == {"tools": []}
    assert await transport.send_request("tools/list", {}) == {"tools": []}

    request, body = seen[0]
    assert request.method == "POST"
    assert str(request.url) == URL
    assert request.headers["authorization"] == "Bearer token"
    assert request.headers["content-type"] == "application/json"
    assert body == {"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}}
    assert seen[1][1]["id"] == 2


@pytest.mark.asyncio
async def test_error_body_raises_rpc_error():
    async def handler(request):
        return httpx.Response(200, json={
            "jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "Method not found"},
        })

    transport = make_transport(handler)
    await transport.start()

    with pytest.raises(RpcError, match="Method not found") as exc_info:
        await transport.send_request("resources/list")
    assert exc_info.value.code == -32601


@pytest.mark.asyncio
async def test_non_2xx_raises_transport_error():
    async def handler(request):
        return httpx.Response(503, text="unavailable")

    transport = make_transport(handler)
    await transport.start()

    with pytest.raises(TransportError, match="HTTP 503"):
        await transport.send_request("tools/list")


@pytest.mark.asyncio
async def test_network_failures_are_transport_errors():
    async def refused(request):
        raise httpx.ConnectError("refused", request=request)

    transport = make_transport(refused)
    await transport.start()
    with pytest.raises(TransportError, match="refused"):
        await transport.send_request("tools/list")

    async def unparseable(request):
        return httpx.Response(200, text="<html>oops</html>")

    transport = make_transport(unparseable)
    await transport.start()
    with pytest.raises(TransportError, match="Could not parse"):
        await transport.send_request("tools/list")


@pytest.mark.asyncio
async def test_timeout_raises_request_timeout():
    async def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    transport = make_transport(handler)
    await transport.start()

    with pytest.raises(RequestTimeout) as exc_info:
        await transport.send_request("tools/call", {"name": "slow"})
    assert isinstance(exc_info.value, HttpTimeout)
    assert isinstance(exc_info.value, TransportError)
    assert exc_info.value.method == "tools/call"


@pytest.mark.asyncio
async def test_event_stream_response_is_parsed():
    async def handler(request):
        body = json.loads(request.content)
        stream = (
            "event: message\n"
            'data: {"jsonrpc":"2.0","method":"notifications/progress","params":{}}\n\n'
            "event: message\n"
            f'data: {{"jsonrpc":"2.0","id":{body["id"]},"result":{{"ok":true}}}}\n\n'
        )
        return httpx.Response(200, text=stream, headers={"content-type": "text/event-stream"})

    transport = make_transport(handler)
    await transport.start()

    assert await transport.send_request("tools/list") == {"ok": True}


@pytest.mark.asyncio
async def test_notifications_never_raise():
    bodies = []

    async def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(500)

    transport = make_transport(handler)
    await transport.start()
    await transport.send_notification("notifications/initialized", {})
    assert bodies == [{"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}}]

    async def refused(request):
        raise httpx.ConnectError("refused", request=request)

    transport = make_transport(refused)
    await transport.start()
    await transport.send_notification("notifications/initialized", {})


@pytest.mark.asyncio
async def test_start_validates_url_and_is_idempotent():
    with pytest.raises(TransportStartError):
        await HttpTransport("bad", "not a url").start()
    with pytest.raises(TransportStartError):
        await HttpTransport("bad", "ftp://example.com/mcp").start()

    transport = HttpTransport("ok", URL)
    await transport.start()
    await transport.start()
    assert transport.is_alive()

    await transport.stop()
    await transport.stop()
    assert not transport.is_alive()


@pytest.mark.asyncio
async def test_request_before_start_fails():
    async def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {}})

    with pytest.raises(TransportError):
        await make_transport(handler).send_request("tools/list")
