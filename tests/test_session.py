"""Tests for MCPSession: handshake, tool projection, calls and shutdown."""

import asyncio
import json

import pytest
from conftest import FakeTransport, process_config, tool_descriptor

from mcp_runtime.config import PROTOCOL_VERSION
from mcp_runtime.errors import RpcError, SessionNotReadyError, TransportStartError
from mcp_runtime.schema import ParamType
from mcp_runtime.session import MCPSession, SessionState, ToolDescriptor


@pytest.mark.asyncio
async def test_start_performs_handshake_in_order(fake_transport):
    session = MCPSession(process_config("fs"), fake_transport)
    assert session.state is SessionState.CREATED

    tools = await session.start()

    assert session.state is SessionState.READY
    assert fake_transport.methods == ["initialize", "notifications/initialized", "tools/list"]
    assert [t.name for t in tools] == ["read", "write"]

    init_params = fake_transport.requests[0][1]
    assert init_params["protocolVersion"] == PROTOCOL_VERSION
    assert init_params["capabilities"] == {"roots": {"listChanged": True}, "sampling": {}}
    assert init_params["clientInfo"]["name"] == "mcp-runtime"
    assert fake_transport.notifications == [("notifications/initialized", {})]
    assert session.server_info == {"name": "fs", "version": "1.0"}


@pytest.mark.asyncio
async def test_get_tools_uses_qualified_names_and_translated_shapes(fake_transport):
    session = MCPSession(process_config("fs"), fake_transport)
    await session.start()

    tools = session.get_tools()

    assert set(tools) == {"mcp_fs_read", "mcp_fs_write"}
    write = tools["mcp_fs_write"]
    assert write.server_name == "fs" and write.tool_name == "write"
    assert write.description == "write tool"
    assert write.parameters.get("path").required
    assert write.parameters.get("content").type is ParamType.STRING
    assert not write.parameters.get("content").required


@pytest.mark.asyncio
async def test_invoke_sends_tools_call_and_returns_raw_result(fake_transport):
    session = MCPSession(process_config("fs"), fake_transport)
    await session.start()

    result = await session.get_tools()["mcp_fs_read"]({"path": "/tmp/a"})

    assert fake_transport.requests[-1] == ("tools/call", {"name": "read", "arguments": {"path": "/tmp/a"}})
    assert json.loads(result["content"][0]["text"]) == {"name": "read", "arguments": {"path": "/tmp/a"}}


@pytest.mark.asyncio
async def test_missing_tools_field_leaves_catalog_empty():
    transport = FakeTransport("empty")

    async def no_tools(method, params=None):
        transport.requests.append((method, params))
        return {}

    transport.send_request = no_tools
    session = MCPSession(process_config("empty"), transport)

    assert await session.start() == []
    assert session.get_tools() == {}


@pytest.mark.asyncio
async def test_descriptor_without_description_uses_name():
    transport = FakeTransport("x", tools=[{"name": "bare"}, {"description": "nameless"}])
    session = MCPSession(process_config("x"), transport)
    await session.start()

    tools = session.get_tools()
    assert list(tools) == ["mcp_x_bare"]
    assert tools["mcp_x_bare"].description == "bare"
    assert len(tools["mcp_x_bare"].parameters) == 0


@pytest.mark.asyncio
async def test_handshake_failure_marks_failed_and_releases_transport():
    transport = FakeTransport("broken", fail_method="initialize")
    session = MCPSession(process_config("broken"), transport)

    with pytest.raises(RpcError):
        await session.start()

    assert session.state is SessionState.FAILED
    assert transport.stop_calls == 1
    assert "tools/list" not in transport.methods


@pytest.mark.asyncio
async def test_transport_start_failure_propagates():
    session = MCPSession(process_config("nope"), FakeTransport("nope", fail_start=True))

    with pytest.raises(TransportStartError):
        await session.start()
    assert session.state is SessionState.FAILED


@pytest.mark.asyncio
async def test_session_is_never_restarted(fake_transport):
    session = MCPSession(process_config("fs"), fake_transport)
    await session.start()
    await session.stop()

    with pytest.raises(SessionNotReadyError):
        await session.start()


@pytest.mark.asyncio
async def test_stop_discards_tools_and_rejects_calls(fake_transport):
    session = MCPSession(process_config("fs"), fake_transport)
    await session.start()
    read = session.get_tools()["mcp_fs_read"]

    await session.stop()
    await session.stop()

    assert session.state is SessionState.STOPPED
    assert fake_transport.stop_calls == 1
    assert session.get_tools() == {}
    with pytest.raises(SessionNotReadyError):
        await read({"path": "/tmp/a"})


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_calls(fake_transport):
    session = MCPSession(process_config("fs"), fake_transport)
    await session.start()
    fake_transport.gate = asyncio.Event()

    call = asyncio.create_task(session.call_tool("read", {"path": "/slow"}))
    await asyncio.sleep(0.01)
    assert session.in_flight == 1

    stop = asyncio.create_task(session.stop())
    await asyncio.sleep(0.01)
    assert not stop.done()
    assert fake_transport.stop_calls == 0
    # Closing sessions refuse new work
    with pytest.raises(SessionNotReadyError):
        await session.call_tool("read", {"path": "/new"})

    fake_transport.gate.set()
    assert (await call)["content"]
    await stop
    assert fake_transport.stop_calls == 1
    assert session.state is SessionState.STOPPED


@pytest.mark.asyncio
async def test_stop_gives_up_draining_after_timeout(fake_transport):
    session = MCPSession(process_config("fs"), fake_transport, drain_timeout=0.05)
    await session.start()
    fake_transport.gate = asyncio.Event()

    call = asyncio.create_task(session.call_tool("read", {"path": "/stuck"}))
    await asyncio.sleep(0.01)
    await session.stop()

    assert session.state is SessionState.STOPPED
    assert fake_transport.stop_calls == 1
    fake_transport.gate.set()
    await call


def test_tool_descriptor_from_dict():
    descriptor = ToolDescriptor.from_dict({"name": "read", "inputSchema": {"type": "object"}})
    assert descriptor == ToolDescriptor("read", None, {"type": "object"})
