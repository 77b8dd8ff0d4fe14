import pytest
from mcp.types import CallToolResult, ListToolsResult, TextContent, Tool
from pydantic import ValidationError

import harmony_agent.tools.mcp as mcp_module
from harmony_agent.config import MCPConfig
from harmony_agent.exceptions import MCPConnectionError, ToolExecutionError
from harmony_agent.tools.mcp import MCPManager, MCPServerConfig, _ServerConnection


class FakeSession:
    def __init__(self, tools=None, result=None, list_error=None):
        self.tools = tools or []
        self.result = result
        self.list_error = list_error
        self.list_calls = 0
        self.calls = []

    async def list_tools(self):
        self.list_calls += 1
        if self.list_error is not None:
            error, self.list_error = self.list_error, None
            raise error
        return ListToolsResult(tools=self.tools)

    async def call_tool(self, name, arguments=None):
        self.calls.append((name, arguments))
        return self.result


def _attach(manager: MCPManager, name: str, session: FakeSession) -> None:
    connection = _ServerConnection(MCPServerConfig(name=name, url="http://localhost/mcp"))
    connection.session = session
    manager._connections[name] = connection


def test_server_config_infers_transport():
    assert MCPServerConfig(name="a", url="http://x/mcp").transport == "http"
    assert MCPServerConfig(name="b", command="npx", args=["server"]).transport == "stdio"
    with pytest.raises(ValidationError):
        MCPServerConfig(name="c", transport="http")
    with pytest.raises(ValidationError):
        MCPServerConfig(name="d", transport="stdio", url="http://x")


@pytest.mark.asyncio
async def test_list_tools_collects_every_connected_server():
    manager = MCPManager(MCPConfig(list_tools_retries=1))
    _attach(manager, "one", FakeSession(tools=[Tool(name="a", description="A", inputSchema={"type": "object"})]))
    _attach(manager, "two", FakeSession(tools=[Tool(name="b", inputSchema={"type": "object"})]))

    tools = await manager.list_tools()

    assert [(t.server, t.name) for t in tools] == [("one", "a"), ("two", "b")]
    assert tools[0].description == "A"
    assert tools[0].input_schema == {"type": "object"}


@pytest.mark.asyncio
async def test_list_tools_retries_then_recovers():
    session = FakeSession(tools=[Tool(name="a", inputSchema={"type": "object"})], list_error=TimeoutError())
    manager = MCPManager(MCPConfig(list_tools_retries=2, list_tools_retry_delay_ms=0))
    _attach(manager, "flaky", session)

    tools = await manager.list_tools()

    assert [t.name for t in tools] == ["a"]
    assert session.list_calls == 2


@pytest.mark.asyncio
async def test_failing_server_contributes_no_tools():
    session = FakeSession(list_error=RuntimeError("gone"))
    manager = MCPManager(MCPConfig(list_tools_retries=1))
    _attach(manager, "broken", session)

    assert await manager.list_tools() == []


@pytest.mark.asyncio
async def test_call_returns_content_blocks_or_raises_on_error():
    ok = CallToolResult(content=[TextContent(type="text", text="42")], isError=False)
    failed = CallToolResult(content=[TextContent(type="text", text="bad input")], isError=True)
    manager = MCPManager()
    _attach(manager, "calc", FakeSession(result=ok))

    assert await manager.call("calc", "add", {"a": 1}) == [{"type": "text", "text": "42"}]

    _attach(manager, "calc2", FakeSession(result=failed))
    with pytest.raises(ToolExecutionError, match="bad input"):
        await manager.call("calc2", "add", {})


@pytest.mark.asyncio
async def test_call_prefers_structured_content():
    result = CallToolResult(
        content=[TextContent(type="text", text='{"sum": 3}')],
        structuredContent={"sum": 3},
        isError=False,
    )
    manager = MCPManager()
    _attach(manager, "calc", FakeSession(result=result))

    assert await manager.call("calc", "add", {"a": 1, "b": 2}) == {"sum": 3}


@pytest.mark.asyncio
async def test_call_on_unknown_server_raises():
    with pytest.raises(MCPConnectionError):
        await MCPManager().call("missing", "tool", {})


@pytest.mark.asyncio
async def test_default_servers_skip_stdio_and_invalid_entries(monkeypatch):
    connected = []

    async def fake_connect(self, server):
        connected.append(server.name)

    monkeypatch.setattr(MCPManager, "connect", fake_connect)
    config = MCPConfig(
        enable_stdio=False,
        default_servers=[
            {"name": "exa", "url": "https://mcp.example.com/mcp"},
            {"name": "local", "command": "./server"},
            {"name": "broken", "transport": "http"},
            {"url": "https://nameless.example.com"},
        ],
    )

    await mcp_module._connect_default_servers(MCPManager(config), config)

    assert connected == ["exa"]


@pytest.mark.asyncio
async def test_ensure_initialized_returns_shared_manager(monkeypatch):
    async def fake_connect(self, server):
        return None

    monkeypatch.setattr(MCPManager, "connect", fake_connect)
    monkeypatch.setattr(mcp_module, "_manager", None)
    monkeypatch.setattr(mcp_module, "_init_task", None)

    config = MCPConfig(init_wait_ms=100)
    first = await mcp_module.ensure_mcp_initialized(config)
    second = await mcp_module.ensure_mcp_initialized(config)

    assert first is second
    assert first is mcp_module.get_mcp_manager()

    await mcp_module.shutdown_mcp()
    assert mcp_module._manager is None
