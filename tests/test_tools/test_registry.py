import pytest

from harmony_agent.config import MCPConfig
from harmony_agent.emitter import OutputEmitter
from harmony_agent.exceptions import ToolNotFoundError
from harmony_agent.tools.registry import (
    MCPToolInfo,
    ToolRegistry,
    list_tools_with_wait,
    prepare_tools,
    sanitize,
    to_function_tool,
)


class SlowServersExecutor:
    """Reports servers one listing at a time, like servers still connecting."""

    def __init__(self, batches):
        self.batches = list(batches)
        self.calls = 0

    async def list_tools(self):
        self.calls += 1
        if len(self.batches) > 1:
            return self.batches.pop(0)
        return self.batches[0]

    async def call(self, server, tool, arguments):
        return {"server": server, "tool": tool, "arguments": arguments}


class BrokenExecutor:
    def __init__(self):
        self.calls = 0

    async def list_tools(self):
        self.calls += 1
        raise ConnectionError("not yet")

    async def call(self, server, tool, arguments):
        raise AssertionError("unreachable")


async def _events(emitter: OutputEmitter):
    emitter.close()
    return [event async for event in emitter]


DOCS = MCPToolInfo(server="Docs Server", name="Fetch-Page", description=None, input_schema={"properties": {}})
SEARCH = MCPToolInfo(server="search", name="web_search", description="Search", input_schema={"type": "object"})


def test_sanitize_collapses_and_caps():
    assert sanitize("Docs Server!!") == "docs_server"
    assert sanitize("__a--b__") == "a_b"
    assert len(sanitize("x" * 100)) == 64


def test_to_function_tool_builds_strict_schema():
    definition = to_function_tool(DOCS)

    assert definition.name == "mcp__docs_server__fetch_page"
    assert definition.description == "MCP tool from Docs Server"
    assert definition.parameters == {
        "type": "object",
        "properties": {},
        "required": [],
        "additionalProperties": False,
    }


def test_registry_resolves_literal_then_sanitized_names():
    registry = ToolRegistry()
    registry.register(DOCS)

    assert registry.resolve("mcp__docs_server__fetch_page").tool_name == "Fetch-Page"
    assert registry.resolve("MCP__Docs_Server__Fetch_Page").server == "Docs Server"
    assert registry.resolve("fetch page").display_name == "mcp__docs_server__fetch_page"
    assert registry.resolve("other") is None
    assert registry.resolve("") is None
    with pytest.raises(ToolNotFoundError):
        registry.get("other")


@pytest.mark.asyncio
async def test_execute_routes_to_original_server_and_tool():
    registry = ToolRegistry(SlowServersExecutor([[DOCS]]))
    route = registry.get("mcp__docs_server__fetch_page")

    result = await registry.execute(route, {"url": "x"})

    assert result == {"server": "Docs Server", "tool": "Fetch-Page", "arguments": {"url": "x"}}


@pytest.mark.asyncio
async def test_wait_reports_progress_until_servers_appear():
    executor = SlowServersExecutor([[SEARCH], [SEARCH, DOCS]])
    emitter = OutputEmitter()
    config = MCPConfig(server_wait_ms=1000, server_wait_interval_ms=1)

    tools = await list_tools_with_wait(executor, {"Docs Server", "search"}, config, emitter)

    assert {t.server for t in tools} == {"search", "Docs Server"}
    events = await _events(emitter)
    assert [e.data["item_id"] for e in events] == ["mcp_status_waiting_docs_server"]
    assert "Waiting for MCP servers: Docs Server (0ms)" in events[0].data["content"]


@pytest.mark.asyncio
async def test_wait_times_out_with_available_tools():
    executor = SlowServersExecutor([[SEARCH]])
    emitter = OutputEmitter()
    config = MCPConfig(server_wait_ms=2, server_wait_interval_ms=1)

    tools = await list_tools_with_wait(executor, {"search", "missing"}, config, emitter)

    assert tools == [SEARCH]
    events = await _events(emitter)
    assert events[-1].data["item_id"] == "mcp_status_timeout_missing"
    assert "never responded (missing)" in events[-1].data["content"]


@pytest.mark.asyncio
async def test_wait_is_bounded_when_listing_keeps_failing():
    executor = BrokenExecutor()
    config = MCPConfig(server_wait_ms=3, server_wait_interval_ms=1)

    tools = await list_tools_with_wait(executor, {"search"}, config)

    assert tools == []
    assert executor.calls == 4


@pytest.mark.asyncio
async def test_prepare_tools_filters_to_enabled_servers():
    executor = SlowServersExecutor([[SEARCH, DOCS]])
    emitter = OutputEmitter()

    registry = await prepare_tools(executor, ["search"], MCPConfig(server_wait_ms=0), emitter)

    assert [d.name for d in registry.definitions()] == ["mcp__search__web_search"]
    assert registry.servers() == ["search"]
    events = await _events(emitter)
    assert events[0].data["content"] == "MCP servers ready: search"


@pytest.mark.asyncio
async def test_prepare_tools_without_enabled_servers_is_empty():
    executor = SlowServersExecutor([[SEARCH]])

    registry = await prepare_tools(executor, None, MCPConfig())
    empty_list = await prepare_tools(executor, [], MCPConfig())

    assert len(registry) == 0
    assert len(empty_list) == 0
    assert executor.calls == 0
