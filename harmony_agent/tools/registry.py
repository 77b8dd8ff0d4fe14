"""Tool registry: routes model-facing tool names to MCP servers."""

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Protocol

from harmony_agent.config import MCPConfig
from harmony_agent.exceptions import ToolNotFoundError
from harmony_agent.llm import ToolDefinition
from harmony_agent.logging import get_logger

if TYPE_CHECKING:
    from harmony_agent.emitter import OutputEmitter

log = get_logger(__name__)

MAX_TOOL_NAME_LENGTH = 64
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def sanitize(value: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to ``_``, trim and cap length."""
    lowered = str(value or "").lower()
    return _NON_ALNUM_RE.sub("_", lowered).strip("_")[:MAX_TOOL_NAME_LENGTH]


@dataclass(frozen=True)
class MCPToolInfo:
    """A tool advertised by one MCP server."""

    server: str
    name: str
    description: str | None = None
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolRoute:
    """Where a model-facing tool name is executed."""

    display_name: str
    server: str
    tool_name: str


class ToolExecutor(Protocol):
    """Narrow view of the process-wide tool connection."""

    async def list_tools(self) -> list[MCPToolInfo]: ...

    async def call(self, server: str, tool: str, arguments: dict[str, Any]) -> Any: ...


def to_function_tool(info: MCPToolInfo) -> ToolDefinition:
    """Convert an MCP tool into a function tool definition."""
    schema = dict(info.input_schema or {"type": "object", "properties": {}})
    parameters = {
        "type": "object",
        **schema,
        "required": schema.get("required") or [],
        "additionalProperties": False,
    }
    return ToolDefinition(
        name=f"mcp__{sanitize(info.server)}__{sanitize(info.name)}",
        description=info.description or f"MCP tool from {info.server}",
        parameters=parameters,
    )


class ToolRegistry:
    """Registry of tools available to one agent request."""

    def __init__(self, executor: ToolExecutor | None = None):
        self.executor = executor
        self._definitions: list[ToolDefinition] = []
        self._routes: dict[str, ToolRoute] = {}

    def __len__(self) -> int:
        return len(self._definitions)

    def register(self, info: MCPToolInfo) -> ToolDefinition:
        """Register an MCP tool under its function name and sanitized aliases."""
        definition = to_function_tool(info)
        route = ToolRoute(display_name=definition.name, server=info.server, tool_name=info.name)
        log.debug("Registering tool", tool=definition.name, server=info.server)
        self._definitions.append(definition)
        self._routes[definition.name] = route
        self._routes[sanitize(definition.name)] = route
        self._routes.setdefault(sanitize(info.name), route)
        return definition

    def resolve(self, name: str) -> ToolRoute | None:
        """Resolve a model-supplied name: literal first, then sanitized."""
        if not name:
            return None
        return self._routes.get(name) or self._routes.get(sanitize(name))

    def get(self, name: str) -> ToolRoute:
        route = self.resolve(name)
        if route is None:
            raise ToolNotFoundError(name)
        return route

    def definitions(self) -> list[ToolDefinition]:
        return list(self._definitions)

    def servers(self) -> list[str]:
        return sorted({route.server for route in self._routes.values()})

    async def execute(self, route: ToolRoute, arguments: dict[str, Any]) -> Any:
        if self.executor is None:
            raise ToolNotFoundError(route.display_name)
        log.debug("Calling MCP tool", server=route.server, tool=route.tool_name, args=arguments)
        return await self.executor.call(route.server, route.tool_name, arguments)


async def list_tools_with_wait(
    executor: ToolExecutor,
    required_servers: set[str] | None,
    config: MCPConfig,
    emitter: "OutputEmitter | None" = None,
) -> list[MCPToolInfo]:
    """List tools, waiting a bounded time for required servers to appear."""
    elapsed = 0
    interval_ms = max(1, config.server_wait_interval_ms)
    tools: list[MCPToolInfo] = []
    while True:
        try:
            tools = await executor.list_tools()
            log.debug(
                "Loaded MCP tools",
                tools=len(tools),
                servers=len({tool.server for tool in tools}),
            )
            if not required_servers:
                return tools
            available = {tool.server for tool in tools}
            missing = sorted(server for server in required_servers if server not in available)
            if not missing:
                return tools
            if elapsed >= config.server_wait_ms:
                log.warning("Timed out waiting for MCP servers", missing=missing)
                if emitter is not None:
                    emitter.reasoning(
                        f"Some MCP servers never responded ({', '.join(missing)}). "
                        "Proceeding with available tools.",
                        f"mcp_status_timeout_{'_'.join(sanitize(s) for s in missing)}",
                    )
                return tools
            log.debug("Waiting for MCP servers", missing=missing, elapsed_ms=elapsed)
            if emitter is not None:
                emitter.reasoning(
                    f"Waiting for MCP servers: {', '.join(missing)} ({elapsed}ms)...",
                    f"mcp_status_waiting_{'_'.join(sanitize(s) for s in missing)}",
                )
        except Exception as e:
            log.warning("MCP tools unavailable, servers may still be connecting", error=str(e))
            if elapsed >= config.server_wait_ms:
                return tools
        await asyncio.sleep(interval_ms / 1000)
        elapsed += interval_ms


async def prepare_tools(
    executor: ToolExecutor | None,
    enabled_servers: Iterable[str] | None,
    config: MCPConfig,
    emitter: "OutputEmitter | None" = None,
) -> ToolRegistry:
    """Build the registry for one request from the enabled (opt-in) servers."""
    registry = ToolRegistry(executor)
    enabled = set(enabled_servers or [])
    if executor is None or not enabled:
        log.debug("No MCP servers enabled, using empty tool list")
        return registry

    available = await list_tools_with_wait(executor, enabled, config, emitter)
    for info in available:
        if info.server in enabled:
            registry.register(info)

    if len(registry) and emitter is not None:
        ready = registry.servers()
        emitter.reasoning(
            f"MCP servers ready: {', '.join(ready)}",
            f"mcp_ready_{int(time.time() * 1000)}",
        )
    return registry
