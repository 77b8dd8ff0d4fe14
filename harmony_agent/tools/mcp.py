"""Process-wide MCP client connections used as the tool executor."""

import asyncio
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, Literal

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from pydantic import BaseModel, model_validator

from harmony_agent.config import MCPConfig
from harmony_agent.exceptions import MCPConnectionError, ToolExecutionError
from harmony_agent.logging import get_logger
from harmony_agent.tools.registry import MCPToolInfo

log = get_logger(__name__)


class MCPServerConfig(BaseModel):
    """Connection settings for one MCP server."""

    name: str
    transport: Literal["stdio", "http"] = "http"
    command: str = ""
    args: list[str] = []
    env: dict[str, str] | None = None
    url: str = ""

    @model_validator(mode="before")
    @classmethod
    def _default_transport(cls, data: Any) -> Any:
        """Entries with only a name and url are http servers."""
        if isinstance(data, dict) and not data.get("transport"):
            data = dict(data)
            data["transport"] = "stdio" if data.get("command") and not data.get("url") else "http"
        return data

    @model_validator(mode="after")
    def _check_transport_fields(self) -> "MCPServerConfig":
        if self.transport == "http" and not self.url:
            raise ValueError("http transport requires 'url'")
        if self.transport == "stdio" and not self.command:
            raise ValueError("stdio transport requires 'command'")
        return self


class _ServerConnection:
    """Owns one server session inside a dedicated task.

    The transport context managers are entered and exited by the same task,
    which keeps their cancel scopes valid across the process lifetime.
    """

    def __init__(self, config: MCPServerConfig):
        self.config = config
        self.session: ClientSession | None = None
        self._closing = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def _transport(self) -> Any:
        if self.config.transport == "stdio":
            command = self.config.command
            if command.startswith("."):
                command = str((Path.cwd() / command).resolve())
            params = StdioServerParameters(
                command=command,
                args=list(self.config.args),
                env=dict(self.config.env) if self.config.env else None,
            )
            return stdio_client(params)
        return streamablehttp_client(self.config.url)

    async def _run(self, ready: asyncio.Future[None]) -> None:
        try:
            async with AsyncExitStack() as stack:
                streams = await stack.enter_async_context(self._transport())
                read_stream, write_stream = streams[0], streams[1]
                session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
                await session.initialize()
                self.session = session
                ready.set_result(None)
                await self._closing.wait()
        except asyncio.CancelledError:
            if not ready.done():
                ready.cancel()
            raise
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                log.error("MCP server connection dropped", server=self.config.name, error=str(e))
        finally:
            self.session = None

    async def start(self) -> None:
        ready: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(ready), name=f"mcp-{self.config.name}")
        await ready

    async def stop(self) -> None:
        self._closing.set()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class MCPManager:
    """Connects MCP servers and routes tool listing and calls to them."""

    def __init__(self, config: MCPConfig | None = None):
        self.config = config or MCPConfig()
        self._connections: dict[str, _ServerConnection] = {}

    async def connect(self, server: MCPServerConfig | dict[str, Any]) -> None:
        """Connect a server; connecting an already-connected name is a no-op."""
        cfg = server if isinstance(server, MCPServerConfig) else MCPServerConfig(**server)
        if cfg.name in self._connections:
            return
        connection = _ServerConnection(cfg)
        try:
            await connection.start()
        except Exception as e:
            raise MCPConnectionError(cfg.name, f"Failed to connect MCP server {cfg.name}: {e}") from e
        self._connections[cfg.name] = connection
        log.info("MCP server connected", server=cfg.name, transport=cfg.transport)

    async def disconnect(self, name: str) -> None:
        connection = self._connections.pop(name, None)
        if connection is not None:
            await connection.stop()
            log.info("MCP server disconnected", server=name)

    def is_connected(self, name: str) -> bool:
        return name in self._connections

    def list_connected(self) -> list[str]:
        return list(self._connections.keys())

    def _session(self, server: str) -> ClientSession:
        connection = self._connections.get(server)
        if connection is None or connection.session is None:
            raise MCPConnectionError(server)
        return connection.session

    async def _list_server_tools(self, server: str) -> list[MCPToolInfo]:
        timeout = self.config.list_tools_timeout_ms / 1000
        retries = max(1, self.config.list_tools_retries)
        for attempt in range(1, retries + 1):
            try:
                session = self._session(server)
                if timeout > 0:
                    result = await asyncio.wait_for(session.list_tools(), timeout=timeout)
                else:
                    result = await session.list_tools()
                if attempt > 1:
                    log.warning("listTools recovered", server=server, attempt=attempt)
                return [
                    MCPToolInfo(
                        server=server,
                        name=tool.name,
                        description=tool.description,
                        input_schema=dict(tool.inputSchema or {}),
                    )
                    for tool in result.tools
                ]
            except Exception as e:
                if attempt == retries:
                    log.error("Error listing tools from MCP server", server=server, error=str(e) or type(e).__name__)
                else:
                    log.warning("listTools attempt failed, retrying", server=server, attempt=attempt, error=str(e))
                    await asyncio.sleep(self.config.list_tools_retry_delay_ms * attempt / 1000)
        return []

    async def list_tools(self) -> list[MCPToolInfo]:
        """List tools of every connected server; failing servers contribute nothing."""
        servers = self.list_connected()
        results = await asyncio.gather(*(self._list_server_tools(server) for server in servers))
        return [tool for tools in results for tool in tools]

    async def call(self, server: str, tool: str, arguments: dict[str, Any]) -> Any:
        """Call a tool and return its structured content or content blocks."""
        session = self._session(server)
        result = await session.call_tool(tool, arguments=arguments or {})
        blocks = [block.model_dump(mode="json", exclude_none=True) for block in result.content or []]
        if result.isError:
            message = "\n".join(block.get("text", "") for block in blocks if block.get("text")) or "MCP tool error"
            raise ToolExecutionError(tool, message)
        if result.structuredContent:
            return result.structuredContent
        return blocks

    async def close(self) -> None:
        for name in list(self._connections):
            await self.disconnect(name)


# Process-wide manager
_manager: MCPManager | None = None
_init_task: asyncio.Task[None] | None = None


def get_mcp_manager(config: MCPConfig | None = None) -> MCPManager:
    """Get the shared MCP manager, creating it on first use."""
    global _manager
    if _manager is None:
        _manager = MCPManager(config)
    return _manager


async def _connect_default_servers(manager: MCPManager, config: MCPConfig) -> None:
    pending = []
    for entry in config.default_servers:
        name = str(entry.get("name") or "")
        if not name or manager.is_connected(name):
            continue
        try:
            server = MCPServerConfig(**entry)
        except ValueError as e:
            log.warning("Skipping MCP server with invalid config", server=name, error=str(e))
            continue
        if server.transport == "stdio" and not config.enable_stdio:
            log.warning("Skipping stdio MCP server, stdio is not enabled", server=server.name)
            continue
        pending.append(manager.connect(server))

    results = await asyncio.gather(*pending, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            log.error("Failed to connect MCP server", error=str(result))


async def ensure_mcp_initialized(config: MCPConfig) -> MCPManager:
    """Connect default servers once, waiting at most ``init_wait_ms`` for them."""
    global _init_task
    manager = get_mcp_manager(config)
    if _init_task is None:
        _init_task = asyncio.create_task(_connect_default_servers(manager, config))

    if not _init_task.done():
        wait_s = config.init_wait_ms / 1000
        await asyncio.wait({_init_task}, timeout=wait_s if wait_s > 0 else None)
    return manager


async def shutdown_mcp() -> None:
    """Disconnect every server and drop the shared manager."""
    global _manager, _init_task
    if _init_task is not None and not _init_task.done():
        _init_task.cancel()
        try:
            await _init_task
        except asyncio.CancelledError:
            pass
    _init_task = None
    if _manager is not None:
        await _manager.close()
    _manager = None
