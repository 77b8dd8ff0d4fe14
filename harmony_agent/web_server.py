"""HTTP server: streams agent runs as server-sent events and manages MCP servers."""

import asyncio
import signal
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from harmony_agent.agent import Agent, AgentRequest
from harmony_agent.config import Config
from harmony_agent.exceptions import MCPConnectionError
from harmony_agent.instructions import list_presets
from harmony_agent.logging import get_logger
from harmony_agent.tools.mcp import MCPManager, ensure_mcp_initialized, shutdown_mcp

log = get_logger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class WebServer:
    """Harmony Agent HTTP server."""

    def __init__(
        self,
        config: Config,
        agent: Agent | None = None,
        manager: MCPManager | None = None,
    ):
        self.config = config
        self.agent = agent
        self.manager = manager
        # Servers started by this process own the shared MCP manager lifecycle
        self._owns_mcp = manager is None

    def _protected_servers(self) -> set[str]:
        return {str(entry.get("name")) for entry in self.config.mcp.default_servers if entry.get("name")}

    async def _on_startup(self, app: web.Application) -> None:
        if self.manager is None:
            self.manager = await ensure_mcp_initialized(self.config.mcp)
        if self.agent is None:
            self.agent = Agent(self.config, executor=self.manager)
        log.info("Web server started", connected_servers=self.manager.list_connected())

    async def _on_cleanup(self, app: web.Application) -> None:
        if self.agent is not None:
            await self.agent.close()
        if self._owns_mcp:
            await shutdown_mcp()
        log.info("Web server stopped")

    # ── Chat ─────────────────────────────────────────────────────────

    async def chat(self, request: web.Request) -> web.StreamResponse:
        """POST /api/chat: run the agent and stream its events."""
        try:
            body = await request.json()
        except Exception:
            return web.json_response({"error": "Invalid JSON body"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"error": "Request body must be a JSON object"}, status=400)

        try:
            chat_request = AgentRequest.model_validate(body)
        except ValidationError as e:
            return web.json_response({"error": str(e)}, status=400)

        if self.agent is None:
            return web.json_response({"error": "Agent not initialized"}, status=503)

        try:
            if self._owns_mcp:
                await ensure_mcp_initialized(self.config.mcp)
            response = web.StreamResponse(status=200, headers=SSE_HEADERS)
            await response.prepare(request)
        except Exception as e:
            log.error("Error in chat handler", error=str(e))
            return web.json_response({"error": str(e) or "Unknown error"}, status=500)

        log.info(
            "Chat request",
            messages=len(chat_request.messages),
            enabled_servers=chat_request.enabled_mcp_servers,
            reasoning_level=chat_request.reasoning_level,
        )
        events = self.agent.stream(chat_request)
        try:
            async for event in events:
                await response.write(event.to_sse().encode("utf-8"))
        except ConnectionResetError:
            log.info("Client disconnected during stream")
            return response
        finally:
            await events.aclose()

        await response.write_eof()
        return response

    # ── MCP servers ──────────────────────────────────────────────────

    def _require_manager(self) -> MCPManager:
        if self.manager is None:
            raise web.HTTPServiceUnavailable(
                text='{"error": "MCP not initialized"}',
                content_type="application/json",
            )
        return self.manager

    async def list_mcp_servers(self, request: web.Request) -> web.Response:
        """GET /api/mcp/servers: connected servers with their tools."""
        manager = self._require_manager()
        connected = manager.list_connected()
        tools = await manager.list_tools()
        servers = [
            {
                "name": server,
                "tools": [
                    {"name": tool.name, "description": tool.description}
                    for tool in tools
                    if tool.server == server
                ],
            }
            for server in connected
        ]
        return web.json_response({"servers": servers})

    async def connect_mcp_server(self, request: web.Request) -> web.Response:
        """POST /api/mcp/servers: connect a new server."""
        manager = self._require_manager()
        try:
            body: Any = await request.json()
        except Exception:
            return web.json_response({"error": "Invalid JSON body"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"error": "Request body must be a JSON object"}, status=400)

        name = body.get("name")
        transport = body.get("transport")
        if not name or not transport:
            return web.json_response({"error": "Missing required fields: name, transport"}, status=400)
        if transport == "stdio" and not body.get("command"):
            return web.json_response({"error": "stdio transport requires 'command' field"}, status=400)
        if transport == "http" and not body.get("url"):
            return web.json_response({"error": "http transport requires 'url' field"}, status=400)
        if transport == "stdio" and not self.config.mcp.enable_stdio:
            return web.json_response(
                {"error": "stdio transport is disabled. Set HARMONY_MCP__ENABLE_STDIO=true to enable."},
                status=403,
            )

        try:
            await manager.connect(body)
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)
        except MCPConnectionError as e:
            log.error("Error connecting MCP server", server=name, error=str(e))
            return web.json_response({"error": str(e)}, status=500)
        return web.json_response({"success": True, "server": name})

    async def disconnect_mcp_server(self, request: web.Request) -> web.Response:
        """DELETE /api/mcp/servers/{name}: disconnect a server."""
        manager = self._require_manager()
        name = request.match_info.get("name", "")
        if not name:
            return web.json_response({"error": "Missing 'name' parameter"}, status=400)
        if name in self._protected_servers():
            return web.json_response(
                {"error": f"Cannot disconnect {name} server (auto-connected)"},
                status=403,
            )
        await manager.disconnect(name)
        return web.json_response({"success": True})

    # ── Developer prompts ────────────────────────────────────────────

    async def list_developer_prompts(self, request: web.Request) -> web.Response:
        presets = list_presets(self.agent.instructions if self.agent else None)
        return web.json_response({"prompts": [preset.to_dict() for preset in presets]})

    # ── App setup ────────────────────────────────────────────────────

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/chat", self.chat)
        app.router.add_get("/api/mcp/servers", self.list_mcp_servers)
        app.router.add_post("/api/mcp/servers", self.connect_mcp_server)
        app.router.add_delete("/api/mcp/servers/{name}", self.disconnect_mcp_server)
        app.router.add_get("/api/developer-prompts", self.list_developer_prompts)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app


async def _run_server(config: Config) -> None:
    """Start the web server and block until a stop signal arrives."""
    server = WebServer(config)
    loop = asyncio.get_running_loop()

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        if not stop_event.is_set():
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except (NotImplementedError, OSError):
            # Windows doesn't support add_signal_handler for SIGTERM.
            pass

    app = server.create_app()
    runner = web.AppRunner(app)
    await runner.setup()

    host = config.server.host
    port = config.server.port
    site = web.TCPSite(runner, host, port)
    await site.start()

    print(f"\n  Harmony Agent running at http://{host}:{port}")
    print(f"  Upstream: {config.upstream.endpoint} ({config.upstream.model})")
    print("  Press Ctrl+C to stop.\n")

    await stop_event.wait()

    print("\nShutting down...")
    await runner.cleanup()


def run_web_server(config: Config) -> None:
    """Entry point for running the web server."""
    try:
        asyncio.run(_run_server(config))
    except KeyboardInterrupt:
        pass  # Signal handler handles graceful shutdown.
