"""Custom exceptions for Harmony Agent."""


class HarmonyAgentError(Exception):
    """Base exception for Harmony Agent."""

    pass


class ConfigurationError(HarmonyAgentError):
    """Configuration-related errors."""

    pass


class UpstreamError(HarmonyAgentError):
    """Upstream completion provider errors."""

    pass


class UpstreamAPIError(UpstreamError):
    """Upstream API errors (non-success status, transport failure)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(HarmonyAgentError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class MCPConnectionError(ToolError):
    """MCP server is not connected or could not be reached."""

    def __init__(self, server: str, message: str = ""):
        super().__init__(message or f"MCP server not connected: {server}")
        self.server = server

