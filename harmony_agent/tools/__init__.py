"""Tools package for Harmony Agent."""

from harmony_agent.tools.registry import (
    MCPToolInfo,
    ToolExecutor,
    ToolRegistry,
    ToolRoute,
    prepare_tools,
    sanitize,
)

__all__ = [
    "MCPToolInfo",
    "ToolExecutor",
    "ToolRegistry",
    "ToolRoute",
    "prepare_tools",
    "sanitize",
]
