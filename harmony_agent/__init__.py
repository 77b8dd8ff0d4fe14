"""Harmony Agent - a tool-calling agent loop streaming over MCP tools."""

__version__ = "0.1.0"

from harmony_agent.config import Config

__all__ = ["Config", "__version__"]
