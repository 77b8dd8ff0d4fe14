"""Tool dispatch: argument parsing, name resolution, execution and result shaping."""

import secrets
from dataclasses import dataclass, field
from typing import Any

from harmony_agent.items import deserialize_arguments, serialize_value
from harmony_agent.llm import ToolCall
from harmony_agent.logging import get_logger
from harmony_agent.tools.registry import ToolRegistry, ToolRoute

log = get_logger(__name__)

DEFAULT_MAX_TOOL_RESULT_LENGTH = 8000


def truncate_result(text: str, max_length: int = DEFAULT_MAX_TOOL_RESULT_LENGTH) -> str:
    """Cap a serialized result, appending a note with the original length."""
    if len(text) <= max_length:
        return text
    return (
        f"{text[:max_length]}\n\n"
        f"[Result truncated from {len(text)} to {max_length} characters]"
    )


@dataclass
class PreparedCall:
    """A tool call whose arguments are parsed and whose route is resolved."""

    call_id: str
    route: ToolRoute
    arguments: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.route.display_name


class ToolDispatcher:
    """Runs complete tool calls against the registry, reporting failures as data."""

    def __init__(self, registry: ToolRegistry, max_result_length: int = DEFAULT_MAX_TOOL_RESULT_LENGTH):
        self.registry = registry
        self.max_result_length = max_result_length

    def prepare(self, call: ToolCall, turn: int = 0) -> PreparedCall | None:
        """Parse arguments and resolve the tool; ``None`` means skip this call."""
        if not call.name:
            log.warning("Skipping tool call without name", turn=turn, call_id=call.id)
            return None

        arguments, ok = deserialize_arguments(call.arguments)
        if not ok:
            log.warning(
                "Failed to parse tool call arguments",
                turn=turn,
                tool=call.name,
                arguments=call.arguments[:200],
            )

        route = self.registry.resolve(call.name)
        if route is None:
            log.warning("Unknown tool requested", turn=turn, tool=call.name)
            return None

        call_id = call.call_id or call.id or f"call_{secrets.token_hex(6)}"
        return PreparedCall(call_id=call_id, route=route, arguments=arguments)

    async def execute(self, prepared: PreparedCall, turn: int = 0) -> Any:
        """Run the tool; any exception becomes an ``{"error": ...}`` result."""
        try:
            result = await self.registry.execute(prepared.route, prepared.arguments)
        except Exception as e:
            log.error("Tool execution failed", turn=turn, tool=prepared.name, error=str(e))
            return {"error": str(e) or type(e).__name__}
        log.debug("Tool result", turn=turn, tool=prepared.name, preview=serialize_value(result)[:200])
        return result

    def format_output(self, result: Any, tool_name: str = "", turn: int = 0) -> str:
        """Serialize a result for context, truncating oversized output."""
        text = serialize_value(result)
        if len(text) > self.max_result_length:
            log.warning(
                "Tool result truncated",
                turn=turn,
                tool=tool_name,
                original=len(text),
                limit=self.max_result_length,
            )
            return truncate_result(text, self.max_result_length)
        return text
