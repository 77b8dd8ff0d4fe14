"""Upstream protocol adapters behind one turn-level interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from harmony_agent.items import Context
from harmony_agent.logging import get_logger

if TYPE_CHECKING:
    from harmony_agent.config import Config
    from harmony_agent.emitter import OutputEmitter
    from harmony_agent.llm.client import UpstreamClient

log = get_logger(__name__)


@dataclass
class ToolDefinition:
    """Definition of a tool for the LLM."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema


@dataclass
class ToolCall:
    """A complete tool call read from upstream output."""

    id: str
    name: str
    arguments: str = ""
    call_id: str = ""

    def __post_init__(self) -> None:
        if not self.call_id and self.id:
            self.call_id = self.id


@dataclass
class TurnResult:
    """Protocol-neutral outcome of one upstream round trip."""

    text: str = ""
    reasoning: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    reasoning_id: str | None = None
    # Text deltas were already forwarded to the emitter while streaming
    text_streamed: bool = False
    # The assistant message was already appended to context while streaming
    text_in_context: bool = False
    finish_reason: str | None = None


@dataclass
class TurnOptions:
    """Sampling parameters shared by every request of one agent run."""

    model: str
    reasoning_effort: str | None = None
    temperature: float = 1.0
    max_output_tokens: int = 128000
    top_p: float = 1.0
    top_k: int = 100


def describe_tool(tool: dict[str, Any]) -> str:
    function = tool.get("function") or {}
    return tool.get("name") or function.get("name") or tool.get("type") or "unknown"


class ProtocolAdapter(ABC):
    """Maps canonical context to one upstream wire protocol and back."""

    name: str = ""

    def __init__(self, client: "UpstreamClient"):
        self.client = client

    @abstractmethod
    def build_input(self, context: Context) -> list[dict[str, Any]]:
        """Convert canonical context to the protocol's input records."""

    @abstractmethod
    def format_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert tool definitions to the protocol's tool schema shape."""

    @abstractmethod
    def build_request(
        self,
        context: Context,
        tools: list[ToolDefinition],
        tool_choice: str | None,
        options: TurnOptions,
    ) -> dict[str, Any] | None:
        """Build the request body, or ``None`` when there is no valid input."""

    @abstractmethod
    async def run_turn(
        self,
        request: dict[str, Any],
        emitter: "OutputEmitter",
        turn: int,
        context: Context,
    ) -> TurnResult:
        """Send one request upstream and read back the turn's result."""

    @staticmethod
    def resolve_tool_choice(tools_param: list[dict[str, Any]] | None, tool_choice: str | None) -> str | None:
        """Tool choice is only sent alongside a non-empty tool list."""
        if not tools_param:
            return None
        return tool_choice or "auto"


def create_adapter(config: "Config", client: "UpstreamClient") -> ProtocolAdapter:
    """Create the protocol adapter configured for this deployment."""
    from harmony_agent.llm.chat_completions import ChatCompletionsAdapter
    from harmony_agent.llm.responses import StreamingResponsesAdapter, StructuredResponsesAdapter

    upstream = config.upstream
    if upstream.use_responses_api:
        if upstream.streaming_mode == "native":
            adapter: ProtocolAdapter = StreamingResponsesAdapter(client)
        else:
            adapter = StructuredResponsesAdapter(client)
    else:
        adapter = ChatCompletionsAdapter(client)
    log.info("Protocol adapter selected", adapter=adapter.name, endpoint=upstream.endpoint)
    return adapter


__all__ = [
    "ProtocolAdapter",
    "ToolCall",
    "ToolDefinition",
    "TurnOptions",
    "TurnResult",
    "create_adapter",
    "describe_tool",
]
