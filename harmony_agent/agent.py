"""Agent orchestration for Harmony Agent."""

import asyncio
from enum import Enum
from typing import Any, AsyncIterator

from pydantic import BaseModel, field_validator

from harmony_agent.config import Config, get_config
from harmony_agent.dispatcher import ToolDispatcher
from harmony_agent.emitter import AgentEvent, OutputEmitter
from harmony_agent.instructions import InstructionLoader, apply_reasoning_level, render_system_prompt
from harmony_agent.items import (
    Context,
    FunctionCallItem,
    FunctionCallOutputItem,
    Item,
    MessageItem,
    serialize_value,
)
from harmony_agent.llm import ProtocolAdapter, TurnOptions, TurnResult, create_adapter, describe_tool
from harmony_agent.llm.client import UpstreamClient
from harmony_agent.logging import get_logger
from harmony_agent.normalizer import normalize_items
from harmony_agent.tools.registry import ToolExecutor, ToolRegistry, prepare_tools

log = get_logger(__name__)


class TurnOutcome(str, Enum):
    """How one upstream turn steers the loop."""

    TOOL_CALLS = "tool_calls"
    TEXT_ONLY = "text_only"
    REASONING_ONLY = "reasoning_only"
    NOTHING = "nothing"

    @property
    def continues(self) -> bool:
        return self in (TurnOutcome.TOOL_CALLS, TurnOutcome.REASONING_ONLY)


def classify_turn(result: TurnResult) -> TurnOutcome:
    """Classify a turn result.

    Tool calls always continue the loop. Without tool calls, assistant text
    ends the run even when reasoning came with it, while reasoning alone lets
    the model keep thinking on the next turn.
    """
    if result.tool_calls:
        return TurnOutcome.TOOL_CALLS
    if result.text:
        return TurnOutcome.TEXT_ONLY
    if result.reasoning:
        return TurnOutcome.REASONING_ONLY
    return TurnOutcome.NOTHING


class AgentRequest(BaseModel):
    """One chat request as received from a client."""

    messages: list[Any] = []
    developer_prompt: str | None = None
    reasoning_level: str | None = None
    tool_choice: str | dict[str, Any] | None = "auto"
    enabled_mcp_servers: list[str] | None = None
    model: str | None = None

    @field_validator("messages", mode="before")
    @classmethod
    def _coerce_messages(cls, value: Any) -> list[Any]:
        return value if isinstance(value, list) else []

    @field_validator("developer_prompt", "reasoning_level", "model", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None

    @field_validator("enabled_mcp_servers", mode="before")
    @classmethod
    def _coerce_servers(cls, value: Any) -> list[str] | None:
        if value is None:
            return None
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple, set)):
            return [str(server) for server in value if server]
        return None

    def enabled_servers(self) -> set[str] | None:
        if self.enabled_mcp_servers is None:
            return None
        return set(self.enabled_mcp_servers)


class Agent:
    """Runs the bounded tool-calling loop for one request at a time."""

    def __init__(
        self,
        config: Config | None = None,
        adapter: ProtocolAdapter | None = None,
        executor: ToolExecutor | None = None,
        instructions: InstructionLoader | None = None,
    ):
        """Initialize the agent.

        Args:
            config: Configuration; the global config when omitted
            adapter: Upstream protocol adapter; built from config when omitted
            executor: Tool executor (normally the shared MCP manager)
            instructions: Template loader for the system prompt
        """
        self.config = config or get_config()
        self._owns_client = adapter is None
        if adapter is None:
            adapter = create_adapter(self.config, UpstreamClient(self.config.upstream))
        self.adapter = adapter
        self.executor = executor
        self.instructions = instructions or InstructionLoader()
        self.max_turns = self.config.agent.max_turns

    def system_prompt(self, reasoning_level: str | None = None) -> str:
        agent_cfg = self.config.agent
        base = render_system_prompt(
            knowledge_cutoff=agent_cfg.knowledge_cutoff,
            reasoning_level=agent_cfg.default_reasoning_level,
            loader=self.instructions,
        )
        return apply_reasoning_level(base, reasoning_level)

    def build_context(self, request: AgentRequest) -> Context:
        """Seed the context: system prompt, developer prompt, then history."""
        items: list[Item] = []
        system_prompt = self.system_prompt(request.reasoning_level)
        if system_prompt:
            items.append(MessageItem.from_text("system", system_prompt))
        developer_prompt = (request.developer_prompt or "").strip()
        if developer_prompt:
            items.append(MessageItem.from_text("developer", developer_prompt))
        history = normalize_items(request.messages)
        log.debug(
            "Context built",
            raw_messages=len(request.messages),
            normalized=len(history),
            developer_prompt=bool(developer_prompt),
        )
        items.extend(history)
        return Context(items)

    def options_for(self, request: AgentRequest) -> TurnOptions:
        upstream = self.config.upstream
        level = (request.reasoning_level or "").strip()
        return TurnOptions(
            model=request.model or upstream.model,
            reasoning_effort=level or None,
            temperature=upstream.temperature,
            max_output_tokens=upstream.max_output_tokens,
            top_p=upstream.top_p,
            top_k=upstream.top_k,
        )

    async def run(
        self,
        context: Context,
        tools: ToolRegistry,
        tool_choice: Any,
        options: TurnOptions,
        emitter: OutputEmitter,
    ) -> int:
        """Run turns until the model answers, stops, or ``max_turns`` is reached.

        Upstream failures propagate to the caller. Returns the number of
        upstream round trips made.
        """
        dispatcher = ToolDispatcher(tools, max_result_length=self.config.agent.max_tool_result_length)
        definitions = tools.definitions()
        turns = 0

        for index in range(self.max_turns):
            turn = index + 1
            if not context:
                log.warning("No conversation context available, stopping agent loop")
                break

            request = self.adapter.build_request(context, definitions, tool_choice, options)
            if request is None:
                log.warning("No valid input for upstream request, stopping agent loop", turn=turn)
                break

            if request.get("tools"):
                log.debug(
                    "Tools available",
                    turn=turn,
                    tools=[describe_tool(tool) for tool in request["tools"]],
                )
            log.debug("Calling upstream", turn=turn, adapter=self.adapter.name, items=len(context))

            result = await self.adapter.run_turn(request, emitter, turn, context)
            turns = turn

            if result.text:
                if not result.text_streamed:
                    await emitter.stream_text(result.text)
                if not result.text_in_context:
                    context.append(MessageItem.from_text("assistant", result.text))

            outcome = classify_turn(result)
            log.debug("Turn classified", turn=turn, outcome=outcome.value, tool_calls=len(result.tool_calls))
            if outcome is TurnOutcome.TEXT_ONLY:
                log.debug("Assistant responded with text and no tool calls, stopping", turn=turn)
                break
            if outcome is TurnOutcome.NOTHING:
                log.debug("No tool calls or assistant text returned, stopping", turn=turn)
                break
            if outcome is TurnOutcome.REASONING_ONLY:
                log.debug("Only reasoning returned, continuing to next turn", turn=turn)
                continue

            await self._process_tool_calls(result, dispatcher, context, emitter, turn)
        else:
            log.info("Agent loop reached max turns", max_turns=self.max_turns)

        return turns

    async def _process_tool_calls(
        self,
        result: TurnResult,
        dispatcher: ToolDispatcher,
        context: Context,
        emitter: OutputEmitter,
        turn: int,
    ) -> None:
        """Execute every call of a turn in order, recording call and output items."""
        for call in result.tool_calls:
            prepared = dispatcher.prepare(call, turn)
            if prepared is None:
                continue

            log.info("Executing tool", turn=turn, tool=prepared.name, call_id=prepared.call_id)
            emitter.tool_call(prepared.name, prepared.arguments, prepared.call_id)
            context.append(
                FunctionCallItem(
                    id=prepared.call_id,
                    call_id=prepared.call_id,
                    name=prepared.name,
                    arguments=serialize_value(prepared.arguments),
                )
            )

            output = await dispatcher.execute(prepared, turn)
            emitter.tool_result(prepared.name, output, prepared.call_id)
            context.append(
                FunctionCallOutputItem(
                    call_id=prepared.call_id,
                    output=dispatcher.format_output(output, prepared.name, turn),
                    name=prepared.name,
                )
            )

    async def _drive(self, request: AgentRequest, emitter: OutputEmitter) -> None:
        try:
            context = self.build_context(request)
            tools = await prepare_tools(
                self.executor,
                request.enabled_servers(),
                self.config.mcp,
                emitter,
            )
            turns = await self.run(context, tools, request.tool_choice, self.options_for(request), emitter)
            log.info(
                "Agent run finished",
                turns=turns,
                context_items=len(context),
                tool_calls=len(context.call_ids()),
            )
            emitter.done()
        except Exception as e:
            log.error("Error in agent loop", error=str(e), error_type=type(e).__name__)
            emitter.error(str(e) or type(e).__name__)
        finally:
            emitter.close()

    async def stream(self, request: AgentRequest) -> AsyncIterator[AgentEvent]:
        """Run the agent for one request, yielding events as they are produced.

        The stream always ends with exactly one ``done`` or ``error`` event.
        """
        agent_cfg = self.config.agent
        emitter = OutputEmitter(chunk_size=agent_cfg.chunk_size, chunk_delay_ms=agent_cfg.chunk_delay_ms)
        task = asyncio.create_task(self._drive(request, emitter))
        try:
            async for event in emitter:
                yield event
        finally:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def close(self) -> None:
        if self._owns_client:
            await self.adapter.client.close()
