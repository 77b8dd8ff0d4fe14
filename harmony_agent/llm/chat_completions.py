"""Legacy chat-completions adapter with incremental delta streaming."""

import secrets
import string
from contextlib import aclosing
from typing import Any, AsyncIterable

from harmony_agent.accumulator import ToolCallAccumulator
from harmony_agent.emitter import OutputEmitter
from harmony_agent.items import (
    VALID_MESSAGE_ROLES,
    Context,
    FunctionCallItem,
    FunctionCallOutputItem,
    MessageItem,
)
from harmony_agent.llm import ProtocolAdapter, ToolDefinition, TurnOptions, TurnResult
from harmony_agent.logging import get_logger

log = get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _short_id(length: int = 6) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def extract_delta_text(delta: dict[str, Any]) -> str:
    content = delta.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            piece["text"]
            for piece in content
            if isinstance(piece, dict) and isinstance(piece.get("text"), str)
        )
    return ""


def extract_reasoning_text(delta: dict[str, Any]) -> str:
    reason = delta.get("reasoning_content")
    if not reason:
        return ""
    if isinstance(reason, str):
        return reason
    if isinstance(reason, list):
        parts: list[str] = []
        for entry in reason:
            if isinstance(entry, str):
                parts.append(entry)
            elif isinstance(entry, dict) and isinstance(entry.get("text"), str):
                parts.append(entry["text"])
        return "".join(parts)
    if isinstance(reason, dict) and isinstance(reason.get("text"), str):
        return reason["text"]
    return ""


class ChatCompletionsAdapter(ProtocolAdapter):
    """Chat-completions protocol: plain role/content records and streamed choice deltas."""

    name = "chat-completions"

    def build_input(self, context: Context) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        for item in context:
            if isinstance(item, MessageItem):
                if item.role not in VALID_MESSAGE_ROLES:
                    continue
                text = item.text()
                if not text:
                    continue
                role = "system" if item.role == "developer" else item.role
                messages.append({"role": role, "content": text})
            elif isinstance(item, FunctionCallItem):
                if not item.call_id or not item.name:
                    continue
                messages.append({
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [
                        {
                            "id": item.call_id,
                            "type": "function",
                            "function": {"name": item.name, "arguments": item.arguments or "{}"},
                        }
                    ],
                })
            elif isinstance(item, FunctionCallOutputItem):
                record: dict[str, Any] = {
                    "role": "tool",
                    "tool_call_id": item.call_id,
                    "content": item.output,
                }
                if item.name:
                    record["name"] = item.name
                messages.append(record)
        return messages

    def format_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description or "",
                    "parameters": tool.parameters or {},
                },
            }
            for tool in tools
            if tool.name
        ]

    def build_request(
        self,
        context: Context,
        tools: list[ToolDefinition],
        tool_choice: str | None,
        options: TurnOptions,
    ) -> dict[str, Any] | None:
        messages = self.build_input(context)
        if not messages:
            log.warning("No valid input for chat completions request")
            return None

        body: dict[str, Any] = {"model": options.model, "messages": messages}
        tools_param = self.format_tools(tools)
        if tools_param:
            body["tools"] = tools_param
        choice = self.resolve_tool_choice(tools_param, tool_choice)
        if choice:
            body["tool_choice"] = choice
        body.update({
            "max_tokens": options.max_output_tokens,
            "stream": True,
            "temperature": options.temperature,
            "top_p": options.top_p,
            "top_k": options.top_k,
        })
        if options.reasoning_effort:
            body["reasoning_effort"] = options.reasoning_effort
        return body

    async def consume_chunks(
        self,
        chunks: AsyncIterable[dict[str, Any]],
        emitter: OutputEmitter,
        turn: int,
        context: Context,
    ) -> TurnResult:
        """Fold streamed choice deltas into a turn result.

        Text and reasoning increments are forwarded to the emitter as they
        arrive; the assistant message in context grows with them.
        """
        result = TurnResult(text_streamed=True)
        accumulator = ToolCallAccumulator()
        assistant_message: MessageItem | None = None

        async for chunk in chunks:
            choices = chunk.get("choices")
            if not isinstance(choices, list) or not choices:
                continue
            choice = choices[0] if isinstance(choices[0], dict) else {}

            if choice.get("finish_reason"):
                result.finish_reason = choice["finish_reason"]
                log.debug("Stream finished", turn=turn, finish_reason=result.finish_reason)

            delta = choice.get("delta") or {}

            reasoning_delta = extract_reasoning_text(delta)
            if reasoning_delta:
                result.reasoning_id = result.reasoning_id or f"reasoning_{turn}_{_short_id()}"
                result.reasoning += reasoning_delta
                emitter.reasoning(result.reasoning, result.reasoning_id)

            text_delta = extract_delta_text(delta)
            if text_delta:
                result.text += text_delta
                if assistant_message is None:
                    assistant_message = context.open_assistant_message()
                    result.text_in_context = True
                assistant_message.append_text(text_delta)
                emitter.message(text_delta)

            for tool_delta in delta.get("tool_calls") or []:
                if isinstance(tool_delta, dict):
                    accumulator.add_delta(tool_delta)

        log.debug(
            "Stream completed",
            turn=turn,
            finish_reason=result.finish_reason or "none",
            text_length=len(result.text),
            tool_calls=accumulator.summary(),
        )
        result.tool_calls = accumulator.complete()
        return result

    async def run_turn(
        self,
        request: dict[str, Any],
        emitter: OutputEmitter,
        turn: int,
        context: Context,
    ) -> TurnResult:
        async with aclosing(self.client.stream_chat_completion(request)) as chunks:
            return await self.consume_chunks(chunks, emitter, turn, context)
