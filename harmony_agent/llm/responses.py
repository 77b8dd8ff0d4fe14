"""Responses-protocol adapters: buffered structured output and native event stream."""

import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterable

from harmony_agent.emitter import OutputEmitter
from harmony_agent.exceptions import UpstreamError
from harmony_agent.items import (
    VALID_MESSAGE_ROLES,
    Context,
    FunctionCallItem,
    FunctionCallOutputItem,
    MessageItem,
    serialize_value,
)
from harmony_agent.llm import ProtocolAdapter, ToolCall, ToolDefinition, TurnOptions, TurnResult
from harmony_agent.logging import get_logger

log = get_logger(__name__)

_TOOL_ITEM_TYPES = {"function_call", "mcp_call"}
_ARGUMENT_DELTA_EVENTS = {
    "response.function_call_arguments.delta",
    "response.mcp_call.arguments_delta",
    "response.mcp_call_arguments.delta",
}
_ERROR_EVENTS = {"error", "response.error", "response.failed"}


def extract_output_text(content: Any) -> str:
    """Concatenate text parts of a response output item's content."""
    if not content:
        return ""
    parts = content if isinstance(content, list) else [content]
    texts: list[str] = []
    for part in parts:
        if isinstance(part, str):
            texts.append(part)
        elif isinstance(part, dict):
            for key in ("text", "content", "delta"):
                value = part.get(key)
                if isinstance(value, str):
                    texts.append(value)
                    break
    return "".join(text for text in texts if text)


class ResponsesAdapterBase(ProtocolAdapter):
    """Shared input and request mapping for the responses protocol."""

    stream: bool = False

    def build_input(self, context: Context) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for item in context:
            if isinstance(item, MessageItem):
                if item.role not in VALID_MESSAGE_ROLES:
                    continue
                blocks = [{"type": "input_text", "text": block.text} for block in item.content]
                if blocks or item.role == "assistant":
                    records.append({
                        "role": item.role,
                        "content": blocks or [{"type": "input_text", "text": ""}],
                    })
            elif isinstance(item, FunctionCallItem):
                # Calls only ever appear in upstream output for this protocol
                continue
            elif isinstance(item, FunctionCallOutputItem):
                record: dict[str, Any] = {
                    "type": "function_call_output",
                    "call_id": item.call_id,
                    "output": item.output,
                    "status": "completed",
                }
                if item.name:
                    record["name"] = item.name
                records.append(record)
        return records

    def format_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "name": tool.name,
                "description": tool.description or "",
                "parameters": tool.parameters or {},
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
        records = self.build_input(context)
        if not records:
            log.warning("No valid input for responses request")
            return None

        body: dict[str, Any] = {
            "model": options.model,
            "input": records,
            "max_output_tokens": options.max_output_tokens,
            "stream": self.stream,
            "temperature": options.temperature,
        }
        if options.reasoning_effort:
            body["reasoning"] = {"effort": options.reasoning_effort}

        tools_param = self.format_tools(tools)
        if tools_param:
            body["tools"] = tools_param
        choice = self.resolve_tool_choice(tools_param, tool_choice)
        if choice:
            body["tool_choice"] = choice
        return body


class StructuredResponsesAdapter(ResponsesAdapterBase):
    """Non-streaming responses: one response object holds the whole turn."""

    name = "responses"
    stream = False

    @staticmethod
    def parse_response(raw: dict[str, Any]) -> TurnResult:
        output = raw.get("output")
        result = TurnResult()
        for item in output if isinstance(output, list) else []:
            if not isinstance(item, dict):
                continue
            item_type = item.get("type")
            if item_type == "message":
                text = extract_output_text(item.get("content"))
                if text:
                    result.text = f"{result.text}\n\n{text}" if result.text else text
            elif item_type == "reasoning":
                result.reasoning += extract_output_text(item.get("content"))
            elif item_type in ("function_call", "tool_call"):
                arguments = item.get("arguments_json") or item.get("arguments") or ""
                result.tool_calls.append(
                    ToolCall(
                        id=str(item.get("id") or item.get("call_id") or ""),
                        call_id=str(item.get("call_id") or item.get("id") or ""),
                        name=str(item.get("name") or ""),
                        arguments=serialize_value(arguments),
                    )
                )
        return result

    async def run_turn(
        self,
        request: dict[str, Any],
        emitter: OutputEmitter,
        turn: int,
        context: Context,
    ) -> TurnResult:
        raw = await self.client.create_response(request)
        result = self.parse_response(raw)
        if result.reasoning:
            result.reasoning_id = f"reasoning_{turn}_{int(time.time() * 1000)}"
            emitter.reasoning(result.reasoning, result.reasoning_id)
        return result


@dataclass
class _StreamedCall:
    type: str
    id: str
    name: str
    call_id: str
    arguments: str = ""
    done: bool = False


class StreamingResponsesAdapter(ResponsesAdapterBase):
    """Native responses event stream: text deltas are forwarded as they arrive."""

    name = "responses-native"
    stream = True

    async def consume_events(
        self,
        events: AsyncIterable[dict[str, Any]],
        emitter: OutputEmitter,
        turn: int,
    ) -> TurnResult:
        result = TurnResult(text_streamed=True)
        calls: dict[str, _StreamedCall] = {}
        reasoning_id = f"reasoning_{turn}_native"

        async for event in events:
            if not event:
                continue
            event_type = event.get("type")

            if event_type == "response.output_text.delta":
                delta = event.get("delta")
                if delta:
                    result.text += delta
                    emitter.message(delta)
            elif event_type == "response.reasoning_text.delta":
                delta = event.get("delta")
                if delta:
                    result.reasoning += delta
                    result.reasoning_id = reasoning_id
                    emitter.reasoning(result.reasoning, reasoning_id)
            elif event_type == "response.output_item.added":
                item = event.get("item") or {}
                if item.get("type") in _TOOL_ITEM_TYPES and item.get("id"):
                    calls[item["id"]] = _StreamedCall(
                        type=item["type"],
                        id=item["id"],
                        name=item.get("name") or "",
                        call_id=item.get("call_id") or item["id"],
                    )
            elif event_type in _ARGUMENT_DELTA_EVENTS:
                call = calls.get(event.get("item_id") or "")
                delta = event.get("delta")
                if call is not None and delta:
                    call.arguments += delta
            elif event_type == "response.output_item.done":
                item = event.get("item") or {}
                call = calls.get(item.get("id") or "")
                if item.get("type") in _TOOL_ITEM_TYPES and call is not None:
                    # The final payload wins over the delta-built string
                    if item.get("arguments"):
                        call.arguments = serialize_value(item["arguments"])
                    if not call.name and item.get("name"):
                        call.name = item["name"]
                    call.done = True
            elif event_type in _ERROR_EVENTS:
                response = event.get("response")
                error = event.get("error") or (response.get("error") if isinstance(response, dict) else None)
                message = error.get("message") if isinstance(error, dict) else (str(error) if error else "")
                raise UpstreamError(message or event.get("message") or "Upstream stream failed")

        for call in calls.values():
            if call.type != "function_call":
                continue
            if not call.done:
                log.warning("Dropping tool call that never completed", call_id=call.call_id, turn=turn)
                continue
            result.tool_calls.append(
                ToolCall(id=call.id, call_id=call.call_id, name=call.name, arguments=call.arguments)
            )
        return result

    async def run_turn(
        self,
        request: dict[str, Any],
        emitter: OutputEmitter,
        turn: int,
        context: Context,
    ) -> TurnResult:
        log.debug("Starting native stream", turn=turn)
        async with aclosing(self.client.stream_response(request)) as events:
            return await self.consume_events(events, emitter, turn)
