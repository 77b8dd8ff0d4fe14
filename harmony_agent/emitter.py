"""Ordered output event stream for one agent request."""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from harmony_agent.logging import get_logger

log = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 80
DEFAULT_CHUNK_DELAY_MS = 8

EVENT_MESSAGE = "message"
EVENT_REASONING = "reasoning"
EVENT_TOOL_CALL = "tool_call"
EVENT_TOOL_RESULT = "tool_result"
EVENT_DONE = "done"
EVENT_ERROR = "error"

TERMINAL_EVENTS = frozenset({EVENT_DONE, EVENT_ERROR})


@dataclass(frozen=True)
class AgentEvent:
    """One typed event delivered to the client."""

    event: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS

    def to_sse(self) -> str:
        payload = json.dumps(self.data, ensure_ascii=False, default=str)
        return f"event: {self.event}\ndata: {payload}\n\n"


_CLOSED = object()


class OutputEmitter:
    """Queue-backed event stream with paced text output.

    The agent loop writes events; a single consumer iterates them until the
    stream is closed.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, chunk_delay_ms: int = DEFAULT_CHUNK_DELAY_MS):
        self.chunk_size = chunk_size if chunk_size > 0 else DEFAULT_CHUNK_SIZE
        self.chunk_delay_ms = chunk_delay_ms if chunk_delay_ms >= 0 else DEFAULT_CHUNK_DELAY_MS
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    def emit(self, event: str, data: dict[str, Any] | None = None) -> None:
        if self._closed:
            log.debug("Dropping event emitted after close", event_type=event)
            return
        self._queue.put_nowait(AgentEvent(event=event, data=dict(data or {})))

    def message(self, delta: str) -> None:
        self.emit(EVENT_MESSAGE, {"role": "assistant", "delta": delta})

    def reasoning(self, content: str, item_id: str) -> None:
        self.emit(EVENT_REASONING, {"content": content, "item_id": item_id})

    def tool_call(self, name: str, args: dict[str, Any], call_id: str) -> None:
        self.emit(EVENT_TOOL_CALL, {"name": name, "args": args, "call_id": call_id})

    def tool_result(self, name: str, result: Any, call_id: str) -> None:
        self.emit(EVENT_TOOL_RESULT, {"name": name, "result": result, "call_id": call_id})

    def done(self) -> None:
        self.emit(EVENT_DONE, {})

    def error(self, message: str) -> None:
        self.emit(EVENT_ERROR, {"message": message})

    async def stream_text(self, text: str) -> None:
        """Emit text as ``message`` deltas of at most ``chunk_size`` characters."""
        if not text:
            return
        delay = self.chunk_delay_ms / 1000
        for start in range(0, len(text), self.chunk_size):
            self.message(text[start:start + self.chunk_size])
            if delay > 0 and start + self.chunk_size < len(text):
                await asyncio.sleep(delay)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[AgentEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
