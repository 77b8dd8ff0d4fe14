"""Canonical conversation items shared by every protocol adapter."""

import json
from dataclasses import dataclass, field
from typing import Any, Iterator, Literal, Union

VALID_MESSAGE_ROLES = frozenset({"system", "developer", "user", "assistant"})

Role = Literal["system", "developer", "user", "assistant"]


@dataclass
class TextBlock:
    """One plain-text block of message content."""

    text: str
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "input_text", "text": self.text}
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass
class MessageItem:
    """A system, developer, user or assistant message."""

    role: str
    content: list[TextBlock] = field(default_factory=list)
    type: Literal["message"] = field(default="message", init=False)

    @classmethod
    def from_text(cls, role: str, text: str) -> "MessageItem":
        return cls(role=role, content=[TextBlock(text=text)])

    def text(self) -> str:
        """Join non-empty blocks with a blank line."""
        return "\n\n".join(block.text for block in self.content if block.text)

    def append_text(self, delta: str) -> None:
        if not self.content:
            self.content.append(TextBlock(text=""))
        self.content[-1].text += delta

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "role": self.role,
            "content": [block.to_dict() for block in self.content],
        }


@dataclass
class FunctionCallItem:
    """A tool call requested by the assistant."""

    id: str
    call_id: str
    name: str
    arguments: str
    status: str | None = None
    type: Literal["function_call"] = field(default="function_call", init=False)

    def __post_init__(self) -> None:
        if not self.call_id and self.id:
            self.call_id = self.id
        if not self.id and self.call_id:
            self.id = self.call_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "call_id": self.call_id,
            "name": self.name,
            "arguments": self.arguments,
            "status": self.status,
        }


@dataclass
class FunctionCallOutputItem:
    """The serialized result of a tool call, linked by ``call_id``."""

    call_id: str
    output: str
    name: str | None = None
    type: Literal["function_call_output"] = field(default="function_call_output", init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "call_id": self.call_id,
            "output": self.output,
        }
        if self.name:
            data["name"] = self.name
        return data


@dataclass
class ReasoningItem:
    """Reasoning trace surfaced to the caller.

    Never sent upstream as reasoning; it re-enters context as an assistant
    message through ``to_message``.
    """

    id: str
    content: str
    type: Literal["reasoning"] = field(default="reasoning", init=False)

    def to_message(self) -> MessageItem:
        return MessageItem.from_text("assistant", self.content)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "content": self.content}


Item = Union[MessageItem, FunctionCallItem, FunctionCallOutputItem, ReasoningItem]


# Tool values: every argument/result crosses one serialize/deserialize boundary.


@dataclass(frozen=True)
class RawValue:
    """A value that is already a string and is passed through untouched."""

    text: str


@dataclass(frozen=True)
class StructuredValue:
    """A JSON-serializable value that must be encoded before use as text."""

    data: Any


ToolValue = Union[RawValue, StructuredValue]


def to_tool_value(value: Any) -> ToolValue:
    """Tag an arbitrary value as raw text or structured data."""
    if isinstance(value, (RawValue, StructuredValue)):
        return value
    if isinstance(value, str):
        return RawValue(value)
    return StructuredValue(value)


def serialize_value(value: Any) -> str:
    """Serialize a tool value to the string form stored in context."""
    tagged = to_tool_value(value)
    if isinstance(tagged, RawValue):
        return tagged.text
    try:
        return json.dumps(tagged.data, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(tagged.data)


def deserialize_arguments(text: str | None) -> tuple[dict[str, Any], bool]:
    """Parse a tool-call argument string.

    Returns the parsed object and whether parsing succeeded. Empty input is a
    successful empty object; malformed or non-object JSON yields ``{}`` and
    ``False``.
    """
    if not text or not text.strip():
        return {}, True
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return {}, False
    if not isinstance(parsed, dict):
        return {}, False
    return parsed, True


class Context:
    """Append-only ordered item sequence for one request."""

    def __init__(self, items: list[Item] | None = None):
        self._items: list[Item] = list(items or [])

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    @property
    def items(self) -> tuple[Item, ...]:
        return tuple(self._items)

    def append(self, item: Item) -> None:
        self._items.append(item)

    def extend(self, items: list[Item]) -> None:
        self._items.extend(items)

    def call_ids(self) -> set[str]:
        return {item.call_id for item in self._items if isinstance(item, FunctionCallItem)}

    def open_assistant_message(self) -> MessageItem:
        """Append an empty assistant message that streaming deltas extend in place."""
        message = MessageItem.from_text("assistant", "")
        self._items.append(message)
        return message
