"""Map loosely-typed conversation history onto canonical items."""

from typing import Any, Iterable

from harmony_agent.items import (
    VALID_MESSAGE_ROLES,
    FunctionCallItem,
    FunctionCallOutputItem,
    Item,
    MessageItem,
    ReasoningItem,
    TextBlock,
    serialize_value,
)
from harmony_agent.logging import get_logger

log = get_logger(__name__)

_TEXT_FIELDS = ("text", "content", "delta")


def _block_text(value: Any) -> str:
    """Extract the first known text-bearing field, else serialize the whole value."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in _TEXT_FIELDS:
            candidate = value.get(key)
            if isinstance(candidate, str):
                return candidate
    return serialize_value(value)


def coerce_text_blocks(content: Any) -> list[TextBlock]:
    """Coerce message content into one or more plain-text blocks.

    Accepts a string, a list of strings/objects, or a single object. Empty
    text never produces a block.
    """
    entries: list[Any]
    if content is None:
        return []
    if isinstance(content, list):
        entries = [entry for entry in content if isinstance(entry, (str, dict))]
    elif isinstance(content, (str, dict)):
        entries = [content]
    else:
        return []

    blocks: list[TextBlock] = []
    for entry in entries:
        text = _block_text(entry)
        if text:
            blocks.append(TextBlock(text=text))
    return blocks


def _function_call_from(raw: dict[str, Any], arguments: Any) -> FunctionCallItem:
    call_id = raw.get("call_id") or raw.get("id") or ""
    item_id = raw.get("id") or raw.get("call_id") or ""
    return FunctionCallItem(
        id=str(item_id),
        call_id=str(call_id),
        name=str(raw.get("name") or ""),
        arguments=serialize_value(arguments),
        status=raw.get("status"),
    )


def _embedded_arguments(fn_call: dict[str, Any]) -> Any:
    arguments = fn_call.get("arguments")
    if isinstance(arguments, str):
        return arguments
    if fn_call.get("arguments_json"):
        return fn_call["arguments_json"]
    return arguments if arguments is not None else {}


def _is_embedded_function_call(raw: dict[str, Any]) -> bool:
    content = raw.get("content")
    return (
        raw.get("role") == "assistant"
        and isinstance(content, list)
        and len(content) == 1
        and isinstance(content[0], dict)
        and content[0].get("type") == "function_call"
    )


def normalize_item(raw: Any) -> Item | None:
    """Normalize one external item; ``None`` means the item is dropped."""
    if not isinstance(raw, dict) or not raw:
        return None

    item_type = raw.get("type")
    role = raw.get("role")

    if item_type == "function_call":
        arguments = raw.get("arguments")
        if raw.get("name") and arguments is not None and arguments != "":
            return _function_call_from(raw, arguments)
        log.debug("Dropping function call without name or arguments", call_id=raw.get("call_id"))
        return None

    if item_type == "function_call_output":
        if raw.get("call_id") and raw.get("output") is not None:
            return FunctionCallOutputItem(
                call_id=str(raw["call_id"]),
                output=serialize_value(raw["output"]),
                name=raw.get("name"),
            )
        log.debug("Dropping function call output without call_id or output")
        return None

    if role == "tool":
        if raw.get("call_id") and raw.get("content") is not None:
            return FunctionCallOutputItem(
                call_id=str(raw["call_id"]),
                output=serialize_value(raw["content"]),
                name=raw.get("name"),
            )
        log.debug("Dropping tool message without call_id or content")
        return None

    if _is_embedded_function_call(raw):
        fn_call = raw["content"][0]
        return _function_call_from(fn_call, _embedded_arguments(fn_call))

    if role in VALID_MESSAGE_ROLES:
        source = raw.get("content")
        if source is None:
            source = raw.get("text")
        if source is None:
            source = raw.get("message", "")
        blocks = coerce_text_blocks(source)
        if not blocks:
            return None
        return MessageItem(role=role, content=blocks)

    if item_type == "reasoning" and raw.get("content"):
        reasoning = ReasoningItem(id=str(raw.get("id") or ""), content=serialize_value(raw["content"]))
        return reasoning.to_message()

    return None


def normalize_items(items: Iterable[Any] | None) -> list[Item]:
    """Normalize an ordered external history, silently skipping unclassifiable items."""
    normalized: list[Item] = []
    skipped = 0
    for raw in items or []:
        item = normalize_item(raw)
        if item is None:
            skipped += 1
            continue
        normalized.append(item)
    if skipped:
        log.debug("Skipped unclassifiable conversation items", skipped=skipped, kept=len(normalized))
    return normalized
