from harmony_agent.items import FunctionCallItem, FunctionCallOutputItem, MessageItem
from harmony_agent.normalizer import coerce_text_blocks, normalize_item, normalize_items


def test_function_call_requires_name_and_arguments():
    assert normalize_item({"type": "function_call", "name": "lookup", "arguments": ""}) is None
    assert normalize_item({"type": "function_call", "arguments": "{}"}) is None

    item = normalize_item({"type": "function_call", "name": "lookup", "call_id": "c1", "arguments": {"q": 1}})

    assert isinstance(item, FunctionCallItem)
    assert item.arguments == '{"q":1}'
    assert item.id == "c1"
    assert item.call_id == "c1"


def test_function_call_cross_fills_call_id_from_id():
    item = normalize_item({"type": "function_call", "id": "fc_9", "name": "lookup", "arguments": "{}"})

    assert item.call_id == "fc_9"
    assert item.id == "fc_9"


def test_function_call_output_requires_call_id_and_output():
    assert normalize_item({"type": "function_call_output", "output": "x"}) is None
    assert normalize_item({"type": "function_call_output", "call_id": "c1"}) is None

    item = normalize_item({"type": "function_call_output", "call_id": "c1", "output": {"ok": True}})

    assert isinstance(item, FunctionCallOutputItem)
    assert item.output == '{"ok":true}'


def test_tool_role_message_becomes_function_call_output():
    item = normalize_item({"role": "tool", "call_id": "c2", "content": "42", "name": "calc"})

    assert isinstance(item, FunctionCallOutputItem)
    assert item.call_id == "c2"
    assert item.output == "42"
    assert item.name == "calc"


def test_assistant_wrapping_single_function_call_is_unwrapped():
    raw = {
        "role": "assistant",
        "content": [
            {"type": "function_call", "id": "c3", "name": "search", "arguments": {"q": "x"}},
        ],
    }

    item = normalize_item(raw)

    assert isinstance(item, FunctionCallItem)
    assert item.name == "search"
    assert item.arguments == '{"q":"x"}'


def test_message_content_is_coerced_to_text_blocks():
    item = normalize_item(
        {"role": "user", "content": ["first", {"text": "second"}, {"delta": "third"}, {"n": 1}, ""]}
    )

    assert isinstance(item, MessageItem)
    assert [b.text for b in item.content] == ["first", "second", "third", '{"n":1}']


def test_empty_messages_are_dropped():
    assert normalize_item({"role": "user", "content": ""}) is None
    assert normalize_item({"role": "assistant", "content": []}) is None


def test_reasoning_becomes_assistant_message():
    item = normalize_item({"type": "reasoning", "id": "r1", "content": "step by step"})

    assert isinstance(item, MessageItem)
    assert item.role == "assistant"
    assert item.text() == "step by step"
    assert normalize_item({"type": "reasoning", "content": ""}) is None


def test_unclassifiable_items_are_skipped_silently():
    items = normalize_items(
        [
            None,
            "text",
            {"type": "image"},
            {"role": "narrator", "content": "x"},
            {"role": "user", "content": "kept"},
        ]
    )

    assert len(items) == 1
    assert items[0].text() == "kept"


def test_coerce_text_blocks_handles_scalars():
    assert [b.text for b in coerce_text_blocks("hi")] == ["hi"]
    assert coerce_text_blocks(None) == []
    assert coerce_text_blocks(12) == []
