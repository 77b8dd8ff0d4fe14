import pytest

from harmony_agent.dispatcher import ToolDispatcher, truncate_result
from harmony_agent.exceptions import ToolExecutionError
from harmony_agent.llm import ToolCall
from harmony_agent.tools.registry import MCPToolInfo, ToolRegistry


class RecordingExecutor:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def list_tools(self):
        return []

    async def call(self, server, tool, arguments):
        self.calls.append((server, tool, arguments))
        if self.error is not None:
            raise self.error
        return self.result


def _dispatcher(executor, max_result_length=8000) -> ToolDispatcher:
    registry = ToolRegistry(executor)
    registry.register(MCPToolInfo(server="calc", name="add", input_schema={"type": "object"}))
    return ToolDispatcher(registry, max_result_length=max_result_length)


def test_truncate_result_appends_note():
    assert truncate_result("short", 10) == "short"
    assert truncate_result("abcdefghij", 10) == "abcdefghij"
    assert truncate_result("abcdefghijk", 10) == "abcdefghij\n\n[Result truncated from 11 to 10 characters]"


def test_prepare_parses_arguments_and_resolves_route():
    dispatcher = _dispatcher(RecordingExecutor())

    prepared = dispatcher.prepare(ToolCall(id="call_1", name="mcp__calc__add", arguments='{"a": 1, "b": 2}'))

    assert prepared.call_id == "call_1"
    assert prepared.name == "mcp__calc__add"
    assert prepared.route.tool_name == "add"
    assert prepared.arguments == {"a": 1, "b": 2}


def test_prepare_handles_bad_arguments_and_unknown_tools():
    dispatcher = _dispatcher(RecordingExecutor())

    assert dispatcher.prepare(ToolCall(id="c", name="mcp__calc__add", arguments="[1, 2]")).arguments == {}
    assert dispatcher.prepare(ToolCall(id="c", name="mcp__calc__add", arguments="")).arguments == {}
    assert dispatcher.prepare(ToolCall(id="c", name="mcp__calc__sub", arguments="{}")) is None
    assert dispatcher.prepare(ToolCall(id="c", name="", arguments="{}")) is None


def test_prepare_generates_call_id_when_missing():
    dispatcher = _dispatcher(RecordingExecutor())

    prepared = dispatcher.prepare(ToolCall(id="", name="add", arguments="{}"))

    assert prepared.call_id.startswith("call_")


@pytest.mark.asyncio
async def test_execute_returns_error_object_on_failure():
    executor = RecordingExecutor(error=ToolExecutionError("add", "division by zero"))
    dispatcher = _dispatcher(executor)
    prepared = dispatcher.prepare(ToolCall(id="c", name="mcp__calc__add", arguments="{}"))

    result = await dispatcher.execute(prepared)

    assert result == {"error": "Tool 'add' failed: division by zero"}
    assert executor.calls == [("calc", "add", {})]


def test_format_output_serializes_and_truncates():
    dispatcher = _dispatcher(RecordingExecutor(), max_result_length=20)

    assert dispatcher.format_output("plain text") == "plain text"
    assert dispatcher.format_output({"ok": True, "n": "é"}) == '{"ok":true,"n":"é"}'
    assert dispatcher.format_output([1, 2]) == "[1,2]"
    long_output = dispatcher.format_output("y" * 25)
    assert long_output == "y" * 20 + "\n\n[Result truncated from 25 to 20 characters]"


def test_default_cap_boundary():
    dispatcher = ToolDispatcher(ToolRegistry())

    assert dispatcher.format_output("z" * 8000) == "z" * 8000
    assert dispatcher.format_output("z" * 8001) == (
        "z" * 8000 + "\n\n[Result truncated from 8001 to 8000 characters]"
    )
