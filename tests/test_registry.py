"""
Test suite for the tool registry and the built-in tools
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add project root to path so we can import from tools/
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.config import NOTEPAD_TOOL, REMOTE_LLM_TOOL
from core.notepad import NotepadStore
from tools.errors import ToolError, ToolInputError, ToolNotFoundError, ToolUnavailableError
from tools.notepad_tool import NotepadTool
from tools.registry import Tool, ToolCallContext, ToolRegistry
from tools.remote_llm import RemoteIntelligenceTool, extract_json


def _completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage = None
    return response


class UpperTool(Tool):
    description = "Uppercases text"
    capabilities = ["text"]

    def execute(self, params, context):
        return {"success": True, "result": params["text"].upper(), "step": context.step_number}


def test_register_and_execute():
    """Test registration and dispatch."""

    print("Testing register and execute...")

    registry = ToolRegistry()
    registry.register("upper", UpperTool())
    registry.register_function("add", lambda params, ctx: params["a"] + params["b"], description="Adds")

    assert registry.has("upper")
    assert registry.names() == ["upper", "add"]
    assert len(registry) == 2
    assert registry.get("upper").name == "upper"

    result = registry.execute("upper", {"text": "hi"}, ToolCallContext(step_number=3))
    assert result == {"success": True, "result": "HI", "step": 3}
    assert registry.execute("add", {"a": 2, "b": 3}) == 5

    print("✓ register and execute tests passed")


def test_unknown_and_unavailable_tools():
    """Test dispatch errors."""

    print("Testing dispatch errors...")

    registry = ToolRegistry()
    registry.register_function("offline", lambda params, ctx: "never", is_available=lambda: False)

    with pytest.raises(ToolNotFoundError) as not_found:
        registry.execute("missing", {})
    assert not_found.value.recoverable is False

    with pytest.raises(ToolUnavailableError) as unavailable:
        registry.execute("offline", {})
    assert unavailable.value.recoverable is True
    assert unavailable.value.tool == "offline"

    print("✓ dispatch error tests passed")


def test_tool_errors_are_tagged_with_tool_name():
    """Test that ToolErrors raised by a tool name the tool."""

    print("Testing tool error tagging...")

    def failing(params, ctx):
        raise ToolError("boom")

    registry = ToolRegistry()
    registry.register_function("failing", failing)

    with pytest.raises(ToolError) as error:
        registry.execute("failing", {})
    assert error.value.tool == "failing"

    print("✓ tool error tagging tests passed")


def test_list_available_and_summary():
    """Test availability listing."""

    print("Testing list_available...")

    def broken_check():
        raise RuntimeError("probe failed")

    registry = ToolRegistry()
    registry.register("upper", UpperTool())
    registry.register_function("offline", lambda params, ctx: None, is_available=lambda: False)
    registry.register_function("broken", lambda params, ctx: None, is_available=broken_check)

    available = registry.list_available()
    assert [tool["name"] for tool in available] == ["upper"]
    assert registry.tool_summary() == "- upper: Uppercases text [text]"

    print("✓ list_available tests passed")


def test_notepad_tool():
    """Test the shared notepad tool through the registry."""

    print("Testing NotepadTool...")

    registry = ToolRegistry()
    registry.register(NOTEPAD_TOOL, NotepadTool())
    notepad = NotepadStore()
    context = ToolCallContext(notepad=notepad)

    assert registry.execute(NOTEPAD_TOOL, {"action": "write", "key": "k", "data": [1]}, context)["success"] is True
    assert notepad.read("k") == [1]

    read = registry.execute(NOTEPAD_TOOL, {"action": "read", "key": "k"}, context)
    assert read["data"] == [1]

    assert registry.execute(NOTEPAD_TOOL, {"action": "keys"}, context)["result"] == ["k"]
    assert registry.execute(NOTEPAD_TOOL, {"action": "readAll"}, context)["data"] == {"k": [1]}

    registry.execute(NOTEPAD_TOOL, {"action": "clear"}, context)
    assert len(notepad) == 0

    # Schema rejects write without key and unknown actions
    with pytest.raises(ToolInputError):
        registry.execute(NOTEPAD_TOOL, {"action": "write", "data": 1}, context)
    with pytest.raises(ToolInputError):
        registry.execute(NOTEPAD_TOOL, {"action": "delete", "key": "k"}, context)

    # No notepad attached
    with pytest.raises(ToolError):
        registry.execute(NOTEPAD_TOOL, {"action": "keys"}, ToolCallContext())

    print("✓ NotepadTool tests passed")


def test_extract_json():
    """Test JSON extraction from model answers."""

    print("Testing extract_json...")

    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json("```json\n[1, 2, 3]\n```") == [1, 2, 3]
    assert extract_json("Here you go: [0, 4] as requested") == [0, 4]
    assert extract_json('Result: {"valid": true} done') == {"valid": True}

    with pytest.raises(ValueError):
        extract_json("no json here")

    print("✓ extract_json tests passed")


def test_remote_intelligence_tool():
    """Test the remote LLM tool with a mocked client."""

    print("Testing RemoteIntelligenceTool...")

    client = MagicMock()
    client.chat.completions.create.return_value = _completion("```json\n[2, 5]\n```")
    tool = RemoteIntelligenceTool(client=client, model="test-model")

    registry = ToolRegistry()
    registry.register(REMOTE_LLM_TOOL, tool)

    result = registry.execute(REMOTE_LLM_TOOL, {"prompt": "List ids", "parseJson": True, "temperature": 0})
    assert result["success"] is True
    assert result["result"] == [2, 5]
    assert result["model"] == "test-model"

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["temperature"] == 0
    assert kwargs["messages"] == [{"role": "user", "content": "List ids"}]
    assert len(tool.costs) == 1

    # Plain text answers are returned as-is
    client.chat.completions.create.return_value = _completion("A short summary.")
    assert registry.execute(REMOTE_LLM_TOOL, {"prompt": "Summarize"})["result"] == "A short summary."

    # Unparseable JSON is a reported failure, not an exception
    client.chat.completions.create.return_value = _completion("not json")
    failed = registry.execute(REMOTE_LLM_TOOL, {"prompt": "List ids", "parseJson": True})
    assert failed["success"] is False
    assert "JSON parse failed" in failed["error"]

    # API errors raise
    client.chat.completions.create.side_effect = RuntimeError("503 upstream")
    with pytest.raises(ToolError):
        registry.execute(REMOTE_LLM_TOOL, {"prompt": "Summarize"})

    # Empty prompt is rejected by the schema
    with pytest.raises(ToolInputError):
        registry.execute(REMOTE_LLM_TOOL, {"prompt": ""})

    print("✓ RemoteIntelligenceTool tests passed")


def run_all_tests():
    """Run all test functions."""
    print("\n" + "=" * 60)
    print("Running Registry Tests")
    print("=" * 60 + "\n")

    try:
        test_register_and_execute()
        test_unknown_and_unavailable_tools()
        test_tool_errors_are_tagged_with_tool_name()
        test_list_available_and_summary()
        test_notepad_tool()
        test_extract_json()
        test_remote_intelligence_tool()

        print("\n" + "=" * 60)
        print("✅ ALL TESTS PASSED!")
        print("=" * 60 + "\n")

    except AssertionError as e:
        print("\n" + "=" * 60)
        print("❌ TEST FAILED!")
        print("=" * 60)
        print(f"Error: {e}\n")
        raise


if __name__ == "__main__":
    run_all_tests()
