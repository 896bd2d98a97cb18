"""
Test suite for planning, plan validation and repair requests
"""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add project root to path so we can import from core/
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.config import BROWSER_TOOL, CURRENT_TAB_MAX_CHARS, CURRENT_TAB_TOOL, REMOTE_LLM_TOOL, REPORT_TOOL
from core.errors import PlanningFailure, PlanValidationError
from core.planner import (
    CURRENT_TAB_CONTEXT_KEY,
    LLMPlanner,
    build_repair_context,
    normalize_plan_for_current_tab,
    parse_plan,
    task_mentions_current_tab,
)
from core.planner_validator import validate_plan
from core.replanner import build_failure_context, request_repair_plan
from core.templates import TAB_TOKEN
from core.verifier import parse_verdict
from tools.schemas import FailureContext, Plan, SuggestedFix

from fakes import ScriptedPlanner, make_plan, make_registry


def _completion(payload):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = payload if isinstance(payload, str) else json.dumps(payload)
    response.usage = None
    return response


def test_task_mentions_current_tab():
    assert task_mentions_current_tab("Summarize this page for me") is True
    assert task_mentions_current_tab("Hide ads in the ACTIVE TAB") is True
    assert task_mentions_current_tab("Find cheap flights to Lisbon") is False


def test_normalize_inserts_current_tab_step():
    """Test grounding of current-tab tasks."""

    print("Testing current-tab normalization...")

    raw = {
        "plan": [
            {"stepNumber": 1, "tool": BROWSER_TOOL, "purpose": "Scroll", "params": {"task": "scroll"}},
            {"stepNumber": 2, "tool": REMOTE_LLM_TOOL, "purpose": "Summarize", "params": {"prompt": "x"}},
        ],
        "expectedOutput": "Summary"
    }

    normalized = normalize_plan_for_current_tab("Summarize this page", raw)
    steps = normalized["plan"]

    assert [step["tool"] for step in steps] == [CURRENT_TAB_TOOL, BROWSER_TOOL, REMOTE_LLM_TOOL]
    assert [step["stepNumber"] for step in steps] == [1, 2, 3]
    assert steps[0]["params"] == {"tabId": TAB_TOKEN, "maxChars": CURRENT_TAB_MAX_CHARS}
    assert steps[0]["storeAs"] == CURRENT_TAB_CONTEXT_KEY
    assert steps[1]["params"] == {"task": "scroll", "useCurrentTab": True, "target": "current-tab"}

    # Input untouched
    assert len(raw["plan"]) == 2

    print("✓ current-tab normalization tests passed")


def test_normalize_keeps_existing_context_step():
    raw = {"plan": [{"tool": CURRENT_TAB_TOOL, "params": {"maxChars": 100}}]}
    normalized = normalize_plan_for_current_tab("What is on this tab?", raw)

    assert len(normalized["plan"]) == 1
    assert normalized["plan"][0]["params"] == {"maxChars": 100, "tabId": TAB_TOKEN}
    assert normalized["plan"][0]["storeAs"] == CURRENT_TAB_CONTEXT_KEY

    # Unrelated tasks pass through as-is
    assert normalize_plan_for_current_tab("Find flights", raw) is raw


def test_parse_plan():
    """Test oracle JSON parsing."""

    assert parse_plan({}) is None
    assert parse_plan({"plan": []}) is None
    assert parse_plan("not a dict") is None

    plan = parse_plan({
        "plan": [{"tool": "echo", "params": {"a": 1}, "storeAs": "out"}, {"toolName": "echo"}],
        "expectedOutput": "Echoed"
    })
    assert [step.step_number for step in plan.steps] == [1, 2]
    assert plan.steps[0].store_as == "out"
    assert plan.expected_output == "Echoed"
    assert plan.tools == ["echo", "echo"]


def test_llm_planner():
    """Test the LLM planner with a mocked client."""

    print("Testing LLMPlanner...")

    client = MagicMock()
    client.chat.completions.create.return_value = _completion({
        "plan": [{"stepNumber": 1, "tool": "echo", "purpose": "Echo", "params": {}, "storeAs": "out"}],
        "expectedOutput": "Echo output"
    })
    planner = LLMPlanner(client=client, model="planner-model")

    plan = planner.plan("Echo something", "- echo: Echo params []", "https://example.com")

    assert plan.tools == ["echo"]
    assert plan.expected_output == "Echo output"
    assert len(planner.costs) == 1

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "planner-model"
    assert kwargs["response_format"] == {"type": "json_object"}
    user_prompt = kwargs["messages"][1]["content"]
    assert "Echo something" in user_prompt
    assert "https://example.com" in user_prompt

    # Empty plans are None, not errors
    client.chat.completions.create.return_value = _completion({"plan": []})
    assert planner.plan("Echo something", "", None) is None

    print("✓ LLMPlanner tests passed")


def test_llm_planner_failures():
    """Test planner error conversion."""

    client = MagicMock()
    planner = LLMPlanner(client=client)

    client.chat.completions.create.return_value = _completion("{not json")
    with pytest.raises(PlanningFailure):
        planner.plan("Echo", "", None)

    client.chat.completions.create.return_value = _completion({"plan": [{"stepNumber": 1, "params": {}}]})
    with pytest.raises(PlanningFailure):
        planner.plan("Echo", "", None)

    client.chat.completions.create.side_effect = RuntimeError("401 unauthorized")
    with pytest.raises(PlanningFailure):
        planner.plan("Echo", "", None)


def test_repair_prompt_carries_failure_context():
    """Test that repair requests include the verifier's findings."""

    failure = FailureContext(
        issues=["Output is empty", "Missing prices"],
        head100="head",
        tail100="tail",
        previous_tools=["scraper", "echo"],
        suggested_fixes=[SuggestedFix(tool=REPORT_TOOL, purpose="Regenerate")]
    )
    text = build_repair_context(failure)

    assert "Output is empty; Missing prices" in text
    assert "scraper -> echo" in text
    assert REPORT_TOOL in text

    client = MagicMock()
    client.chat.completions.create.return_value = _completion({"plan": [{"tool": "echo"}]})
    LLMPlanner(client=client).plan("Echo", "", None, failure_context=failure)
    assert "Missing prices" in client.chat.completions.create.call_args.kwargs["messages"][1]["content"]


def test_validate_plan():
    """Test static plan validation."""

    print("Testing validate_plan...")

    registry = make_registry()

    with pytest.raises(PlanValidationError) as invalid:
        validate_plan(Plan(), registry)
    assert invalid.value.error["category"] == "SCHEMA_ERROR"

    with pytest.raises(PlanValidationError):
        validate_plan(make_plan({"tool": "echo", "storeAs": "  "}), registry)

    plan = Plan.model_validate({"plan": [
        {"stepNumber": 3, "tool": "echo", "params": {"x": "{{notepad:later}}"}},
        {"stepNumber": 7, "tool": "mystery", "params": {}, "storeAs": "later"},
        {"stepNumber": 9, "tool": "site_modifier", "params": {"action": "hideByIndices"}},
        {"stepNumber": 10, "tool": "local_ollama_model", "params": {}},
    ]})
    validated = validate_plan(plan, registry)

    assert validated["valid"] is True
    assert [step.step_number for step in validated["normalized_plan"].steps] == [1, 2, 3, 4]
    warnings = validated["warnings"]
    assert any("before any step stores it" in warning for warning in warnings)
    assert any(warning.startswith("step 2 (mystery): unknown tool") for warning in warnings)
    assert any("hideByIndices without indices" in warning for warning in warnings)
    assert any("no action given" in warning for warning in warnings)

    # Already contiguous plans are returned as-is
    clean = make_plan(("echo", {}, "a"), ("echo", {"v": "{{notepad:a}}"}))
    validated = validate_plan(clean, registry)
    assert validated["normalized_plan"] is clean
    assert validated["warnings"] == []

    print("✓ validate_plan tests passed")


def test_request_repair_plan():
    """Test repair plan requests."""

    print("Testing request_repair_plan...")

    registry = make_registry()
    failed = make_plan(("echo", {}, "out"))
    verdict = parse_verdict({"valid": False, "issues": ["Too short"]})
    verdict.head100 = "abc"

    repaired = make_plan(("echo", {"more": True}, "out"), expected_output="Longer output")
    planner = ScriptedPlanner(repaired)

    plan = request_repair_plan(
        planner=planner,
        registry=registry,
        task_text="Echo",
        current_url="https://example.com",
        failed_plan=failed,
        verdict=verdict,
        attempt=1
    )

    assert plan.expected_output == "Longer output"
    failure_context = planner.calls[0]["failure_context"]
    assert failure_context.issues == ["Too short"]
    assert failure_context.head100 == "abc"
    assert failure_context.previous_tools == ["echo"]

    # Oracle errors and empty plans give no repair
    for outcome in (PlanningFailure("bad json"), RuntimeError("boom"), Plan()):
        result = request_repair_plan(
            planner=ScriptedPlanner(outcome),
            registry=registry,
            task_text="Echo",
            current_url=None,
            failed_plan=failed,
            verdict=verdict,
            attempt=2
        )
        assert result is None

    print("✓ request_repair_plan tests passed")


def test_build_failure_context():
    verdict = parse_verdict({"valid": False, "issues": ["x"], "uiAssessment": {"score": 4}})
    context = build_failure_context(verdict, make_plan(("a", {}), ("b", {})))

    assert context.previous_tools == ["a", "b"]
    assert context.ui_assessment.score == 4.0


def run_all_tests():
    """Run all test functions."""
    print("\n" + "=" * 60)
    print("Running Planner Tests")
    print("=" * 60 + "\n")

    try:
        test_task_mentions_current_tab()
        test_normalize_inserts_current_tab_step()
        test_normalize_keeps_existing_context_step()
        test_parse_plan()
        test_llm_planner()
        test_llm_planner_failures()
        test_repair_prompt_carries_failure_context()
        test_validate_plan()
        test_request_repair_plan()
        test_build_failure_context()

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
