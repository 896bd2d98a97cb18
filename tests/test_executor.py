"""
Test suite for the execution engine
"""

import logging
import sys
from pathlib import Path

import pytest

# Add project root to path so we can import from core/
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.config import ACTION_LIMIT_REASON, BROWSER_TOOL, LOCAL_INFERENCE_TOOL, REMOTE_LLM_TOOL
from core.errors import PlanningFailure, UserAbort
from core.executor import execute_chain, stored_value
from tools.errors import ActionLimitError
from tools.schemas import Plan

from fakes import FakeHost, make_context, make_plan, make_registry


def test_steps_run_in_order_and_thread_data():
    """Test sequential execution with notepad threading."""

    print("Testing sequential execution...")

    calls = []

    def source(params, ctx):
        calls.append("source")
        return {"success": True, "data": [3, 1, 2]}

    def sorter(params, ctx):
        calls.append("sorter")
        return {"success": True, "result": sorted(params["items"])}

    registry = make_registry(source=source, sorter=sorter)
    plan = make_plan(
        ("source", {}, "raw"),
        ("sorter", {"items": "{{notepad:raw}}"}, "sorted"),
        ("echo", {"summary": "Sorted: {{notepad:sorted}}"}, "summary"),
    )
    context = make_context(registry)

    report = execute_chain(plan, context)

    assert calls == ["source", "sorter"]
    assert report.success is True
    assert report.total_steps == 3
    assert report.failed_steps == 0
    assert [step.step for step in report.steps] == [1, 2, 3]
    assert report.notepad_state == {
        "raw": [3, 1, 2],
        "sorted": [1, 2, 3],
        "summary": {"summary": "Sorted: [1,2,3]"}
    }

    print("✓ sequential execution tests passed")


def test_failed_step_is_recorded_and_execution_continues():
    """Test that an ordinary failure does not stop the chain."""

    print("Testing failure recording...")

    def broken(params, ctx):
        raise ValueError("selector not found")

    def reported_failure(params, ctx):
        return {"success": False, "error": "nothing to export"}

    registry = make_registry(broken=broken, reported=reported_failure)
    plan = make_plan(("broken", {}, "a"), ("reported", {}), ("echo", {"x": 1}, "c"))
    events = []
    context = make_context(registry, on_status=lambda message, event: events.append(event.get("type")))

    report = execute_chain(plan, context)

    assert report.success is False
    assert report.aborted is False
    assert report.failed_steps == 2
    assert len(report.steps) == 3
    assert report.steps[0].error == "selector not found"
    assert report.steps[1].error == "nothing to export"
    assert report.steps[2].success is True
    # Failed steps write nothing
    assert report.notepad_state == {"c": {"x": 1}}
    assert events.count("tool-step-error") == 2

    print("✓ failure recording tests passed")


def test_action_limit_aborts_chain():
    """Test that an exhausted browser action budget aborts execution."""

    print("Testing action-limit abort...")

    def browser(params, ctx):
        raise ActionLimitError("Max actions reached without task completion", tool=BROWSER_TOOL)

    registry = make_registry(**{BROWSER_TOOL: browser})
    plan = make_plan((BROWSER_TOOL, {"task": "click"}), ("echo", {}), ("echo", {}))
    events = []
    context = make_context(registry, on_status=lambda message, event: events.append(event))

    report = execute_chain(plan, context)

    assert report.aborted is True
    assert report.abort_reason == ACTION_LIMIT_REASON
    assert report.success is False
    assert len(report.steps) == 1
    assert any(event.get("type") == "tool-chain-blocked" for event in events)

    print("✓ action-limit abort tests passed")


def test_action_limit_detected_from_message():
    """Test the untyped action-limit message path."""

    def browser(params, ctx):
        return {"success": False, "error": "Agent stopped: Max actions reached without task completion"}

    registry = make_registry(**{BROWSER_TOOL: browser})
    report = execute_chain(make_plan((BROWSER_TOOL, {}), ("echo", {})), make_context(registry))

    assert report.aborted is True
    assert len(report.steps) == 1


def test_unavailable_local_inference_falls_back_to_remote():
    """Test local -> remote substitution."""

    print("Testing remote fallback...")

    remote_prompts = []

    def remote(params, ctx):
        remote_prompts.append(params)
        return {"success": True, "result": "Mostly positive feedback"}

    registry = make_registry(**{REMOTE_LLM_TOOL: remote})
    registry.register_function(LOCAL_INFERENCE_TOOL, lambda params, ctx: None, is_available=lambda: False)

    plan = make_plan((LOCAL_INFERENCE_TOOL, {"action": "sentiment", "text": "Great product"}, "mood"))
    report = execute_chain(plan, make_context(registry))

    assert report.success is True
    assert report.steps[0].fallback == REMOTE_LLM_TOOL
    assert report.notepad_state == {"mood": "positive"}
    assert remote_prompts[0]["parseJson"] is False
    assert "Great product" in remote_prompts[0]["prompt"]

    print("✓ remote fallback tests passed")


def test_empty_local_result_triggers_fallback():
    """Test that an empty local answer counts as unavailable."""

    registry = make_registry(**{
        LOCAL_INFERENCE_TOOL: lambda params, ctx: {"success": True, "result": None},
        REMOTE_LLM_TOOL: lambda params, ctx: {"success": True, "result": "A generated tagline"},
    })

    plan = make_plan((LOCAL_INFERENCE_TOOL, {"prompt": "Write a tagline"}, "tagline"))
    report = execute_chain(plan, make_context(registry))

    assert report.success is True
    assert report.notepad_state["tagline"] == "A generated tagline"


def test_failed_fallback_fails_the_step():
    """Test that a failing substitute fails the step with both errors."""

    def local(params, ctx):
        raise RuntimeError("Ollama not available on localhost")

    registry = make_registry(**{
        LOCAL_INFERENCE_TOOL: local,
        REMOTE_LLM_TOOL: lambda params, ctx: {"success": False, "error": "quota exceeded"},
    })

    plan = make_plan((LOCAL_INFERENCE_TOOL, {"action": "generate", "prompt": "Hi"}, "out"))
    report = execute_chain(plan, make_context(registry))

    assert report.success is False
    assert "remote fallback failed" in report.steps[0].error
    assert "quota exceeded" in report.steps[0].error
    assert report.notepad_state == {}


def test_non_availability_local_failure_does_not_fall_back():
    """Test that ordinary local errors are plain step failures."""

    remote_calls = []

    def local(params, ctx):
        raise ValueError("schema mismatch")

    registry = make_registry(**{
        LOCAL_INFERENCE_TOOL: local,
        REMOTE_LLM_TOOL: lambda params, ctx: remote_calls.append(params),
    })

    report = execute_chain(make_plan((LOCAL_INFERENCE_TOOL, {"action": "jsonExtract"})), make_context(registry))

    assert report.success is False
    assert remote_calls == []


def test_screenshots_follow_result_tab():
    """Test snapshot capture after steps."""

    print("Testing screenshots...")

    def opener(params, ctx):
        return {"success": True, "tabId": 9}

    def broken(params, ctx):
        raise ValueError("nope")

    registry = make_registry(opener=opener, broken=broken)
    host = FakeHost()
    context = make_context(registry, host=host, tab_handle=1)

    report = execute_chain(make_plan(("opener", {}), ("echo", {}), ("broken", {})), context)

    assert [shot.tab_handle for shot in report.screenshots] == [9, 1, 1]
    assert [shot.failure for shot in report.screenshots] == [False, False, True]
    assert report.screenshots[0].image == "data:image/png;base64,tab-9"

    # Disabled capture takes nothing
    quiet = make_context(registry, host=FakeHost(), tab_handle=1, capture_screenshots=False)
    assert execute_chain(make_plan(("echo", {})), quiet).screenshots == []

    print("✓ screenshot tests passed")


def test_cancellation_between_steps():
    """Test cooperative cancellation."""

    print("Testing cancellation...")

    ran = []

    def first(params, ctx):
        ran.append("first")
        context.cancel()
        return {"success": True}

    def second(params, ctx):
        ran.append("second")
        return {"success": True}

    registry = make_registry(first=first, second=second)
    context = make_context(registry)

    with pytest.raises(UserAbort) as stopped:
        execute_chain(make_plan(("first", {}), ("second", {})), context)

    assert str(stopped.value) == "Stopped by user"
    assert ran == ["first"]

    print("✓ cancellation tests passed")


def test_empty_plan_is_a_planning_failure():
    """Test that there is nothing to execute in an empty plan."""

    with pytest.raises(PlanningFailure):
        execute_chain(Plan(), make_context(make_registry()))


def test_stored_value():
    """Test which part of a result is stored."""

    assert stored_value({"data": [1], "result": "x"}) == [1]
    assert stored_value({"result": "x"}) == "x"
    assert stored_value({"results": [2]}) == [2]
    assert stored_value({"success": True, "tabId": 3}) == {"success": True, "tabId": 3}
    assert stored_value("plain") == "plain"


def test_step_logs_name_step_and_tool():
    """Test that step start/complete log lines carry step number and tool."""

    print("Testing step logging...")

    records = []

    class _Collect(logging.Handler):
        def emit(self, record):
            records.append(record.getMessage())

    handler = _Collect(level=logging.DEBUG)
    executor_logger = logging.getLogger("agent.executor")
    previous_level = executor_logger.level
    executor_logger.addHandler(handler)
    executor_logger.setLevel(logging.DEBUG)
    try:
        execute_chain(make_plan(("echo", {"summary": "hi"})), make_context(make_registry()))
    finally:
        executor_logger.removeHandler(handler)
        executor_logger.setLevel(previous_level)

    assert any(m.startswith("STEP_START | step=1 | tool=echo | purpose=") for m in records)
    assert any(m.startswith("STEP_COMPLETE | step=1 | tool=echo | success=True | duration_ms=") for m in records)

    print("✓ step logging tests passed")


def run_all_tests():
    """Run all test functions."""
    print("\n" + "=" * 60)
    print("Running Execution Engine Tests")
    print("=" * 60 + "\n")

    try:
        test_steps_run_in_order_and_thread_data()
        test_failed_step_is_recorded_and_execution_continues()
        test_action_limit_aborts_chain()
        test_action_limit_detected_from_message()
        test_unavailable_local_inference_falls_back_to_remote()
        test_empty_local_result_triggers_fallback()
        test_failed_fallback_fails_the_step()
        test_non_availability_local_failure_does_not_fall_back()
        test_screenshots_follow_result_tab()
        test_cancellation_between_steps()
        test_empty_plan_is_a_planning_failure()
        test_stored_value()
        test_step_logs_name_step_and_tool()

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
