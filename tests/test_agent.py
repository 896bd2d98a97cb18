"""
Test suite for the full pipeline: plan -> execute -> verify -> repair -> compile
"""

import sys
import threading
from pathlib import Path

import pytest

# Add project root to path so we can import from core/
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.config import MAX_REPAIR_ATTEMPTS, REPORT_TOOL
from core.agent import run_pipeline
from core.errors import FailureKind, PlanningFailure, UserAbort
from core.library import InMemoryFunctionLibrary
from core.notepad import NotepadStore

from fakes import FakeHost, ScriptedJudge, ScriptedPlanner, make_plan, make_registry


def _report_tool(params, ctx):
    return {"success": True, "result": {"html": "<table>Price comparison</table>"}, "tabId": ctx.tab_handle}


def _registry(**extra):
    return make_registry(**{REPORT_TOOL: _report_tool}, **extra)


def _report_plan():
    return make_plan(
        ("echo", {"rows": [1, 2]}, "rows"),
        (REPORT_TOOL, {"data": "{{notepad:rows}}"}, "report_page"),
        expected_output="A price comparison page"
    )


def test_successful_run_saves_function():
    """Test the happy path with compilation."""

    print("Testing successful pipeline...")

    planner = ScriptedPlanner(_report_plan())
    judge = ScriptedJudge({"valid": True, "uiAssessment": {"score": 9}})
    library = InMemoryFunctionLibrary()
    events = []

    result = run_pipeline(
        "Build a price comparison report",
        "sk-test",
        tab_handle=5,
        registry=_registry(),
        planner=planner,
        judge=judge,
        library=library,
        host=FakeHost("https://shop.example.com/deals"),
        on_status=lambda message, event: events.append(event.get("type"))
    )

    assert result.success is True
    assert result.failure is None
    assert result.attempts == 1
    assert result.verification.valid is True
    assert [step.success for step in result.steps] == [True, True]
    assert result.notepad_state["rows"] == {"rows": [1, 2]}
    assert result.saved_function.name == "RunBuildAPriceComparisonReport"
    assert library.names() == ["RunBuildAPriceComparisonReport"]
    assert result.saved_function.url_applicability == [
        "https://shop.example.com/deals*",
        "https://shop.example.com/*",
    ]

    # Planner saw the host's URL; judge saw screenshots
    assert planner.calls[0]["current_url"] == "https://shop.example.com/deals"
    assert judge.calls[0]["screenshots"]
    assert judge.calls[0]["ui_required"] is True
    assert "tool-chain-function-saved" in events

    print("✓ successful pipeline tests passed")


def test_always_invalid_verdict_exhausts_repairs():
    """Test the bounded repair loop."""

    print("Testing repair exhaustion...")

    executions = []

    def counting_report(params, ctx):
        executions.append(1)
        return _report_tool(params, ctx)

    registry = _registry()
    registry.register_function(REPORT_TOOL, counting_report)

    planner = ScriptedPlanner(_report_plan(), repeat_last=True)
    judge = ScriptedJudge({"valid": False, "issues": ["Table is missing prices"]})
    library = InMemoryFunctionLibrary()

    result = run_pipeline(
        "Build a price comparison report",
        None,
        registry=registry,
        planner=planner,
        judge=judge,
        library=library
    )

    assert len(executions) == 1 + MAX_REPAIR_ATTEMPTS
    assert result.attempts == 1 + MAX_REPAIR_ATTEMPTS
    assert len(planner.calls) == 1 + MAX_REPAIR_ATTEMPTS
    assert len(judge.calls) == 1 + MAX_REPAIR_ATTEMPTS
    assert result.success is False
    assert result.failure == FailureKind.REPAIR_EXHAUSTED.value
    assert result.saved_function is None
    assert library.names() == []

    # Repair requests carried the verdict
    repair_context = planner.calls[1]["failure_context"]
    assert "Table is missing prices" in repair_context.issues
    assert repair_context.previous_tools == ["echo", REPORT_TOOL]

    print("✓ repair exhaustion tests passed")


def test_repair_fixes_the_run():
    """Test a failed verdict followed by a passing repaired plan."""

    repaired = make_plan(("echo", {"rows": [1, 2, 3]}, "rows"), (REPORT_TOOL, {}, "report_page"))
    planner = ScriptedPlanner(_report_plan(), repaired)
    judge = ScriptedJudge(
        {"valid": False, "issues": ["Only two rows"]},
        {"valid": True, "uiAssessment": {"score": 8}}
    )
    notepad = NotepadStore()

    result = run_pipeline(
        "Build a price comparison report",
        None,
        tab_handle=1,
        registry=_registry(),
        planner=planner,
        judge=judge,
        library=InMemoryFunctionLibrary(),
        host=FakeHost(),
        notepad=notepad
    )

    assert result.success is True
    assert result.attempts == 2
    assert result.plan == list(repaired.steps)
    # One notepad for the whole run
    assert notepad.read("rows") == {"rows": [1, 2, 3]}
    assert result.saved_function is not None


def test_non_output_plan_succeeds_despite_failed_verdict():
    """Test that verification only gates plans with output tools."""

    planner = ScriptedPlanner(make_plan(("echo", {"q": "x"}, "answer")), repeat_last=True)
    judge = ScriptedJudge({"valid": False, "issues": ["Vague"]})
    library = InMemoryFunctionLibrary()

    result = run_pipeline("Answer a question", None, registry=_registry(), planner=planner, judge=judge, library=library)

    assert result.success is True
    assert result.verification.valid is False
    assert result.attempts == 1 + MAX_REPAIR_ATTEMPTS
    assert library.names() == ["RunAnswerAQuestion"]


def test_failed_execution_skips_verification():
    """Test that a failed step ends the run without judging."""

    def broken(params, ctx):
        raise ValueError("scraper timed out")

    planner = ScriptedPlanner(make_plan(("broken", {}), (REPORT_TOOL, {})))
    judge = ScriptedJudge()

    result = run_pipeline(
        "Build a report",
        None,
        registry=_registry(broken=broken),
        planner=planner,
        judge=judge,
        library=InMemoryFunctionLibrary()
    )

    assert result.success is False
    assert result.failure == FailureKind.STEP.value
    assert result.verification is None
    assert judge.calls == []
    assert result.steps[0].error == "scraper timed out"


def test_unavailable_repair_stops_loop():
    """Test that an empty repair plan ends the loop with a verification failure."""

    planner = ScriptedPlanner(_report_plan(), None)
    judge = ScriptedJudge({"valid": False, "issues": ["Wrong data"]})

    result = run_pipeline("Build a report", None, registry=_registry(), planner=planner, judge=judge)

    assert result.success is False
    assert result.failure == FailureKind.VERIFICATION.value
    assert result.attempts == 1
    assert len(planner.calls) == 2


def test_planning_failures_propagate():
    """Test that the initial plan must exist."""

    print("Testing planning failures...")

    with pytest.raises(PlanningFailure):
        run_pipeline("Do a thing", None, registry=_registry(), planner=ScriptedPlanner(), judge=ScriptedJudge())

    with pytest.raises(PlanningFailure):
        run_pipeline(
            "Do a thing",
            None,
            registry=_registry(),
            planner=ScriptedPlanner(RuntimeError("oracle down")),
            judge=ScriptedJudge()
        )

    with pytest.raises(ValueError):
        run_pipeline("  ", None, registry=_registry(), planner=ScriptedPlanner(), judge=ScriptedJudge())

    print("✓ planning failure tests passed")


def test_cancelled_run_raises_user_abort():
    """Test cancellation before planning."""

    cancel_event = threading.Event()
    cancel_event.set()
    planner = ScriptedPlanner(_report_plan())

    with pytest.raises(UserAbort):
        run_pipeline(
            "Build a report",
            None,
            registry=_registry(),
            planner=planner,
            judge=ScriptedJudge(),
            cancel_event=cancel_event
        )

    assert planner.calls == []


def test_action_limit_is_reported():
    """Test that an exhausted action budget is a reported abort."""

    def browser(params, ctx):
        return {"success": False, "error": "Max actions reached without task completion"}

    planner = ScriptedPlanner(make_plan(("computer_use_api", {"task": "buy"}), ("echo", {})))

    result = run_pipeline("Buy the cheapest item", None, registry=_registry(computer_use_api=browser), planner=planner, judge=ScriptedJudge())

    assert result.aborted is True
    assert result.abort_reason == "action-limit"
    assert result.failure == FailureKind.ACTION_BUDGET.value
    assert len(result.steps) == 1


def run_all_tests():
    """Run all test functions."""
    print("\n" + "=" * 60)
    print("Running Pipeline Tests")
    print("=" * 60 + "\n")

    try:
        test_successful_run_saves_function()
        test_always_invalid_verdict_exhausts_repairs()
        test_repair_fixes_the_run()
        test_non_output_plan_succeeds_despite_failed_verdict()
        test_failed_execution_skips_verification()
        test_unavailable_repair_stops_loop()
        test_planning_failures_propagate()
        test_cancelled_run_raises_user_abort()
        test_action_limit_is_reported()

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
