"""
Test suite for CLI command parsing and cancellable runs
"""

import sys
import threading
from pathlib import Path

import pytest

# Add project root to path so we can import from core/
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.errors import UserAbort
from core.replay import replay_function
from main import parse_run_command, run_cancellable
from tools.schemas import CompiledFunction, FunctionInput

from fakes import make_context, make_plan, make_registry


def test_parse_run_command():
    """Test splitting 'run' arguments into name and overrides."""

    print("Testing parse_run_command...")

    assert parse_run_command("RunHideAds") == ("RunHideAds", {})
    assert parse_run_command('RunHideFeedPosts bannedTopics="sports, politics" maxPasses=3') == (
        "RunHideFeedPosts",
        {"bannedTopics": "sports, politics", "maxPasses": "3"}
    )
    assert parse_run_command("RunX empty=") == ("RunX", {"empty": ""})

    for bad in ("", "   ", "RunX maxPasses", "RunX =3", 'RunX topics="open'):
        with pytest.raises(ValueError):
            parse_run_command(bad)

    print("✓ parse_run_command tests passed")


def test_run_cancellable_returns_result_or_error():
    assert run_cancellable(lambda: 42, threading.Event(), "t1") == {"result": 42}

    def failing():
        raise RuntimeError("boom")

    outcome = run_cancellable(failing, threading.Event(), "t2")
    assert isinstance(outcome["error"], RuntimeError)


def test_replay_on_worker_stops_when_cancelled():
    """Test that a replay on the worker thread honours the cancel event."""

    print("Testing cancellable replay...")

    cancel_event = threading.Event()
    ran = []

    def first(params, ctx):
        ran.append(params["topics"])
        cancel_event.set()
        return {"success": True}

    registry = make_registry(first=first)
    fn = CompiledFunction(
        name="RunTest",
        inputs=[FunctionInput(name="bannedTopics", default_value="politics")],
        embedded_plan=make_plan(("first", {"topics": "{{input:bannedTopics}}"}), ("echo", {}))
    )
    context = make_context(registry, cancel_event=cancel_event)

    outcome = run_cancellable(
        lambda: replay_function(fn, context, inputs={"bannedTopics": "sports"}),
        cancel_event,
        "t3"
    )

    assert isinstance(outcome["error"], UserAbort)
    assert ran == ["sports"]

    print("✓ cancellable replay tests passed")


def run_all_tests():
    """Run all test functions."""
    print("\n" + "=" * 60)
    print("Running CLI Tests")
    print("=" * 60 + "\n")

    try:
        test_parse_run_command()
        test_run_cancellable_returns_result_or_error()
        test_replay_on_worker_stops_when_cancelled()

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
