"""
Tool-Chain Engine CLI

Interactive command-line interface:
- Runs a task through plan -> execute -> verify -> repair -> compile
- Lists and replays compiled functions from the library
- Shows token usage for the session

Ctrl+C during a run stops it cooperatively at the next step boundary.
"""

import shlex
import sys
import threading
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from app.config import (
    ENABLE_FILE_LOGGING,
    LOG_FILE_PATH,
    LOG_LEVEL,
    NOTEPAD_TOOL,
    REMOTE_LLM_TOOL,
    validate_config,
)
from core.agent import run_pipeline
from core.context import ExecutionContext
from core.errors import PlanningFailure, ReplayError, UserAbort
from core.judge import LLMJudge
from core.library import JsonFunctionLibrary
from core.planner import LLMPlanner
from core.replay import replay_function
from tools.notepad_tool import NotepadTool
from tools.registry import ToolRegistry
from tools.remote_llm import RemoteIntelligenceTool
from tools.usage_tracker import aggregate_costs
from infra.logger import setup_logging, logger_api
from infra.ui import (
    format_function_entry,
    format_pipeline_result,
    format_replay_result,
    type_list,
    type_out,
)


def build_default_registry(remote_tool: Optional[RemoteIntelligenceTool] = None) -> ToolRegistry:
    """Registry with the built-in tools; host-provided tools register on top"""
    registry = ToolRegistry()
    registry.register(REMOTE_LLM_TOOL, remote_tool or RemoteIntelligenceTool())
    registry.register(NOTEPAD_TOOL, NotepadTool())
    return registry


def parse_run_command(text: str) -> Tuple[str, Dict[str, str]]:
    """
    Split "<name> key=value ..." into the function name and input overrides.

    Values may be quoted: run RunHideFeedPosts bannedTopics="sports, politics" maxPasses=3

    Raises:
        ValueError: No name given, unbalanced quotes, or a token without "="
    """
    tokens = shlex.split(text or "")
    if not tokens:
        raise ValueError("Usage: run <name> [input=value ...]")

    name, overrides = tokens[0], {}
    for token in tokens[1:]:
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected input=value, got '{token}'")
        overrides[key] = value
    return name, overrides


def run_cancellable(work: Callable[[], Any], cancel_event: threading.Event, run_id: str) -> Dict[str, Any]:
    """
    Run work on a worker thread; Ctrl+C sets cancel_event and waits for
    the worker to stop at its next step boundary.

    Returns:
        {"result": ...} or {"error": exception}
    """
    outcome = {}

    def worker():
        try:
            outcome["result"] = work()
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=worker, name=f"run-{run_id}", daemon=True)
    thread.start()
    try:
        while thread.is_alive():
            thread.join(timeout=0.2)
    except KeyboardInterrupt:
        print("\nStopping after the current step...")
        cancel_event.set()
        thread.join()

    return outcome


# ═══════════════════════════════════════════════════════════════════════════════
# CLI INTERFACE
# ═══════════════════════════════════════════════════════════════════════════════

class CLI:
    """
    Command-line interface for the engine.

    Tasks run on a worker thread so that Ctrl+C can signal cancellation
    while the run finishes its current step.
    """

    def __init__(self, typing_effect: bool = False):
        self.typing_effect = typing_effect
        self.session_runs = 0

        self.remote_tool = RemoteIntelligenceTool()
        self.registry = build_default_registry(self.remote_tool)
        self.planner = LLMPlanner()
        self.judge = LLMJudge()
        self.library = JsonFunctionLibrary()

    def run(self):
        """Start interactive CLI session"""
        self._print_welcome()

        while True:
            try:
                query = self._get_input()

                if not query:
                    continue

                command = query.lower()

                if command in ('exit', 'quit', 'q'):
                    self._print_goodbye()
                    break

                if command in ('help', 'h', '?'):
                    self._print_help()
                    continue

                if command == "usage":
                    self._print_usage()
                    continue

                if command == "functions":
                    self._print_functions()
                    continue

                if command.startswith("run "):
                    self._replay(query[4:].strip())
                    continue

                self.session_runs += 1
                self._run_task(query)

            except KeyboardInterrupt:
                print("\n")
                self._print_goodbye()
                break

            except Exception as e:
                print(f"\n❌ Error: {str(e)}\n")
                logger_api.error(f"CLI_ERROR | error={str(e)[:200]}")

    # ---------- commands ----------
    def _run_task(self, task_text: str):
        run_id = str(uuid.uuid4())[:8]
        cancel_event = threading.Event()

        outcome = run_cancellable(
            lambda: run_pipeline(
                task_text,
                None,
                registry=self.registry,
                planner=self.planner,
                judge=self.judge,
                library=self.library,
                cancel_event=cancel_event,
                on_status=self._print_status,
                run_id=run_id
            ),
            cancel_event,
            run_id
        )

        error = outcome.get("error")
        if isinstance(error, UserAbort):
            print(f"\n⏹  {error}\n")
        elif isinstance(error, (PlanningFailure, ValueError)):
            print(f"\n❌ {error}\n")
        elif error is not None:
            logger_api.error(f"RUN_FAILED | run_id={run_id} | error={str(error)[:200]}")
            print(f"\n❌ Failed to run task: {error}\n")
        else:
            print()
            for line in format_pipeline_result(outcome["result"]):
                type_out(line, delay=0.01 if self.typing_effect else 0)
            print()

    def _replay(self, command_text: str):
        try:
            name, overrides = parse_run_command(command_text)
        except ValueError as e:
            print(f"\n❌ {e}\n")
            return

        fn = self.library.get(name)
        if fn is None:
            print(f"\nNo function named '{name}'. Type 'functions' to list them.\n")
            return

        unknown = sorted(set(overrides) - set(fn.input_defaults()))
        if unknown:
            print(f"\n⚠️  Ignoring unknown inputs for {name}: {', '.join(unknown)}")
            overrides = {key: value for key, value in overrides.items() if key not in unknown}

        run_id = str(uuid.uuid4())[:8]
        cancel_event = threading.Event()
        context = ExecutionContext(
            registry=self.registry,
            cancel_event=cancel_event,
            on_status=self._print_status,
            run_id=run_id
        )

        outcome = run_cancellable(
            lambda: replay_function(fn, context, inputs=overrides),
            cancel_event,
            run_id
        )

        error = outcome.get("error")
        if isinstance(error, UserAbort):
            print(f"\n⏹  {error}\n")
        elif isinstance(error, ReplayError):
            print(f"\n❌ {error}\n")
        elif error is not None:
            logger_api.error(f"REPLAY_FAILED | run_id={run_id} | error={str(error)[:200]}")
            print(f"\n❌ Failed to replay {name}: {error}\n")
        else:
            print()
            for line in format_replay_result(fn.name, outcome["result"]):
                type_out(line)
            print()

    def _print_status(self, message: str, event: dict):
        print(f"  · {message}")

    # ---------- display ----------
    def _get_input(self) -> str:
        try:
            return input("\nTask: ").strip()
        except EOFError:
            return "exit"

    def _print_welcome(self):
        print("=" * 60)
        print("  Tool-Chain Orchestration Engine")
        print("=" * 60)
        print()
        print("  Describe a task; it is planned as a tool chain, executed,")
        print("  verified and saved as a reusable function.")
        print()
        print("  Registered tools:")
        type_list(self.registry.names(), delay=0.3 if self.typing_effect else 0)
        print()
        print("  Commands: help | functions | run <name> | usage | exit")
        print()

    def _print_help(self):
        print()
        print("Available commands:")
        print("  help, h, ?   - Show this help message")
        print("  functions    - List compiled functions")
        print("  run <name> [input=value ...]")
        print("               - Replay a compiled function, overriding inputs")
        print("  usage        - Show token usage for this session")
        print("  exit, quit   - Exit the application")
        print()
        print("Examples:")
        print('  "Summarize the key points of this page"')
        print('  "Hide posts about "celebrity gossip" on this feed"')
        print('  run RunHidePostsAboutCelebrityGossipOnThisFeed maxPasses=3')
        print()

    def _print_functions(self):
        names = self.library.names()
        print(f"\n📚 Compiled functions ({len(names)}):")
        if not names:
            print("  None saved yet.")
            return
        for name in names:
            fn = self.library.get(name)
            if fn is not None:
                print(format_function_entry(fn))
        print()

    def _print_usage(self):
        print("\n📈 Token usage (this session):")
        for label, costs in (
            ("planner", self.planner.costs),
            ("judge", self.judge.costs),
            ("remote tool", self.remote_tool.costs),
        ):
            total = aggregate_costs(*costs)
            print(f"  - {label}: {total['calls']} calls, {total['total_tokens']} tokens ({total['budget_state']})")
        print()

    def _print_goodbye(self):
        print()
        print(f"Ran {self.session_runs} tasks this session.")
        print("Goodbye! 👋")
        print()


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def main():
    """
    Main entry point for the application.

    Sets up logging, validates configuration, and starts the CLI.
    """
    try:
        setup_logging(
            level=LOG_LEVEL,
            log_file=LOG_FILE_PATH if ENABLE_FILE_LOGGING else None
        )

        logger_api.info("=" * 60)
        logger_api.info("Tool-Chain Engine Starting")
        logger_api.info("=" * 60)

        logger_api.info("Validating configuration...")
        validate_config()
        logger_api.info("Configuration valid [OK]")

        cli = CLI(typing_effect=False)
        cli.run()

        logger_api.info("Tool-Chain Engine Stopped")

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(0)

    except Exception as e:
        logger_api.error(f"STARTUP_ERROR | error={str(e)}")
        print(f"\n❌ Startup error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
