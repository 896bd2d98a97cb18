"""
Agent Module - Main Orchestrator

Coordinates the complete tool-chain workflow:
1. Planning
2. Validation
3. Execution
4. Verification (with repair plans on failure)
5. Compilation of the successful plan into a reusable function

Only a failed initial plan and user cancellation propagate to the caller;
everything else is reported on the PipelineResult.
"""

import threading
import time
import uuid
from typing import Any, Callable, Dict, Optional

from app.config import (
    CAPTURE_STEP_SCREENSHOTS,
    MAX_REPAIR_ATTEMPTS,
    MAX_TASK_LENGTH,
    MIN_TASK_LENGTH,
    is_output_tool
)
from core.compiler import save_compiled_function
from core.context import ExecutionContext, HostSurface
from core.errors import FailureKind, PlanningFailure, UserAbort
from core.executor import execute_chain
from core.notepad import NotepadStore
from core.planner_validator import validate_plan
from core.replanner import request_repair_plan
from core.verifier import verify_execution
from tools.registry import ToolRegistry
from tools.schemas import ExecutionReport, PipelineResult, Plan, Verdict
from infra.logger import (
    logger_api,
    log_replan_trigger,
    log_replan_attempt,
    LogContext
)


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN AGENT ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def run_pipeline(
    task_text: str,
    credential: Optional[str],
    tab_handle: Any = None,
    *,
    registry: ToolRegistry,
    planner,
    judge,
    library=None,
    host: Optional[HostSurface] = None,
    cancel_event: Optional[threading.Event] = None,
    on_status: Optional[Callable[[str, Dict[str, Any]], None]] = None,
    notepad: Optional[NotepadStore] = None,
    run_id: Optional[str] = None,
    capture_screenshots: bool = CAPTURE_STEP_SCREENSHOTS
) -> PipelineResult:
    """
    Plan, execute, verify, repair and compile one task.

    Flow:
        1. Plan and validate
        2. Execute
        3. While the latest execution succeeded: verify; on a failed
           verdict request a repair plan (at most MAX_REPAIR_ATTEMPTS)
           and execute it
        4. On final success, save a compiled function to the library

    Args:
        task_text: Natural-language task
        credential: Passed to tools and substituted for {{apiKey}}
        tab_handle: Handle of the controlled tab, if any
        registry: Tools available to the run
        planner: PlanningOracle
        judge: VerificationOracle
        library: FunctionLibrary receiving the compiled function (optional)
        host: HostSurface used for screenshots and the current URL
        cancel_event: Set by the caller to stop the run
        on_status: Progress callback (message, event)
        notepad: Notepad for the run; a fresh one by default
        run_id: Identifier used in logs

    Returns:
        PipelineResult

    Raises:
        ValueError: Task text is empty or too long
        PlanningFailure: The initial plan could not be produced or validated
        UserAbort: The run was cancelled
    """
    if not run_id:
        run_id = str(uuid.uuid4())[:8]

    _validate_task_input(task_text)

    context = ExecutionContext(
        registry=registry,
        notepad=notepad if notepad is not None else NotepadStore(),
        tab_handle=tab_handle,
        credential=credential,
        cancel_event=cancel_event if cancel_event is not None else threading.Event(),
        host=host,
        capture_screenshots=capture_screenshots,
        run_id=run_id
    )
    if on_status is not None:
        context.on_status = on_status

    _log_agent_start(task_text, run_id)
    start_time = time.perf_counter()

    try:
        current_url = context.current_url()

        # Step 1: Plan and validate
        context.check_cancelled()
        context.status("Planning tool chain...", type="tool-chain-planning")
        initial_plan = _initial_plan(planner, registry, task_text, current_url, run_id)

        context.status(
            f"Planned {len(initial_plan.steps)} steps: {' -> '.join(initial_plan.tools)}",
            type="tool-chain-planned",
            steps=len(initial_plan.steps)
        )

        # Step 2: Execute
        active_plan = initial_plan
        report = execute_chain(active_plan, context)
        attempts = 1

        # Step 3: Verify and repair
        verdict: Optional[Verdict] = None
        repair_attempt = 0
        repair_exhausted = False

        while report.success:
            context.check_cancelled()
            verdict = verify_execution(active_plan, report, judge, context)

            if verdict.valid:
                context.status("Verification passed", type="tool-chain-verification-pass")
                break

            if repair_attempt >= MAX_REPAIR_ATTEMPTS:
                repair_exhausted = True
                context.status(
                    "Verification failed and repair attempts are exhausted",
                    type="tool-chain-verification-failed",
                    issues=verdict.issues
                )
                break

            repair_attempt += 1
            log_replan_trigger("verification_failed", len(verdict.issues))
            log_replan_attempt(repair_attempt, MAX_REPAIR_ATTEMPTS)
            context.status(
                f"Verification failed; repairing tool chain (attempt {repair_attempt}/{MAX_REPAIR_ATTEMPTS})",
                type="tool-chain-repair",
                attempt=repair_attempt,
                issues=verdict.issues
            )

            context.check_cancelled()
            repaired = request_repair_plan(
                planner=planner,
                registry=registry,
                task_text=task_text,
                current_url=current_url,
                failed_plan=active_plan,
                verdict=verdict,
                attempt=repair_attempt
            )
            if repaired is None:
                logger_api.warning(f"REPAIR_UNAVAILABLE | run_id={run_id} | attempt={repair_attempt}")
                break

            active_plan = repaired
            report = execute_chain(active_plan, context)
            attempts += 1

            if not report.success:
                break

        # Step 4: Final outcome
        verification_passed = verdict.valid if verdict is not None else True
        strict = _has_output_tool(initial_plan) or _has_output_tool(active_plan)
        success = report.success and (not strict or verification_passed)

        saved_function = None
        if success and library is not None:
            context.check_cancelled()
            try:
                saved_function = save_compiled_function(task_text, active_plan, current_url, library)
                context.status(
                    f"Saved reusable function {saved_function.name}",
                    type="tool-chain-function-saved",
                    name=saved_function.name
                )
            except Exception as e:
                logger_api.warning(f"FUNCTION_SAVE_FAILED | run_id={run_id} | error={str(e)[:200]}")

        result = PipelineResult(
            success=success,
            plan=list(active_plan.steps),
            expected_output=active_plan.expected_output,
            steps=report.steps,
            screenshots=report.screenshots,
            notepad_state=report.notepad_state,
            verification=verdict,
            saved_function=saved_function,
            aborted=report.aborted,
            abort_reason=report.abort_reason,
            attempts=attempts,
            failure=None if success else _failure_kind(report, verdict, repair_exhausted).value
        )

        _log_agent_complete(result, time.perf_counter() - start_time, run_id)
        return result

    except UserAbort:
        logger_api.warning(
            f"AGENT_STOPPED | run_id={run_id} | duration={time.perf_counter() - start_time:.2f}s"
        )
        raise

    except PlanningFailure as e:
        logger_api.error(
            f"AGENT_PLANNING_ERROR | run_id={run_id} | "
            f"duration={time.perf_counter() - start_time:.2f}s | error={str(e)[:200]}"
        )
        raise


# ═══════════════════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def _validate_task_input(task_text: str):
    if not task_text or not task_text.strip():
        raise ValueError("Task cannot be empty")

    if len(task_text.strip()) < MIN_TASK_LENGTH:
        raise ValueError(f"Task too short (min {MIN_TASK_LENGTH} characters)")

    if len(task_text) > MAX_TASK_LENGTH:
        raise ValueError(f"Task too long (max {MAX_TASK_LENGTH} characters)")


def _initial_plan(planner, registry: ToolRegistry, task_text: str, current_url: Optional[str], run_id: str) -> Plan:
    logger_api.debug(f"AGENT_PLAN | run_id={run_id}")
    try:
        plan = planner.plan(task_text, registry.tool_summary(), current_url)
    except PlanningFailure:
        raise
    except Exception as e:
        raise PlanningFailure(f"Planning oracle failed: {e}") from e

    if plan is None or not plan.steps:
        raise PlanningFailure("Planner returned an empty tool chain")

    logger_api.debug(f"AGENT_VALIDATE | run_id={run_id}")
    validated = validate_plan(plan, registry)
    for warning in validated["warnings"]:
        logger_api.warning(f"PLAN_WARNING | run_id={run_id} | {warning[:200]}")

    return validated["normalized_plan"]


def _has_output_tool(plan: Plan) -> bool:
    return any(is_output_tool(tool) for tool in plan.tools)


def _failure_kind(report: ExecutionReport, verdict: Optional[Verdict], repair_exhausted: bool) -> FailureKind:
    if report.aborted:
        return FailureKind.ACTION_BUDGET
    if not report.success:
        return FailureKind.STEP
    if repair_exhausted:
        return FailureKind.REPAIR_EXHAUSTED
    return FailureKind.VERIFICATION


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _log_agent_start(task_text: str, run_id: str):
    log_data = {
        "run_id": run_id,
        "task_length": len(task_text)
    }
    logger_api.info(f"AGENT_START | {LogContext.format_dict(log_data)}")


def _log_agent_complete(result: PipelineResult, duration: float, run_id: str):
    log_data = {
        "run_id": run_id,
        "success": result.success,
        "attempts": result.attempts,
        "failure": result.failure or "none",
        "saved_function": result.saved_function.name if result.saved_function else "none",
        "duration": f"{duration:.2f}s"
    }
    level = logger_api.info if result.success else logger_api.warning
    level(f"AGENT_COMPLETE | {LogContext.format_dict(log_data)}")
