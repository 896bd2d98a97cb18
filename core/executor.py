"""
Plan Execution Module

Executes a plan by running its steps in sequence against the tool registry,
threading data between steps through the run's notepad. A failed step is
recorded and execution continues; only an exhausted browser action budget
aborts the chain.
"""

import copy
import time
from typing import Any, Optional, Tuple

from app.config import (
    ACTION_LIMIT_REASON,
    LOCAL_INFERENCE_TOOL,
    REMOTE_LLM_TOOL,
)
from core.context import ExecutionContext
from core.errors import (
    ActionBudgetExceeded,
    FallbackFailure,
    PlanningFailure,
    StepFailure,
    UserAbort,
)
from core.failure_classifier import FailureType, classify_failure
from core.fallback import is_empty_local_result, run_remote_fallback
from core.resolver import canonicalize_params, resolve_params
from tools.errors import ToolError
from tools.schemas import ExecutionReport, Plan, Screenshot, Step, StepResult
from infra.logger import (
    logger_executor,
    log_execution_start,
    log_execution_complete,
    log_fallback,
    log_step_start,
    log_step_complete,
)


# ═══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════════

def execute_chain(plan: Plan, context: ExecutionContext) -> ExecutionReport:
    """
    Execute every step of a plan.

    Args:
        plan: Plan to execute
        context: Run context (registry, notepad, tab handle, credential, ...)

    Returns:
        ExecutionReport with per-step results, screenshots and a notepad snapshot

    Raises:
        PlanningFailure: The plan has no steps
        UserAbort: The run was cancelled before or between steps
    """
    if not plan.steps:
        logger_executor.error("EMPTY_PLAN | nothing to execute")
        raise PlanningFailure("Plan has no steps")

    log_execution_start(len(plan.steps), context.run_id)
    start_time = time.perf_counter()

    report = ExecutionReport(total_steps=len(plan.steps))

    for step in plan.steps:
        context.check_cancelled()

        context.status(
            f"Step {step.step_number}/{len(plan.steps)}: {step.purpose}",
            type="tool-step-start",
            step=step.step_number,
            tool=step.tool
        )

        step_result, shot, action_limit = _execute_single_step(step, context)
        report.steps.append(step_result)
        if shot is not None:
            report.screenshots.append(shot)

        if step_result.success:
            continue

        report.failed_steps += 1
        if action_limit:
            report.aborted = True
            report.abort_reason = ACTION_LIMIT_REASON
            context.status(
                "Browser automation reached its action limit; raise the limit and run again",
                type="tool-chain-blocked",
                reason=ACTION_LIMIT_REASON,
                step=step.step_number
            )
            break

    report.success = (
        not report.aborted
        and len(report.steps) == report.total_steps
        and all(result.success for result in report.steps)
    )
    report.notepad_state = copy.deepcopy(context.notepad.read_all())

    log_execution_complete(
        len(report.steps),
        report.failed_steps,
        "aborted" if report.aborted else ("completed" if report.success else "failed"),
        time.perf_counter() - start_time
    )

    return report


def dispatch_step(step: Step, params: Any, context: ExecutionContext) -> Tuple[Any, Optional[str]]:
    """
    Run one resolved step through the registry, applying the local -> remote
    fallback when local inference is unavailable.

    Returns:
        (result, fallback_tool) where fallback_tool names the substitute tool
        when the fallback produced the result, else None

    Raises:
        ActionBudgetExceeded: Browser automation exhausted its action budget
        FallbackFailure: Local inference failed and so did its substitute
        StepFailure: Any other step failure
    """
    try:
        result = context.registry.execute(step.tool, params, context.tool_context(step.step_number))

        if step.tool == LOCAL_INFERENCE_TOOL and is_empty_local_result(result, params):
            raise ToolError(f"{step.tool} returned empty result", tool=step.tool, recoverable=True)

        if isinstance(result, dict) and result.get("success") is False:
            raise StepFailure(
                str(result.get("error") or f"{step.tool} reported success=false"),
                step=step.step_number,
                tool=step.tool
            )

        return result, None

    except UserAbort:
        raise

    except Exception as e:
        failure_type = classify_failure(error=e, tool_name=step.tool)

        if failure_type is FailureType.FATAL:
            raise ActionBudgetExceeded(str(e), step=step.step_number, tool=step.tool) from e

        if failure_type is FailureType.RECOVERABLE:
            log_fallback(step.step_number, step.tool, REMOTE_LLM_TOOL, str(e))
            context.status(
                f"Step {step.step_number}: local inference unavailable, falling back to remote LLM",
                type="tool-step-fallback",
                step=step.step_number
            )
            try:
                return run_remote_fallback(step, params, context), REMOTE_LLM_TOOL
            except FallbackFailure as fb:
                logger_executor.error(
                    f"FALLBACK_FAILED | step={step.step_number} | error={str(fb)[:100]}"
                )
                raise FallbackFailure(
                    f"{e} (remote fallback failed: {fb})",
                    step=step.step_number,
                    tool=step.tool
                ) from fb

        if isinstance(e, StepFailure):
            raise
        raise StepFailure(str(e), step=step.step_number, tool=step.tool) from e


def stored_value(result: Any) -> Any:
    """Value written to the notepad for a step's storeAs key"""
    if isinstance(result, dict):
        for key in ("data", "result", "results"):
            if result.get(key) is not None:
                return result[key]
    return result


# ═══════════════════════════════════════════════════════════════════════════════
# STEP EXECUTION
# ═══════════════════════════════════════════════════════════════════════════════

def _execute_single_step(step: Step, context: ExecutionContext) -> Tuple[StepResult, Optional[Screenshot], bool]:
    """
    Resolve, dispatch and record one step.

    Never raises for step failures; returns a failed StepResult instead.
    """
    log_step_start(step.step_number, step.tool, step.purpose)
    step_start = time.perf_counter()

    try:
        params = canonicalize_params(step.tool, resolve_params(step.params, context))
        result, fallback_tool = dispatch_step(step, params, context)

    except ActionBudgetExceeded as e:
        return _record_failure(step, str(e), context, step_start, action_limit=True)

    except StepFailure as e:
        return _record_failure(step, str(e), context, step_start)

    if step.store_as:
        value = result if fallback_tool else stored_value(result)
        context.notepad.write(step.store_as, value)

    log_step_complete(step.step_number, step.tool, True, (time.perf_counter() - step_start) * 1000)

    step_result = StepResult(
        step=step.step_number,
        tool=step.tool,
        success=True,
        store_as=step.store_as,
        result=result,
        fallback=fallback_tool
    )

    shot = None
    if context.capture_screenshots:
        shot = _capture(step, context, _result_tab_handle(result, context))

    context.status(
        f"Step {step.step_number} completed: {step.purpose}"
        + (" (via remote fallback)" if fallback_tool else ""),
        type="tool-step-complete",
        step=step.step_number,
        tool=step.tool
    )

    return step_result, shot, False


def _record_failure(step: Step, error: str, context: ExecutionContext, step_start: float, action_limit: bool = False):
    logger_executor.error(
        f"STEP_FAILED | step={step.step_number} | tool={step.tool} | error={error[:100]}"
    )
    log_step_complete(step.step_number, step.tool, False, (time.perf_counter() - step_start) * 1000)

    step_result = StepResult(
        step=step.step_number,
        tool=step.tool,
        success=False,
        error=error,
        store_as=step.store_as
    )
    shot = None
    if context.capture_screenshots:
        shot = _capture(step, context, context.tab_handle, failure=True)

    context.status(
        f"Step {step.step_number} failed: {error}",
        type="tool-step-error",
        step=step.step_number,
        error=error
    )

    return step_result, shot, action_limit


def _result_tab_handle(result: Any, context: ExecutionContext) -> Any:
    if isinstance(result, dict):
        handle = result.get("tabId")
        if isinstance(handle, int) and not isinstance(handle, bool):
            return handle
    return context.tab_handle


def _capture(step: Step, context: ExecutionContext, handle: Any, failure: bool = False) -> Optional[Screenshot]:
    image = context.capture_snapshot(handle)
    if not image:
        return None
    return Screenshot(
        step=step.step_number,
        tool=step.tool,
        image=image,
        tab_handle=handle,
        failure=failure
    )
