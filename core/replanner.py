"""
Replanner Module

Turns a failed verdict into failure context for the planning oracle and
asks it for a corrected plan.
"""

import time
from typing import Optional

from core.errors import PlanningFailure
from core.planner_validator import validate_plan
from tools.schemas import FailureContext, Plan, Verdict
from infra.logger import logger_replanner, LogContext


# ═══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════════

def request_repair_plan(
    *,
    planner,
    registry,
    task_text: str,
    current_url: Optional[str],
    failed_plan: Plan,
    verdict: Verdict,
    attempt: int
) -> Optional[Plan]:
    """
    Ask the planning oracle for a plan that addresses a failed verdict.

    Returns:
        Validated repair plan, or None when the oracle produced nothing
        usable (empty plan, oracle error, or a plan that fails validation)
    """
    failure_context = build_failure_context(verdict, failed_plan)
    _log_replan_start(failure_context, attempt)
    start_time = time.perf_counter()

    try:
        repaired = planner.plan(
            task_text,
            registry.tool_summary(),
            current_url,
            failure_context=failure_context
        )
    except Exception as e:
        logger_replanner.error(f"REPLAN_ERROR | attempt={attempt} | error={str(e)[:200]}")
        return None

    if repaired is None or not repaired.steps:
        logger_replanner.warning(f"REPLAN_EMPTY | attempt={attempt}")
        return None

    try:
        validated = validate_plan(repaired, registry)
    except PlanningFailure as e:
        logger_replanner.error(f"REPLAN_VALIDATION_FAILED | attempt={attempt} | error={str(e)[:200]}")
        return None

    plan = validated["normalized_plan"]
    duration_ms = (time.perf_counter() - start_time) * 1000
    _log_replan_complete(plan, attempt, duration_ms)
    return plan


# ═══════════════════════════════════════════════════════════════════════════════
# CONTEXT BUILDING
# ═══════════════════════════════════════════════════════════════════════════════

def build_failure_context(verdict: Verdict, failed_plan: Plan) -> FailureContext:
    return FailureContext(
        issues=list(verdict.issues),
        head100=verdict.head100,
        tail100=verdict.tail100,
        previous_tools=failed_plan.tools,
        suggested_fixes=list(verdict.suggested_fixes),
        ui_assessment=verdict.ui_assessment
    )


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _log_replan_start(failure_context: FailureContext, attempt: int):
    log_data = {
        "attempt": attempt,
        "issues": len(failure_context.issues),
        "previous_tools": "->".join(failure_context.previous_tools),
        "suggested_fixes": len(failure_context.suggested_fixes)
    }
    logger_replanner.info(f"REPLAN_START | {LogContext.format_dict(log_data)}")


def _log_replan_complete(plan: Plan, attempt: int, duration_ms: float):
    log_data = {
        "attempt": attempt,
        "steps": len(plan.steps),
        "tools": ",".join(plan.tools),
        "duration_ms": f"{duration_ms:.2f}"
    }
    logger_replanner.info(f"REPLAN_COMPLETE | {LogContext.format_dict(log_data)}")
