import re
from typing import Any, Dict, List

from app.config import LOCAL_ACTIONS, LOCAL_INFERENCE_TOOL, PAGE_MUTATION_TOOL
from core.errors import PlanValidationError
from core.fallback import infer_local_action
from core.resolver import find_tokens
from core.templates import InputRef, NotepadRef
from tools.schemas import Plan
from infra.logger import logger_validator


_NOTEPAD_KEY = re.compile(r"^\w+$")


# =========================
# Failure Helper
# =========================

def _fail(category: str, message: str, step=None):
    error = {
        "category": category,
        "message": message,
        "step_number": step.step_number if step else None,
        "tool": step.tool if step else None,
    }
    logger_validator.error(
        f"PLAN_INVALID | category={category} | step={error['step_number']} | error={message[:100]}"
    )
    raise PlanValidationError(error)


def _warn(warnings: List[str], message: str, step=None):
    prefix = f"step {step.step_number} ({step.tool}): " if step else ""
    warnings.append(prefix + message)
    logger_validator.warning(f"PLAN_WARNING | {prefix}{message[:120]}")


# =========================
# Public Entry
# =========================

def validate_plan(plan: Plan, registry) -> Dict[str, Any]:
    """
    Statically check a plan before execution.

    Structural problems raise PlanValidationError. Problems the engine can
    survive (unknown tools, unresolvable tokens, odd local actions) are
    returned as warnings; they surface as step failures at run time and feed
    the repair loop.

    Returns:
        {"valid": True, "normalized_plan": Plan, "warnings": [...]}
    """
    _validate_schema(plan)
    normalized = _renumber(plan)

    warnings: List[str] = []
    _validate_tools(normalized, registry, warnings)
    _validate_local_actions(normalized, warnings)
    _validate_page_mutation(normalized, warnings)
    _validate_references(normalized, warnings)

    logger_validator.info(
        f"PLAN_VALID | steps={len(normalized.steps)} | warnings={len(warnings)}"
    )

    return {
        "valid": True,
        "normalized_plan": normalized,
        "warnings": warnings
    }


# =========================
# Schema Validation
# =========================

def _validate_schema(plan: Plan):
    if not plan.steps:
        _fail("SCHEMA_ERROR", "Plan must contain steps")

    for step in plan.steps:
        if not isinstance(step.params, dict):
            _fail("SCHEMA_ERROR", "params must be an object", step)

        if step.store_as is not None and not step.store_as.strip():
            _fail("SCHEMA_ERROR", "storeAs must be a non-empty string when present", step)


def _renumber(plan: Plan) -> Plan:
    """Make step numbers contiguous from 1, keeping order"""
    if all(step.step_number == index for index, step in enumerate(plan.steps, start=1)):
        return plan

    logger_validator.debug(
        f"PLAN_RENUMBERED | original={[step.step_number for step in plan.steps]}"
    )
    steps = [
        step.model_copy(update={"step_number": index})
        for index, step in enumerate(plan.steps, start=1)
    ]
    return plan.model_copy(update={"steps": steps})


# =========================
# Tool Validation
# =========================

def _validate_tools(plan: Plan, registry, warnings: List[str]):
    for step in plan.steps:
        if not registry.has(step.tool):
            _warn(warnings, "unknown tool", step)


def _validate_local_actions(plan: Plan, warnings: List[str]):
    for step in plan.steps:
        if step.tool != LOCAL_INFERENCE_TOOL:
            continue

        action = infer_local_action(step.params)
        if not action:
            _warn(warnings, "no action given and none can be inferred from params", step)
        elif action not in LOCAL_ACTIONS:
            _warn(warnings, f"unknown local action '{action}'", step)


def _validate_page_mutation(plan: Plan, warnings: List[str]):
    for step in plan.steps:
        if step.tool != PAGE_MUTATION_TOOL:
            continue

        action = str(step.params.get("action") or "").strip().lower()
        if action == "hidebyindices" and not any(
            step.params.get(field) is not None for field in ("indices", "matches", "results")
        ):
            _warn(warnings, "hideByIndices without indices", step)


# =========================
# Reference Validation
# =========================

def _validate_references(plan: Plan, warnings: List[str]):
    written = set()

    for step in plan.steps:
        for token in find_tokens(step.params):
            if isinstance(token, NotepadRef) and token.key not in written:
                _warn(warnings, f"reads notepad key '{token.key}' before any step stores it", step)
            elif isinstance(token, InputRef):
                _warn(warnings, f"references input '{token.name}' outside a compiled function", step)

        if step.store_as:
            if not _NOTEPAD_KEY.match(step.store_as):
                _warn(warnings, f"storeAs '{step.store_as}' cannot be referenced by a template token", step)
            written.add(step.store_as)
