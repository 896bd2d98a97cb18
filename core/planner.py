"""
Plan Generation Module

Obtains tool-chain plans from the planning oracle. The default oracle is an
LLM behind an OpenAI-compatible endpoint; any object with a matching plan()
method can stand in for it.
"""

import copy
import json
import re
import time
from typing import Any, Dict, Optional, Protocol, Tuple

from pydantic import ValidationError

from app.config import (
    BROWSER_TOOL,
    CURRENT_TAB_MAX_CHARS,
    CURRENT_TAB_TOOL,
    LOG_LLM_CALLS,
    MODEL_NAME,
    ORACLE_TEMPERATURE,
)
from core.errors import PlanningFailure
from core.templates import TAB_TOKEN
from prompts.planner_prompt import PLANNER_PROMPT, PLANNER_USER_TEMPLATE, REPAIR_CONTEXT_TEMPLATE
from tools.llm.client import get_client
from tools.schemas import FailureContext, Plan
from tools.usage_tracker import track_cost
from infra.logger import logger_planner, LogContext


CURRENT_TAB_CONTEXT_KEY = "current_tab_context"

_CURRENT_TAB_PATTERN = re.compile(
    r"\b(this page|current tab|current page|on this page|on this tab|already open tab|open tab|active tab)\b"
)


# ═══════════════════════════════════════════════════════════════════════════════
# ORACLE INTERFACE
# ═══════════════════════════════════════════════════════════════════════════════

class PlanningOracle(Protocol):
    def plan(
        self,
        task_text: str,
        tool_summary: str,
        current_url: Optional[str],
        failure_context: Optional[FailureContext] = None
    ) -> Optional[Plan]:
        """Return a Plan, or None when no usable plan could be produced"""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# LLM PLANNER
# ═══════════════════════════════════════════════════════════════════════════════

class LLMPlanner:
    """
    Planning oracle backed by a chat completion model.

    Example:
        >>> planner = LLMPlanner()
        >>> plan = planner.plan("Summarize this page", registry.tool_summary(), "https://example.com")
    """

    def __init__(self, client=None, model: str = MODEL_NAME, api_key: Optional[str] = None):
        self._client = client
        self._api_key = api_key
        self.model = model
        self.costs = []

    def plan(
        self,
        task_text: str,
        tool_summary: str,
        current_url: Optional[str],
        failure_context: Optional[FailureContext] = None
    ) -> Optional[Plan]:
        """
        Generate a plan (or a repair plan when failure_context is given).

        Returns:
            Plan, or None if the model produced no steps

        Raises:
            PlanningFailure: API error or unparseable response
        """
        mode = "repair" if failure_context else "plan"
        _log_plan_start(mode, task_text)
        start_time = time.perf_counter()

        user_prompt = build_planner_prompt(task_text, tool_summary, current_url, failure_context)

        try:
            raw_result, usage = self._call_llm_planner(user_prompt, PLANNER_PROMPT)
        except json.JSONDecodeError as e:
            logger_planner.error(f"JSON_PARSE_ERROR | mode={mode} | error={str(e)[:100]}")
            raise PlanningFailure(f"Planner returned invalid JSON: {e}") from e
        except Exception as e:
            logger_planner.error(f"PLAN_FAILED | mode={mode} | error={str(e)[:200]}")
            raise PlanningFailure(f"Planner request failed: {e}") from e

        self.costs.append(usage)

        try:
            plan = parse_plan(normalize_plan_for_current_tab(task_text, raw_result))
        except ValidationError as e:
            logger_planner.error(f"PLAN_SCHEMA_ERROR | mode={mode} | error={str(e)[:200]}")
            raise PlanningFailure(f"Planner returned a malformed plan: {e.error_count()} error(s)") from e

        duration_ms = (time.perf_counter() - start_time) * 1000
        _log_plan_complete(mode, plan, duration_ms, usage)
        return plan

    def _call_llm_planner(self, user_prompt: str, system_prompt: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt}
        ]

        if LOG_LLM_CALLS:
            logger_planner.debug(
                f"LLM_REQUEST | system_length={len(system_prompt)} | user_length={len(user_prompt)}"
            )

        client = self._client or get_client(self._api_key)
        response = client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            temperature=ORACLE_TEMPERATURE,
            messages=messages
        )

        raw_output = response.choices[0].message.content or ""
        usage = track_cost(response.usage)

        if LOG_LLM_CALLS:
            logger_planner.debug(
                f"LLM_RESPONSE | length={len(raw_output)} | tokens={usage['total_tokens']}"
            )

        return json.loads(raw_output), usage


# ═══════════════════════════════════════════════════════════════════════════════
# PROMPT PREPARATION
# ═══════════════════════════════════════════════════════════════════════════════

def build_planner_prompt(
    task_text: str,
    tool_summary: str,
    current_url: Optional[str],
    failure_context: Optional[FailureContext] = None
) -> str:
    return PLANNER_USER_TEMPLATE.format(
        task=task_text,
        current_url=current_url or "unknown",
        tool_summary=tool_summary,
        repair_context=build_repair_context(failure_context) if failure_context else ""
    )


def build_repair_context(failure: FailureContext) -> str:
    suggested_fixes = ""
    if failure.suggested_fixes:
        fixes = json.dumps([fix.to_wire() for fix in failure.suggested_fixes], ensure_ascii=False)
        suggested_fixes = f"- Suggested fixes from verifier: {fixes}\n"

    ui_assessment = ""
    if failure.ui_assessment is not None:
        ui_assessment = f"- UI assessment from verifier: {json.dumps(failure.ui_assessment.to_wire())}\n"

    return REPAIR_CONTEXT_TEMPLATE.format(
        issues="; ".join(failure.issues) or "Unknown issue",
        head100=failure.head100,
        tail100=failure.tail100,
        previous_tools=" -> ".join(failure.previous_tools) or "n/a",
        suggested_fixes=suggested_fixes,
        ui_assessment=ui_assessment
    )


# ═══════════════════════════════════════════════════════════════════════════════
# PLAN NORMALIZATION
# ═══════════════════════════════════════════════════════════════════════════════

def task_mentions_current_tab(task_text: str) -> bool:
    return bool(_CURRENT_TAB_PATTERN.search(str(task_text or "").lower()))


def normalize_plan_for_current_tab(task_text: str, raw_plan: Any) -> Any:
    """
    Ground plans for tasks about the page the user is on.

    When the task mentions the current tab/page, a current_tab_content step
    is guaranteed (inserted first if missing) and browser steps default to
    the current tab. Steps are renumbered from 1. Other plans are returned
    untouched.
    """
    if not isinstance(raw_plan, dict) or not task_mentions_current_tab(task_text):
        return raw_plan

    normalized = copy.deepcopy(raw_plan)
    steps = normalized.get("plan")
    if not isinstance(steps, list) or not steps:
        return normalized

    has_context_step = False

    for step in steps:
        if not isinstance(step, dict):
            continue
        tool = step.get("tool") or step.get("toolName")
        if not isinstance(step.get("params"), dict):
            step["params"] = {}

        if tool == CURRENT_TAB_TOOL:
            has_context_step = True
            step["params"].setdefault("tabId", TAB_TOKEN)
            step["params"].setdefault("maxChars", CURRENT_TAB_MAX_CHARS)
            if not step.get("storeAs"):
                step["storeAs"] = CURRENT_TAB_CONTEXT_KEY

        elif tool == BROWSER_TOOL:
            step["params"].setdefault("useCurrentTab", True)
            step["params"].setdefault("target", "current-tab")

    if not has_context_step:
        logger_planner.debug("CURRENT_TAB_STEP_INSERTED")
        steps.insert(0, {
            "stepNumber": 1,
            "tool": CURRENT_TAB_TOOL,
            "purpose": "Capture current tab context before acting",
            "params": {"tabId": TAB_TOKEN, "maxChars": CURRENT_TAB_MAX_CHARS},
            "storeAs": CURRENT_TAB_CONTEXT_KEY
        })

    for index, step in enumerate(steps, start=1):
        if isinstance(step, dict):
            step["stepNumber"] = index

    normalized["plan"] = steps
    return normalized


def parse_plan(raw_plan: Any) -> Optional[Plan]:
    """
    Validate oracle JSON into a Plan.

    Missing step numbers are filled from position. Returns None for an
    empty or absent step list.

    Raises:
        ValidationError: Steps are malformed
    """
    if not isinstance(raw_plan, dict):
        return None

    steps = raw_plan.get("plan", raw_plan.get("steps"))
    if not isinstance(steps, list) or not steps:
        return None

    prepared = []
    for index, step in enumerate(steps, start=1):
        if isinstance(step, dict) and not isinstance(step.get("stepNumber", step.get("step_number")), int):
            step = {**step, "stepNumber": index}
        prepared.append(step)

    return Plan.model_validate({
        "plan": prepared,
        "expectedOutput": raw_plan.get("expectedOutput") or raw_plan.get("expected_output") or ""
    })


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _log_plan_start(mode: str, task_text: str):
    log_data = {
        "mode": mode,
        "query_length": len(task_text)
    }
    logger_planner.info(f"PLAN_START | {LogContext.format_dict(log_data)}")


def _log_plan_complete(mode: str, plan: Optional[Plan], duration_ms: float, usage: Dict[str, Any]):
    log_data = {
        "mode": mode,
        "steps": len(plan.steps) if plan else 0,
        "duration_ms": f"{duration_ms:.2f}",
        "tokens": usage.get("total_tokens", 0)
    }
    if plan:
        log_data["tools"] = ",".join(plan.tools)
    logger_planner.info(f"PLAN_COMPLETE | {LogContext.format_dict(log_data)}")
