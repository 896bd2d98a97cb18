"""
Compiled Function Replay

Runs a compiled function's embedded plan deterministically: no planning
oracle, no verification. Steps go through the same registry and the same
local -> remote fallback as a normal run.
"""

import math
import time
from typing import Any, Dict, List, Optional

from app.config import DEFAULT_MAX_PASSES, PAGE_MUTATION_TOOL, REPLAY_PASS_DELAY_SECONDS
from core.context import ExecutionContext
from core.errors import ReplayError, StepFailure
from core.executor import dispatch_step, stored_value
from core.resolver import canonicalize_params, resolve_params
from tools.schemas import CompiledFunction, ReplayResult
from infra.logger import logger_executor, LogContext


def replay_function(
    fn: CompiledFunction,
    context: ExecutionContext,
    inputs: Optional[Dict[str, Any]] = None,
    pass_delay: float = REPLAY_PASS_DELAY_SECONDS
) -> ReplayResult:
    """
    Replay a compiled function.

    Args:
        fn: Function loaded from the library
        context: Run context; its notepad receives storeAs values
        inputs: Overrides for the function's input defaults
        pass_delay: Pause between passes of an iterative function

    Returns:
        ReplayResult with every step's raw result tagged by pass

    Raises:
        ReplayError: A step failed (after fallback, if any)
        UserAbort: The run was cancelled between steps
    """
    effective_inputs = {**fn.input_defaults(), **(inputs or {})}
    replay_context = context.with_inputs(effective_inputs)

    plan = fn.embedded_plan
    pass_limit = max_passes(effective_inputs) if fn.iterative else 1

    _log_replay_start(fn, effective_inputs, pass_limit)
    start_time = time.perf_counter()

    results: List[Dict[str, Any]] = []
    passes_run = 0

    for pass_number in range(1, pass_limit + 1):
        passes_run = pass_number
        hidden_this_pass = 0

        for step in plan.steps:
            replay_context.check_cancelled()

            params = canonicalize_params(step.tool, resolve_params(step.params, replay_context))
            try:
                result, fallback_tool = dispatch_step(step, params, replay_context)
            except StepFailure as e:
                logger_executor.error(
                    f"REPLAY_STEP_FAILED | function={fn.name} | pass={pass_number} | "
                    f"step={step.step_number} | error={str(e)[:100]}"
                )
                raise ReplayError(
                    f"Step {step.step_number} ({step.tool}) failed: {e}",
                    step=step.step_number,
                    tool=step.tool
                ) from e

            if step.store_as:
                replay_context.notepad.write(step.store_as, result if fallback_tool else stored_value(result))

            if step.tool == PAGE_MUTATION_TOOL:
                hidden_this_pass += hidden_count(result)

            results.append({
                "pass": pass_number,
                "step": step.step_number,
                "tool": step.tool,
                "result": result
            })

        if not fn.iterative:
            break

        logger_executor.debug(f"REPLAY_PASS | function={fn.name} | pass={pass_number} | hidden={hidden_this_pass}")

        if hidden_this_pass <= 0:
            break
        if pass_number < pass_limit:
            time.sleep(pass_delay)

    logger_executor.info(
        f"REPLAY_COMPLETE | function={fn.name} | passes={passes_run} | steps={len(results)} | "
        f"duration={LogContext.format_timing(time.perf_counter() - start_time)}"
    )

    return ReplayResult(
        success=True,
        expected_output=plan.expected_output or "Tool-chain output",
        passes_run=passes_run,
        steps=results
    )


def max_passes(inputs: Dict[str, Any]) -> int:
    """maxPasses input as a positive int; unparseable values use the default"""
    raw = inputs.get("maxPasses") or DEFAULT_MAX_PASSES
    try:
        return max(1, int(float(raw)))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_MAX_PASSES


def hidden_count(result: Any) -> float:
    """Items a page mutation reported hiding (result.hidden or result.result.hidden)"""
    if not isinstance(result, dict):
        return 0
    value = result.get("hidden")
    if value is None and isinstance(result.get("result"), dict):
        value = result["result"].get("hidden")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value if math.isfinite(value) and value > 0 else 0


def _log_replay_start(fn: CompiledFunction, inputs: Dict[str, Any], pass_limit: int):
    log_data = {
        "function": fn.name,
        "steps": len(fn.embedded_plan.steps),
        "inputs": ",".join(inputs) or "none",
        "max_passes": pass_limit
    }
    logger_executor.info(f"REPLAY_START | {LogContext.format_dict(log_data)}")
