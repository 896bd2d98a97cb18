"""
Terminal Rendering Helpers

Formatting of pipeline results and library listings for the CLI.
"""


import time
from typing import List

from tools.schemas import CompiledFunction, PipelineResult, ReplayResult, StepResult


# ═══════════════════════════════════════════════════════════════════════════════
# TYPING EFFECTS
# ═══════════════════════════════════════════════════════════════════════════════

def type_out(text: str, delay: float = 0.0):
    """
    Print text, optionally with a typing effect.

    Args:
        text: Text to print
        delay: Delay between characters (seconds); 0 prints at once
    """
    if delay <= 0:
        print(text)
        return
    for char in text:
        print(char, end="", flush=True)
        time.sleep(delay)
    print()


def type_list(items: list, delay: float = 0.0):
    for i, item in enumerate(items, start=1):
        type_out(f"  {i}. {item}", delay=0.02 if delay > 0 else 0)
        if delay > 0:
            time.sleep(delay)


# ═══════════════════════════════════════════════════════════════════════════════
# RESULT RENDERING
# ═══════════════════════════════════════════════════════════════════════════════

def format_step_line(step: StepResult) -> str:
    marker = "✓" if step.success else "✗"
    line = f"  {marker} #{step.step} {step.tool}"
    if step.fallback:
        line += f" (via {step.fallback})"
    if step.error:
        line += f" - {step.error[:120]}"
    return line


def format_pipeline_result(result: PipelineResult) -> List[str]:
    lines = ["Steps:"]
    lines.extend(format_step_line(step) for step in result.steps)

    verdict = result.verification
    if verdict is not None:
        lines.append(f"Verification: {'passed' if verdict.valid else 'failed'} (primary output: {verdict.primary_key})")
        lines.extend(f"  - {issue}" for issue in verdict.issues)

    if result.aborted:
        lines.append(f"Aborted: {result.abort_reason}")

    status = "✅ Success" if result.success else f"❌ Failed ({result.failure})"
    lines.append(f"{status} after {result.attempts} attempt(s)")

    if result.saved_function is not None:
        lines.append(f"Saved function: {result.saved_function.name}")

    return lines


def format_replay_result(name: str, result: ReplayResult) -> List[str]:
    lines = [f"Replayed {name}: {len(result.steps)} step result(s) over {result.passes_run} pass(es)"]
    lines.append(f"Expected output: {result.expected_output}")
    return lines


def format_function_entry(fn: CompiledFunction) -> str:
    inputs = ", ".join(f"{inp.name}={inp.default_value!r}" for inp in fn.inputs) or "no inputs"
    iterative = " [iterative]" if fn.iterative else ""
    return f"  {fn.name}{iterative}: {len(fn.embedded_plan.steps)} steps, {inputs}"
