"""
Verification Module

Selects the primary output of a run, packages it with a step summary and
screenshots, and asks the verification oracle for a verdict.

Primary-output selection, in order:
    1. Latest successful step whose stored notepad value is non-empty and
       not metadata-only
    2. Latest successful output-tool step's raw result
    3. Best-scoring notepad entry (key heuristics + length bonus)
    4. Latest successful step's raw result
    5. Empty text
"""

import json
import math
import re
from typing import Any, Dict, List, Optional

from app.config import (
    EXCERPT_CHARS,
    LENGTH_SCORE_CAP,
    LENGTH_SCORE_CHUNK,
    MAX_UI_SCREENSHOTS,
    MAX_VERIFICATION_SCREENSHOTS,
    METADATA_TEXT_LIMIT,
    OUTPUT_TOOLS,
    REPORT_TOOL,
    UI_SCORE_THRESHOLD,
)
from tools.schemas import (
    ExecutionReport,
    Plan,
    PrimaryOutput,
    Screenshot,
    StepResult,
    SuggestedFix,
    UiAssessment,
    Verdict,
)
from infra.logger import logger_verifier, log_verification_result


_METADATA_KEYS = frozenset({
    "success", "tabid", "template", "templatetype", "pageid", "durationms",
    "status", "message", "timestamp", "createdat",
})

_DATA_HINT = re.compile(r"(price|rating|availability|title|summary|comparison|table|\[|\{)", re.IGNORECASE)

_KEY_SCORES = (
    (re.compile(r"markdown|md"), 6),
    (re.compile(r"html|page|report|summary"), 5),
    (re.compile(r"content|output|result|export"), 4),
    (re.compile(r"data|rows|items|list"), 2),
)

DEFAULT_UI_FIX = {
    "tool": REPORT_TOOL,
    "purpose": "Regenerate the report UI with clearer hierarchy and readability.",
    "params": {
        "templateType": "summary",
        "options": {"title": "Refined generated report"}
    }
}


# ═══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════════

def verify_execution(plan: Plan, report: ExecutionReport, judge, context=None) -> Verdict:
    """
    Judge a run's primary output.

    Never raises for judge problems: a failing or unparseable judge degrades
    to "valid if there is any output". The strict UI rule is applied either
    way when the plan generates a report page.

    Args:
        plan: The plan that was executed
        report: Its execution report
        judge: VerificationOracle
        context: Optional ExecutionContext (fallback screenshot, status events)
    """
    primary = select_primary_output(report.notepad_state, report.steps)
    text = primary.text
    head100 = text[:EXCERPT_CHARS]
    tail100 = text[-EXCERPT_CHARS:] if text else ""

    screenshots = select_screenshots(report.screenshots)
    if not screenshots and context is not None:
        fallback_shot = context.capture_snapshot()
        if fallback_shot:
            logger_verifier.debug("VERIFY_FALLBACK_SCREENSHOT | captured=1")
            screenshots = [fallback_shot]

    ui_required = plan.uses_tool(REPORT_TOOL)

    if context is not None:
        context.status(
            "Running verification test (content + screenshot check)...",
            type="tool-chain-verification-start"
        )

    logger_verifier.info(
        f"VERIFY_START | primary_key={primary.key} | length={len(text)} | "
        f"screenshots={len(screenshots)} | ui_required={ui_required}"
    )

    try:
        raw = judge.judge(
            plan.expected_output,
            {"primary_key": primary.key, "length": len(text), "head100": head100, "tail100": tail100},
            build_step_summary(report.steps),
            screenshots,
            ui_required
        )
        verdict = parse_verdict(raw)
    except Exception as e:
        logger_verifier.warning(f"JUDGE_FAILED | error={str(e)[:200]}")
        verdict = Verdict(
            valid=len(text) > 0,
            issues=[f"Verification parser fallback: {e}"]
        )

    if ui_required:
        apply_ui_rule(verdict, len(screenshots))

    verdict.head100 = head100
    verdict.tail100 = tail100
    verdict.primary_key = primary.key

    log_verification_result(verdict.valid, len(verdict.issues), primary.key)
    return verdict


# ═══════════════════════════════════════════════════════════════════════════════
# PRIMARY OUTPUT SELECTION
# ═══════════════════════════════════════════════════════════════════════════════

def stringify_for_verification(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def looks_metadata_only(value: Any, text: str) -> bool:
    """Objects that only describe an action (status, ids, timing) carry no output"""
    if not isinstance(value, dict):
        return False
    if not value:
        return True
    if all(str(key).lower() in _METADATA_KEYS for key in value):
        return True
    return len(text) < METADATA_TEXT_LIMIT and not _DATA_HINT.search(text)


def score_key(key: str) -> int:
    lowered = str(key or "").lower()
    return sum(points for pattern, points in _KEY_SCORES if pattern.search(lowered))


def select_primary_output(notepad_state: Dict[str, Any], steps: List[StepResult]) -> PrimaryOutput:
    successful = [step for step in steps if step.success]

    for step in reversed(successful):
        if not step.store_as or step.store_as not in notepad_state:
            continue
        value = notepad_state[step.store_as]
        text = stringify_for_verification(value).strip()
        if not text or looks_metadata_only(value, text):
            continue
        return PrimaryOutput(key=step.store_as, text=text, score=999)

    for step in reversed(successful):
        if step.tool not in OUTPUT_TOOLS:
            continue
        text = stringify_for_verification(step.result).strip()
        if text:
            return PrimaryOutput(key=f"{step.tool}_result", text=text, score=998)

    scored = []
    for key, value in notepad_state.items():
        text = stringify_for_verification(value).strip()
        if not text:
            continue
        bonus = min(len(text) // LENGTH_SCORE_CHUNK, LENGTH_SCORE_CAP)
        scored.append(PrimaryOutput(key=key, text=text, score=score_key(key) + bonus))

    if scored:
        # sorted() is stable: ties keep notepad write order
        return sorted(scored, key=lambda entry: entry.score, reverse=True)[0]

    if successful:
        text = stringify_for_verification(successful[-1].result).strip()
        if text:
            return PrimaryOutput(key="last_step_result", text=text, score=1)

    return PrimaryOutput(key="none", text="", score=0)


# ═══════════════════════════════════════════════════════════════════════════════
# VERDICT REQUEST
# ═══════════════════════════════════════════════════════════════════════════════

def select_screenshots(shots: List[Screenshot]) -> List[str]:
    """Up to 2 report-page shots, then the most recent ones, de-duplicated"""
    ui_shots = [shot.image for shot in shots if shot.tool == REPORT_TOOL and shot.image]
    recent = [shot.image for shot in shots if shot.image][-MAX_VERIFICATION_SCREENSHOTS:]

    selected = []
    for image in ui_shots[-MAX_UI_SCREENSHOTS:] + recent:
        if image not in selected:
            selected.append(image)
    return selected[:MAX_VERIFICATION_SCREENSHOTS]


def build_step_summary(steps: List[StepResult]) -> str:
    return "\n".join(
        f"#{step.step} {step.tool}: {'ok' if step.success else 'failed'}"
        + (f" ({step.error})" if step.error else "")
        for step in steps
    )


def parse_verdict(raw: Any) -> Verdict:
    """Leniently coerce judge JSON into a Verdict"""
    if not isinstance(raw, dict):
        raise ValueError(f"Judge returned {type(raw).__name__}, expected an object")

    fixes = []
    for fix in _as_list(raw.get("suggestedFixes", raw.get("suggested_fixes"))):
        if not isinstance(fix, dict):
            continue
        fixes.append(SuggestedFix(
            tool=str(fix.get("tool") or ""),
            purpose=str(fix.get("purpose") or ""),
            params=fix.get("params") if isinstance(fix.get("params"), dict) else {}
        ))

    ui_raw = raw.get("uiAssessment", raw.get("ui_assessment"))
    ui_assessment = None
    if isinstance(ui_raw, dict):
        ui_assessment = UiAssessment(
            score=_finite_number(ui_raw.get("score")),
            issues=[str(issue) for issue in _as_list(ui_raw.get("issues"))],
            strengths=[str(item) for item in _as_list(ui_raw.get("strengths"))]
        )

    return Verdict(
        valid=bool(raw.get("valid")),
        issues=[str(issue) for issue in _as_list(raw.get("issues"))],
        recommendations=[str(item) for item in _as_list(raw.get("recommendations"))],
        suggested_fixes=fixes,
        ui_assessment=ui_assessment
    )


def apply_ui_rule(verdict: Verdict, screenshot_count: int):
    """
    Strict UI gate for plans that generate a report page: a low UI score or
    a missing screenshot invalidates the verdict, and an invalid verdict
    always carries a report-generator fix.
    """
    score = verdict.ui_assessment.score if verdict.ui_assessment else None
    if score is not None and score < UI_SCORE_THRESHOLD:
        verdict.valid = False
        verdict.issues.append(
            f"UI quality score {_format_score(score)}/10 is below required threshold "
            f"({_format_score(UI_SCORE_THRESHOLD)}/10)."
        )

    if screenshot_count == 0:
        verdict.valid = False
        verdict.issues.append("UI verification had no screenshots to evaluate.")

    if not verdict.valid and not any(fix.tool.lower() == REPORT_TOOL for fix in verdict.suggested_fixes):
        verdict.suggested_fixes.append(SuggestedFix.model_validate(DEFAULT_UI_FIX))


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, list) else []


def _finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _format_score(score: float) -> str:
    return str(int(score)) if float(score).is_integer() else str(score)
