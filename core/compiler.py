"""
Function Compiler

Turns a verified, successful run into a reusable Compiled Function: a
parameterized copy of the plan plus the inputs inferred from it. Replaying
it (core/replay.py) does not involve the planning oracle.
"""

import copy
import json
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from app.config import (
    BROWSER_TOOL,
    DEFAULT_MAX_PASSES,
    DEFAULT_REGION,
    FUNCTION_NAME_FALLBACK,
    FUNCTION_NAME_MAX_WORDS,
    FUNCTION_NAME_PREFIX,
    LOCAL_INFERENCE_TOOL,
    PAGE_MUTATION_TOOL,
    REGION_AWARE_TOOLS,
    SEMANTIC_TOOL,
)
from core.templates import has_tokens
from tools.schemas import CompiledFunction, FunctionInput, Plan
from infra.logger import logger_compiler


_EXCLUSION_LANGUAGE = re.compile(r"\b(ban|banned|avoid|exclude|block|hide|filter out|remove)\b")
_REGION_LANGUAGE = re.compile(r"\b(country|region|intl|united states|canada)\b", re.IGNORECASE)
_REGION_HINTS = ("country", "region", "intl", "united states", "canada")
_TOPIC_PROMPT_HINTS = ("similarity score", "banned topic", "politic", "gossip", "military")
_TOPIC_CRITERIA_HINTS = ("politic", "gossip", "military", "banned")
_QUOTED = re.compile(r"\"([^\"]+)\"|'([^']+)'")

BANNED_TOPICS_INPUT = "bannedTopics"
SEMANTIC_QUERY_INPUT = "semanticQuery"
REGION_INPUT = "regionPreference"
MAX_PASSES_INPUT = "maxPasses"


# ═══════════════════════════════════════════════════════════════════════════════
# NAMING
# ═══════════════════════════════════════════════════════════════════════════════

def sanitize_function_name(task_text: str) -> str:
    """
    "Compare prices on this page!" -> "RunComparePricesOnThisPage"
    """
    words = re.sub(r"[^a-zA-Z0-9\s]", " ", str(task_text or "")).split()[:FUNCTION_NAME_MAX_WORDS]
    base = "".join(word[0].upper() + word[1:].lower() for word in words) or FUNCTION_NAME_FALLBACK
    return f"{FUNCTION_NAME_PREFIX}{base}"


def unique_function_name(base: str, existing: Iterable[str]) -> str:
    """First of base, base2, base3, ... not already taken"""
    taken = set(existing)
    name = base
    suffix = 2
    while name in taken:
        name = f"{base}{suffix}"
        suffix += 1
    return name


# ═══════════════════════════════════════════════════════════════════════════════
# INPUT INFERENCE
# ═══════════════════════════════════════════════════════════════════════════════

def extract_quoted_phrases(text: str) -> List[str]:
    phrases = []
    for match in _QUOTED.finditer(str(text or "")):
        value = (match.group(1) or match.group(2) or "").strip()
        if value and value not in phrases:
            phrases.append(value)
    return phrases


def resolve_url_patterns(current_url: Optional[str]) -> List[str]:
    """URL globs a compiled function applies to: this path, then the whole origin"""
    if not current_url:
        return []

    try:
        parts = urlsplit(current_url)
        port = parts.port
    except ValueError:
        return []

    if not parts.scheme or not parts.hostname:
        return []

    origin = f"{parts.scheme}://{parts.hostname}"
    if port is not None and not _is_default_port(parts.scheme, port):
        origin = f"{origin}:{port}"

    patterns = []
    for pattern in (f"{origin}{parts.path or '/'}*", f"{origin}/*"):
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


def _is_default_port(scheme: str, port: int) -> bool:
    return (scheme, port) in (("http", 80), ("https", 443))


def step_likely_region_gate(step: Dict[str, Any]) -> bool:
    params = step.get("params")
    text = " ".join([
        str(step.get("purpose") or ""),
        str(step.get("tool") or ""),
        json.dumps(params, ensure_ascii=False) if isinstance(params, dict) else "",
    ]).lower()
    return any(hint in text for hint in _REGION_HINTS)


def parameterize_plan(task_text: str, plan: Plan) -> Tuple[Plan, List[FunctionInput], bool]:
    """
    Replace task-specific literals in a plan copy with input references.

    - semantic-ranking query literals (token-free) -> bannedTopics / semanticQuery input
    - region gate (task or any step mentions country/region) -> regionPreference
      on every scraper and browser step; a literal region already in the plan
      becomes the default
    - semantic ranking + hideByIndices page mutation -> maxPasses, iterative
    - topic-classification wording in local inference prompt/criteria ->
      rewritten to reference the topic input, when one was declared

    Returns:
        (parameterized plan, inferred inputs, iterative)
    """
    wire = plan.to_wire()
    steps: List[Dict[str, Any]] = copy.deepcopy(wire["plan"])
    inputs: List[FunctionInput] = []

    def add_input(name: str, description: str, default: Any, type_: str = "string"):
        if any(existing.name == name for existing in inputs):
            return
        inputs.append(FunctionInput(
            name=name,
            type=type_,
            description=description,
            default_value=str(default or "")
        ))

    for step in steps:
        if not isinstance(step.get("params"), dict):
            step["params"] = {}

    task_lower = str(task_text or "").lower()
    exclusion_task = bool(_EXCLUSION_LANGUAGE.search(task_lower))
    query_input = BANNED_TOPICS_INPUT if exclusion_task else SEMANTIC_QUERY_INPUT
    query_description = (
        "Comma-separated topics to hide or exclude semantically."
        if exclusion_task
        else "Comma-separated semantic query topics for ranking/filtering."
    )

    # Semantic query literals
    query_default = ""
    for step in steps:
        query = step["params"].get("query")
        if step.get("tool") != SEMANTIC_TOOL or not isinstance(query, str) or not query.strip():
            continue
        # Token queries carry data from earlier steps
        if has_tokens(query):
            continue
        if not query_default:
            query_default = query.strip()
        step["params"]["query"] = f"{{{{input:{query_input}}}}}"

    quoted_default = ", ".join(extract_quoted_phrases(task_text)).strip()
    if query_default or quoted_default:
        add_input(query_input, query_description, quoted_default or query_default)

    # Region gate
    if _REGION_LANGUAGE.search(str(task_text or "")) or any(step_likely_region_gate(step) for step in steps):
        region_default = next(
            (
                step["params"][REGION_INPUT].strip()
                for step in steps
                if step.get("tool") in REGION_AWARE_TOOLS
                and isinstance(step["params"].get(REGION_INPUT), str)
                and step["params"][REGION_INPUT].strip()
                and not has_tokens(step["params"][REGION_INPUT])
            ),
            DEFAULT_REGION
        )
        add_input(
            REGION_INPUT,
            'Preferred country/region selection for geo gates: "us" for United States or "ca" for Canada.',
            region_default
        )
        for step in steps:
            if step.get("tool") in REGION_AWARE_TOOLS:
                step["params"][REGION_INPUT] = f"{{{{input:{REGION_INPUT}}}}}"

    # Iterative semantic cleanup
    has_semantic_step = any(step.get("tool") == SEMANTIC_TOOL for step in steps)
    has_hide_step = any(
        step.get("tool") == PAGE_MUTATION_TOOL
        and str(step["params"].get("action") or "").lower() == "hidebyindices"
        for step in steps
    )
    iterative = has_semantic_step and has_hide_step
    if iterative:
        add_input(
            MAX_PASSES_INPUT,
            "How many semantic cleanup passes to run for dynamic feeds.",
            DEFAULT_MAX_PASSES,
            "number"
        )

    # Topic-classification wording, only when the topics are an input
    has_query_input = any(inp.name == query_input for inp in inputs)
    for step in steps:
        if not has_query_input or step.get("tool") != LOCAL_INFERENCE_TOOL:
            continue
        params = step["params"]

        prompt = params.get("prompt")
        if isinstance(prompt, str) and any(hint in prompt.lower() for hint in _TOPIC_PROMPT_HINTS):
            params["prompt"] = (
                "Based on the similarity scores, identify which items are clearly related to these topics: "
                f"{{{{input:{query_input}}}}}. Return only a JSON array of the original indices for these items."
            )

        criteria = params.get("criteria")
        if isinstance(criteria, str) and any(hint in criteria.lower() for hint in _TOPIC_CRITERIA_HINTS):
            params["criteria"] = f"Items semantically related to: {{{{input:{query_input}}}}}"

    parameterized = Plan.model_validate({"plan": steps, "expectedOutput": wire["expectedOutput"]})

    logger_compiler.debug(
        f"PARAMETERIZE | inputs={[inp.name for inp in inputs]} | iterative={iterative}"
    )
    return parameterized, inputs, iterative


# ═══════════════════════════════════════════════════════════════════════════════
# COMPILATION
# ═══════════════════════════════════════════════════════════════════════════════

def compile_function(
    task_text: str,
    plan: Plan,
    current_url: Optional[str],
    existing_names: Iterable[str] = ()
) -> CompiledFunction:
    """Build (but do not store) the compiled function for a verified run"""
    name = unique_function_name(sanitize_function_name(task_text), existing_names)
    parameterized, inputs, iterative = parameterize_plan(task_text, plan)

    optional_inputs = ", ".join(inp.name for inp in inputs) or "none"

    return CompiledFunction(
        name=name,
        description=(
            f"Tool chain: {task_text}\n"
            "How to call: Run this function from the page matching urlPatterns. "
            f"Optional inputs: {optional_inputs}."
        ),
        inputs=inputs,
        url_applicability=resolve_url_patterns(current_url),
        start_url=current_url or None,
        embedded_plan=parameterized,
        iterative=iterative
    )


def save_compiled_function(task_text: str, plan: Plan, current_url: Optional[str], library) -> CompiledFunction:
    """
    Compile a verified run and add it to the library.

    Never overwrites: a taken name gets the next numeric suffix.
    """
    functions = library.get_all()
    compiled = compile_function(task_text, plan, current_url, functions.keys())

    functions[compiled.name] = compiled.to_wire()
    library.set_all(functions)

    logger_compiler.info(
        f"FUNCTION_SAVED | name={compiled.name} | steps={len(compiled.embedded_plan.steps)} | "
        f"inputs={len(compiled.inputs)} | iterative={compiled.iterative}"
    )
    return compiled
