"""
Parameter Resolution Module

Substitutes template tokens in a step's parameter tree using the run's
notepad, the compiled-function inputs and the run context (tab handle,
credential). Resolution is pure: the input tree is never mutated.

Rules:
    - A string that is exactly one token resolves to the referenced value
      with its native type. Absent notepad/input keys leave the token
      string unchanged.
    - Tokens embedded in longer text are replaced by their text form
      (strings as-is, everything else as compact JSON).
    - {{tabId}} / {{apiKey}} only resolve when they are the whole string.
"""

import copy
import json
import math
import re
from typing import Any, Callable, Dict, List

from app.config import PAGE_MUTATION_TOOL, REMOTE_LLM_TOOL
from core.notepad import ABSENT
from core.templates import (
    ContextRef,
    InputRef,
    Literal,
    NotepadRef,
    Reference,
    exact_reference,
    parse_template,
)
from infra.logger import logger_executor


# ═══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════════

def resolve_params(params: Any, context) -> Any:
    """
    Resolve every template token in a parameter tree.

    Args:
        params: JSON-like tree (dict / list / scalars)
        context: Object exposing notepad, inputs, tab_handle and credential
            (see core.context.ExecutionContext)

    Returns:
        A new tree with tokens substituted
    """
    return _visit(params, context)


def value_to_text(value: Any) -> str:
    """Text form used when a token is spliced into a longer string"""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def find_tokens(params: Any) -> List[Reference]:
    """List every token reference in a tree, depth-first"""
    found: List[Reference] = []

    def walk(node):
        if isinstance(node, dict):
            for value in node.values():
                walk(value)
        elif isinstance(node, list):
            for value in node:
                walk(value)
        elif isinstance(node, str):
            found.extend(seg for seg in parse_template(node) if not isinstance(seg, Literal))

    walk(params)
    return found


# ═══════════════════════════════════════════════════════════════════════════════
# VISITOR
# ═══════════════════════════════════════════════════════════════════════════════

def _visit(node: Any, context) -> Any:
    if isinstance(node, dict):
        return {key: _visit(value, context) for key, value in node.items()}
    if isinstance(node, list):
        return [_visit(value, context) for value in node]
    if isinstance(node, str):
        return _resolve_string(node, context)
    return copy.deepcopy(node)


def _resolve_string(text: str, context) -> Any:
    segments = parse_template(text)

    reference = exact_reference(segments)
    if reference is not None:
        value = _lookup(reference, context)
        if value is ABSENT:
            logger_executor.debug(f"RESOLVE_ABSENT | token={text}")
            return text
        return copy.deepcopy(value)

    if all(isinstance(seg, Literal) for seg in segments):
        return text

    parts = []
    for seg in segments:
        if isinstance(seg, Literal):
            parts.append(seg.text)
        elif isinstance(seg, ContextRef):
            parts.append(seg.raw)
        else:
            value = _lookup(seg, context)
            parts.append(seg.raw if value is ABSENT else value_to_text(value))

    return "".join(parts)


def _lookup(reference: Reference, context) -> Any:
    if isinstance(reference, NotepadRef):
        return context.notepad.read(reference.key)

    if isinstance(reference, InputRef):
        inputs = context.inputs or {}
        return inputs.get(reference.name, ABSENT)

    if reference.name == "tabId":
        return context.tab_handle
    return context.credential


# ═══════════════════════════════════════════════════════════════════════════════
# TOOL-SPECIFIC CANONICALIZATION
# ═══════════════════════════════════════════════════════════════════════════════

_SELECTOR_FIELDS = (
    "selector",
    "selectors",
    "containerSelector",
    "targetSelector",
    "videoSelector",
    "itemSelector",
)

_JSON_EXPECTATION = re.compile(
    r"(?:valid\s+)?json|json\s+array|json\s+object|return\s+only\s+json|strict\s+json|reply\s+with\s+only"
)


def canonicalize_params(tool_name: str, params: Dict[str, Any]) -> Dict[str, Any]:
    """Apply the tool's canonicalization hook, if it has one"""
    hook = CANONICALIZERS.get(tool_name)
    if hook is None or not isinstance(params, dict):
        return params
    return hook(params)


def normalize_page_mutation_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Coerce the page-mutation tool's selector into one CSS selector string
    and, for hideByIndices, its indices into sorted non-negative ints.
    """
    normalized = copy.deepcopy(params)
    action = str(normalized.get("action") or "").strip().lower()

    selector_source = _first_present(normalized, _SELECTOR_FIELDS)
    normalized["selector"] = _normalize_selector(selector_source)

    if action == "hidebyindices":
        indices_source = _first_present(normalized, ("indices", "matches", "results"))
        normalized["indices"] = _normalize_indices(indices_source)

    return normalized


def infer_remote_json_expectation(params: Dict[str, Any]) -> Dict[str, Any]:
    """Set parseJson from the prompt wording when the planner left it out"""
    if isinstance(params.get("parseJson"), bool):
        return params

    prompt = str(params.get("prompt") or "").lower()
    updated = dict(params)
    updated["parseJson"] = bool(prompt) and bool(_JSON_EXPECTATION.search(prompt))
    return updated


def _first_present(params: Dict[str, Any], fields) -> Any:
    for field in fields:
        if params.get(field) is not None:
            return params[field]
    return None


def _normalize_selector(source: Any) -> str:
    if isinstance(source, list):
        parts = [str(value).strip() for value in _flatten(source) if value is not None]
        return ", ".join(part for part in parts if part)

    if isinstance(source, dict):
        for field in ("selector",) + _SELECTOR_FIELDS[2:]:
            value = source.get(field)
            if value:
                return str(value).strip()
        return ""

    if isinstance(source, str):
        return source.strip()

    return ""


def _normalize_indices(source: Any) -> List[int]:
    if isinstance(source, dict):
        source = source.get("indices") or source.get("results") or []
    if not isinstance(source, list):
        return []

    indices = set()
    for value in _flatten(source):
        if isinstance(value, dict):
            value = value.get("index", value)
        number = _to_number(value)
        if number is not None and number >= 0:
            indices.add(int(math.floor(number)))

    return sorted(indices)


def _to_number(value: Any):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _flatten(values: list):
    for value in values:
        if isinstance(value, list):
            yield from _flatten(value)
        else:
            yield value


CANONICALIZERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    PAGE_MUTATION_TOOL: normalize_page_mutation_params,
    REMOTE_LLM_TOOL: infer_remote_json_expectation,
}
