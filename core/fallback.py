"""
Local Inference Fallback

When the local inference tool is unavailable, its step is re-issued through
the remote LLM tool. This is a substitution, not a retry: the instruction is
rebuilt from the step's action kind and the remote answer is post-processed
back into the shape the local action would have produced.
"""

import json
from typing import Any, Dict, List, Optional

from app.config import LOCAL_INFERENCE_TOOL, REMOTE_LLM_TOOL
from core.errors import FallbackFailure
from infra.logger import logger_executor


SENTIMENT_LABELS = ("positive", "negative", "neutral")

# Keys tried (in order) when reducing an object to one line of text
_TEXT_KEYS = (
    "review_text", "reviewText", "review", "comment", "commentBody", "body", "message",
    "title", "headline", "name", "text", "text_content", "description", "summary", "content",
)

_SENTIMENT_TEXT_KEYS = (
    "review_text", "reviewText", "commentBody", "comment", "text", "description",
)


# ═══════════════════════════════════════════════════════════════════════════════
# LOCAL RESULT INSPECTION
# ═══════════════════════════════════════════════════════════════════════════════

def infer_local_action(params: Dict[str, Any]) -> str:
    """
    Work out which local action a step asks for.

    An explicit action (or task) wins; otherwise the action is inferred from
    which params are present.
    """
    if params.get("action"):
        return str(params["action"])
    if params.get("task") and isinstance(params["task"], str):
        return params["task"]
    if params.get("question"):
        return "booleanCheck"
    if params.get("text") and params.get("schema"):
        return "jsonExtract"
    if params.get("items") and params.get("criteria"):
        return "filterItems"
    if params.get("items") and params.get("weights"):
        return "weightedScore"
    if params.get("text") and params.get("text2"):
        return "compareTexts"
    if params.get("prompt"):
        return "generate"
    return ""


def is_empty_local_result(result: Any, params: Dict[str, Any]) -> bool:
    """
    True when a structurally successful local inference call produced nothing.

    Empty means: no payload at all, an empty list where the step passed a
    non-empty item list, or (single sentiment) a label that is not one of
    positive / negative / neutral.
    """
    if isinstance(result, dict):
        if result.get("success") is False or result.get("error"):
            return False
        output = next(
            (result[key] for key in ("result", "data", "results") if result.get(key) is not None),
            None
        )
    else:
        output = result

    if output is None:
        return True

    items = params.get("items")
    has_items = isinstance(items, list) and len(items) > 0

    if has_items and isinstance(output, (list, dict)) and len(output) == 0:
        return True

    action = params.get("action") or params.get("task") or ""
    if action == "sentiment" and not isinstance(items, list) and isinstance(output, str):
        return output.strip().lower() not in SENTIMENT_LABELS

    return False


def extract_text_list(source: Any) -> List[str]:
    """Reduce a list (or an object wrapping one) to its non-empty text lines"""
    if not source:
        return []

    if isinstance(source, list):
        return [text for text in (_pick_text(item) for item in source) if text]

    if isinstance(source, dict):
        last_extraction = source.get("lastExtractionResult")
        buckets = [
            source.get("items"),
            source.get("data"),
            source.get("results"),
            source.get("result"),
            source.get("extractedData"),
            last_extraction.get("result") if isinstance(last_extraction, dict) else None,
        ]
        for bucket in buckets:
            if isinstance(bucket, list):
                return [text for text in (_pick_text(item) for item in bucket) if text]
        one = _pick_text(source)
        return [one] if one else []

    if isinstance(source, str) and source.strip():
        return [source.strip()]

    return []


def _pick_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if not isinstance(value, dict):
        return ""
    for key in _TEXT_KEYS:
        candidate = value.get(key)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    for candidate in value.values():
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


# ═══════════════════════════════════════════════════════════════════════════════
# REMOTE SUBSTITUTION
# ═══════════════════════════════════════════════════════════════════════════════

def run_remote_fallback(step, params: Dict[str, Any], context) -> Any:
    """
    Re-issue a failed local inference step through the remote LLM tool.

    Args:
        step: The failed Step
        params: The step's resolved params
        context: ExecutionContext of the run

    Returns:
        Data shaped like the local action's output

    Raises:
        FallbackFailure: The remote call failed or returned nothing usable
    """
    declared = params.get("action") or params.get("task")

    # No declared action but a collection to work on: hand back its text lines
    if not declared:
        texts = extract_text_list(_first_collection(params))
        if texts:
            logger_executor.info(
                f"FALLBACK_TEXT_LIST | step={step.step_number} | items={len(texts)}"
            )
            return texts

    action = infer_local_action(params)
    batch_rows = None

    if action == "sentiment" and isinstance(params.get("items"), list):
        batch_rows = _sentiment_rows(params)
        if not batch_rows:
            return []

    prompt = build_fallback_prompt(action, params, batch_rows)
    parse_json = _expects_json(action, batch_rows is not None)

    logger_executor.info(
        f"FALLBACK_START | step={step.step_number} | action={action or 'none'} | "
        f"parse_json={parse_json}"
    )

    try:
        response = context.registry.execute(
            REMOTE_LLM_TOOL,
            {"prompt": prompt, "parseJson": parse_json, "temperature": 0},
            context.tool_context(step.step_number)
        )
    except Exception as e:
        raise FallbackFailure(
            f"Remote fallback failed: {e}",
            step=step.step_number,
            tool=LOCAL_INFERENCE_TOOL
        ) from e

    if isinstance(response, dict) and response.get("success") is False:
        raise FallbackFailure(
            f"Remote fallback failed: {response.get('error') or 'success=false'}",
            step=step.step_number,
            tool=LOCAL_INFERENCE_TOOL
        )

    data = _unwrap(response)
    return _shape_output(action, data, batch_rows, step)


def build_fallback_prompt(action: str, params: Dict[str, Any], batch_rows=None) -> str:
    """Rebuild the local action as a single remote instruction"""
    if action == "booleanCheck":
        return f'Answer ONLY "true" or "false": {params.get("question") or params.get("prompt")}'

    if action == "sentiment":
        if batch_rows is not None:
            entries = json.dumps(
                [{"index": row["index"], "text": row["text"]} for row in batch_rows],
                ensure_ascii=False
            )
            return (
                'Classify each entry sentiment as "positive", "negative", or "neutral".\n'
                'Return ONLY a JSON array using this schema: '
                '[{"index": number, "sentiment": "positive|negative|neutral"}].\n'
                f"Entries: {entries}"
            )
        return f'Classify sentiment as "positive", "negative", or "neutral": {params.get("text")}'

    if action == "filterItems":
        return (
            "Filter these items by the criteria. Return ONLY a JSON array of matching items.\n"
            f"Items: {json.dumps(params.get('items'), ensure_ascii=False)}\n"
            f"Criteria: {params.get('criteria')}"
        )

    if action == "jsonExtract":
        return (
            "Extract data matching this schema from the text. Return ONLY JSON.\n"
            f"Schema: {json.dumps(params.get('schema'), ensure_ascii=False)}\n"
            f"Text: {params.get('text')}"
        )

    if action == "compareTexts":
        return (
            "On a scale of 0.0 to 1.0, how semantically similar are these two texts? "
            "Return ONLY a decimal number.\n\n"
            f"Text 1: {params.get('text')}\nText 2: {params.get('text2')}"
        )

    if action == "weightedScore":
        return (
            "Given these items with their attributes:\n"
            f"{json.dumps(params.get('items'), indent=1, ensure_ascii=False)}\n\n"
            f"Weights: {json.dumps(params.get('weights'), ensure_ascii=False)}\n\n"
            "Calculate a weighted score for each item. Return a JSON array of objects with the "
            'original data plus a "score" field. Sort by score descending. No explanation.'
        )

    return params.get("prompt") or params.get("question") or json.dumps(params, ensure_ascii=False)


def _expects_json(action: str, batch: bool) -> bool:
    if action in ("booleanCheck", "compareTexts", "generate"):
        return False
    if action == "sentiment":
        return batch
    return True


def _first_collection(params: Dict[str, Any]) -> Any:
    for key in ("items", "data", "documents", "results", "result"):
        if params.get(key):
            return params[key]
    return None


def _sentiment_rows(params: Dict[str, Any]) -> List[Dict[str, Any]]:
    text_key = params.get("text_key") if isinstance(params.get("text_key"), str) else None
    if text_key is None and isinstance(params.get("textKey"), str):
        text_key = params["textKey"]

    rows = []
    for index, item in enumerate(params["items"]):
        text = ""
        if text_key and isinstance(item, dict) and isinstance(item.get(text_key), str):
            text = item[text_key]
        elif isinstance(item, str):
            text = item
        elif isinstance(item, dict):
            text = next(
                (item[key] for key in _SENTIMENT_TEXT_KEYS if isinstance(item.get(key), str) and item[key]),
                ""
            )
        text = str(text or "").strip()
        if text:
            rows.append({"index": index, "text": text, "original": item})
    return rows


def _unwrap(response: Any) -> Any:
    if isinstance(response, dict):
        for key in ("data", "result", "results"):
            if response.get(key) is not None:
                return response[key]
        return None
    return response


def _shape_output(action: str, data: Any, batch_rows: Optional[list], step) -> Any:
    if action == "booleanCheck":
        return "true" in str(data or "").lower()

    if action == "sentiment":
        if batch_rows is not None:
            return _merge_sentiments(batch_rows, data)
        text = str(data or "").lower()
        for label in ("positive", "negative"):
            if label in text:
                return label
        return "neutral"

    if action == "compareTexts":
        try:
            score = float(str(data).strip())
        except (TypeError, ValueError):
            raise FallbackFailure(
                f"Remote fallback returned a non-numeric similarity: {str(data)[:50]}",
                step=step.step_number,
                tool=LOCAL_INFERENCE_TOOL
            )
        return min(1.0, max(0.0, score))

    if data is None or (isinstance(data, str) and not data.strip()):
        raise FallbackFailure(
            "Remote fallback returned no usable data",
            step=step.step_number,
            tool=LOCAL_INFERENCE_TOOL
        )
    return data


def _merge_sentiments(rows: List[Dict[str, Any]], data: Any) -> List[Any]:
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        data = data["items"]
    answers = data if isinstance(data, list) else []

    by_index = {}
    for answer in answers:
        if not isinstance(answer, dict):
            continue
        try:
            index = int(answer.get("index"))
        except (TypeError, ValueError):
            continue
        by_index[index] = str(answer.get("sentiment") or "neutral").lower()

    merged = []
    for row in rows:
        sentiment = by_index.get(row["index"], "neutral")
        original = row["original"]
        if isinstance(original, dict):
            merged.append({**original, "sentiment": sentiment})
        else:
            merged.append({"text": row["text"], "sentiment": sentiment})
    return merged
