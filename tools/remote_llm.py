"""
Remote Intelligence Tool

Complex reasoning, generation and analysis through the OpenAI-compatible
chat endpoint. Also the substitute target of the local inference fallback.
"""

import json
import re
from typing import Any, Dict

from app.config import REMOTE_LLM_TOOL, REMOTE_TOOL_MODEL, LOG_LLM_CALLS
from tools.errors import ToolError
from tools.llm.client import get_client
from tools.registry import Tool, ToolCallContext
from tools.responses import tool_response
from tools.schemas import RemoteIntelligenceInput
from tools.usage_tracker import track_cost
from infra.logger import logger_tool


_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def extract_json(text: str) -> Any:
    """
    Parse JSON out of a model answer.

    Accepts bare JSON, a fenced ```json block, or JSON embedded in prose
    (first object/array to its matching last bracket).

    Raises:
        ValueError: No JSON could be parsed
    """
    candidate = (text or "").strip()
    fenced = _FENCED_JSON.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    for opener, closer in (("[", "]"), ("{", "}")):
        start = candidate.find(opener)
        end = candidate.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(candidate[start:end + 1])
            except json.JSONDecodeError:
                continue

    raise ValueError(f"No JSON found in response: {candidate[:80]}")


class RemoteIntelligenceTool(Tool):
    """
    Single-turn chat completion.

    params:
        prompt: Instruction text
        parseJson: Parse the answer as JSON (inferred from the prompt upstream)
        model: Override REMOTE_TOOL_MODEL
        temperature: Sampling temperature
    """
    description = (
        "Complex reasoning, code generation, and analysis via a hosted LLM. "
        "Use for tasks too complex for the local model."
    )
    capabilities = ["reasoning", "code-generation", "analysis", "summarization", "complex-tasks"]
    param_schema = RemoteIntelligenceInput

    def __init__(self, client=None, model: str = REMOTE_TOOL_MODEL):
        self.name = REMOTE_LLM_TOOL
        self._client = client
        self.model = model
        self.costs = []

    def execute(self, params: Dict[str, Any], context: ToolCallContext) -> Dict[str, Any]:
        client = self._client or get_client(context.credential)
        model = params.get("model") or self.model
        wants_json = params.get("parseJson") is True

        request = {
            "model": model,
            "messages": [{"role": "user", "content": params["prompt"]}]
        }
        if params.get("temperature") is not None:
            request["temperature"] = params["temperature"]

        if LOG_LLM_CALLS:
            logger_tool.debug(
                f"LLM_REQUEST | tool={self.name} | model={model} | prompt_length={len(params['prompt'])}"
            )

        try:
            response = client.chat.completions.create(**request)
        except Exception as e:
            logger_tool.error(f"LLM_API_ERROR | tool={self.name} | error={str(e)[:200]}")
            raise ToolError(f"Remote LLM request failed: {e}", tool=self.name) from e

        text = response.choices[0].message.content or ""
        usage = track_cost(response.usage)
        self.costs.append(usage)

        if not wants_json:
            return tool_response(tool=self.name, success=True, result=text, model=model, usage=usage)

        try:
            parsed = extract_json(text)
        except ValueError as e:
            logger_tool.warning(f"JSON_PARSE_ERROR | tool={self.name} | error={str(e)[:100]}")
            return tool_response(
                tool=self.name,
                success=False,
                error=f"Remote LLM JSON parse failed: {e}",
                model=model
            )

        return tool_response(tool=self.name, success=True, result=parsed, model=model, usage=usage)
