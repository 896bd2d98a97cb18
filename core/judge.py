"""
Verification Oracle

The judge receives the expected output, excerpts of the primary output, a
step summary and screenshots, and answers with a verdict dict. The default
judge is a multimodal chat completion model.
"""

import json
import time
from typing import Any, Dict, List, Optional, Protocol

from app.config import LOG_LLM_CALLS, MODEL_NAME, ORACLE_TEMPERATURE
from prompts.verifier_prompt import UI_RULES, VERIFIER_SYSTEM_PROMPT, VERIFIER_USER_TEMPLATE
from tools.llm.client import get_client
from tools.usage_tracker import track_cost
from infra.logger import logger_verifier


class VerificationOracle(Protocol):
    def judge(
        self,
        expected_output: str,
        excerpts: Dict[str, Any],
        step_summary: str,
        screenshots: List[str],
        ui_required: bool
    ) -> Dict[str, Any]:
        """
        Return a verdict dict: valid, issues, recommendations,
        suggestedFixes, uiAssessment. May raise; the verifier degrades.
        """
        ...


class LLMJudge:
    """Verification oracle backed by a multimodal chat completion model"""

    def __init__(self, client=None, model: str = MODEL_NAME, api_key: Optional[str] = None):
        self._client = client
        self._api_key = api_key
        self.model = model
        self.costs = []

    def judge(
        self,
        expected_output: str,
        excerpts: Dict[str, Any],
        step_summary: str,
        screenshots: List[str],
        ui_required: bool
    ) -> Dict[str, Any]:
        text = VERIFIER_USER_TEMPLATE.format(
            expected_output=expected_output or "No explicit expected output",
            primary_key=excerpts.get("primary_key", "none"),
            length=excerpts.get("length", 0),
            head100=excerpts.get("head100", ""),
            tail100=excerpts.get("tail100", ""),
            step_summary=step_summary,
            ui_rules=UI_RULES if ui_required else ""
        )

        content: List[Dict[str, Any]] = [{"type": "text", "text": text}]
        for shot in screenshots:
            content.append({"type": "image_url", "image_url": {"url": _as_data_url(shot)}})

        if LOG_LLM_CALLS:
            logger_verifier.debug(
                f"LLM_REQUEST | model={self.model} | text_length={len(text)} | images={len(screenshots)}"
            )

        start_time = time.perf_counter()
        client = self._client or get_client(self._api_key)
        response = client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            temperature=ORACLE_TEMPERATURE,
            messages=[
                {"role": "system", "content": VERIFIER_SYSTEM_PROMPT},
                {"role": "user", "content": content}
            ]
        )

        raw_output = response.choices[0].message.content or ""
        usage = track_cost(response.usage)
        self.costs.append(usage)

        logger_verifier.debug(
            f"JUDGE_RESPONSE | length={len(raw_output)} | tokens={usage['total_tokens']} | "
            f"duration_ms={(time.perf_counter() - start_time) * 1000:.2f}"
        )

        verdict = json.loads(raw_output)
        if not isinstance(verdict, dict):
            raise ValueError(f"Judge returned {type(verdict).__name__}, expected an object")
        return verdict


def _as_data_url(image: str) -> str:
    if image.startswith("data:image/"):
        return image
    return f"data:image/jpeg;base64,{image}"
