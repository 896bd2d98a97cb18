"""
Step Failure Classification

Decides what the execution engine does with a failed step:

    RECOVERABLE  local inference was unavailable -> retry through the remote LLM
    FATAL        browser automation exhausted its action budget -> abort the run
    STEP         anything else -> record the failure and continue
"""

from enum import Enum
from typing import Optional

from app.config import (
    ACTION_LIMIT_MARKER,
    BROWSER_TOOL,
    FALLBACK_ERROR_MARKERS,
    LOCAL_INFERENCE_TOOL,
)
from core.errors import ActionBudgetExceeded
from tools.errors import ActionLimitError, ToolError
from infra.logger import logger_executor


# ═══════════════════════════════════════════════════════════════════════════════
# FAILURE CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

class FailureType(Enum):
    """
    Types of step failures and how the engine handles them.

    RECOVERABLE: Availability problem on local inference -> remote fallback
    FATAL: Action budget exhausted -> abort the chain
    STEP: Ordinary failure -> record and continue
    """
    RECOVERABLE = "recoverable"
    FATAL = "fatal"
    STEP = "step"


def classify_failure(
    *,
    error: Optional[BaseException] = None,
    message: Optional[str] = None,
    tool_name: Optional[str] = None
) -> FailureType:
    """
    Classify a step failure to determine the engine's reaction.

    A ToolError raised by the local inference tool is classified by its
    recoverable flag. Untyped errors (and dict results with success=False)
    fall back to matching the error text against FALLBACK_ERROR_MARKERS.

    Args:
        error: Exception raised by the step, if any
        message: Error text (defaults to str(error))
        tool_name: Tool the failing step invoked

    Returns:
        FailureType indicating the engine's reaction

    Examples:
        >>> classify_failure(message="Ollama not available", tool_name="local_ollama_model")
        FailureType.RECOVERABLE

        >>> classify_failure(
        ...     message="Max actions reached without task completion",
        ...     tool_name="computer_use_api"
        ... )
        FailureType.FATAL

        >>> classify_failure(message="Selector not found", tool_name="site_modifier")
        FailureType.STEP
    """
    text = message if message is not None else (str(error) if error is not None else "")
    lowered = text.lower()

    # FATAL: the browser agent ran out of actions
    if isinstance(error, (ActionLimitError, ActionBudgetExceeded)):
        logger_executor.debug(f"CLASSIFY_FAILURE | FATAL | tool={tool_name} | typed")
        return FailureType.FATAL

    if tool_name == BROWSER_TOOL and ACTION_LIMIT_MARKER in lowered:
        logger_executor.debug(f"CLASSIFY_FAILURE | FATAL | tool={tool_name} | error={text[:50]}")
        return FailureType.FATAL

    if tool_name != LOCAL_INFERENCE_TOOL:
        return FailureType.STEP

    # RECOVERABLE: typed flag wins when the tool supplied one
    if isinstance(error, ToolError):
        failure_type = FailureType.RECOVERABLE if error.recoverable else FailureType.STEP
        logger_executor.debug(
            f"CLASSIFY_FAILURE | {failure_type.name} | tool={tool_name} | typed"
        )
        return failure_type

    if any(marker.lower() in lowered for marker in FALLBACK_ERROR_MARKERS):
        logger_executor.debug(f"CLASSIFY_FAILURE | RECOVERABLE | tool={tool_name} | error={text[:50]}")
        return FailureType.RECOVERABLE

    logger_executor.debug(f"CLASSIFY_FAILURE | STEP | tool={tool_name} | error={text[:50]}")
    return FailureType.STEP
