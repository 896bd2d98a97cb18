"""
Engine Configuration

Centralized configuration for the tool-chain orchestration engine.
Environment variables and secrets are loaded separately (infra/env.py).
"""

from typing import FrozenSet, Tuple


# ═══════════════════════════════════════════════════════════════════════════════
# LLM CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

# Models usable for planning, judging and the remote-intelligence tool
AVAILABLE_MODELS = [
    "gemini-2.5-flash-lite",
    "gemini-2.5-flash",
    "gemini-3-flash-preview"
]

# Default model for planner / judge calls
MODEL_NAME: str = "gemini-2.5-flash"

# Model used by the remote_intelligence_api tool (also the fallback target)
REMOTE_TOOL_MODEL: str = "gemini-2.5-flash-lite"

# OpenAI-compatible base URL
BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"

# Sampling temperature for planner and judge
ORACLE_TEMPERATURE: float = 0.1


# ═══════════════════════════════════════════════════════════════════════════════
# TOOL NAMES
# ═══════════════════════════════════════════════════════════════════════════════

BROWSER_TOOL: str = "computer_use_api"
LOCAL_INFERENCE_TOOL: str = "local_ollama_model"
REMOTE_LLM_TOOL: str = "remote_intelligence_api"
SCRAPER_TOOL: str = "universal_flexible_scraper"
CURRENT_TAB_TOOL: str = "current_tab_content"
REPORT_TOOL: str = "webpage_generator"
FILE_EXPORT_TOOL: str = "file_system_maker"
PAGE_MUTATION_TOOL: str = "site_modifier"
SEMANTIC_TOOL: str = "embedding_handler"
NOTEPAD_TOOL: str = "shared_notepad"

# Steps using these tools produce user-visible output; plans containing one
# are gated on a passing verdict
OUTPUT_TOOLS: FrozenSet[str] = frozenset({REPORT_TOOL, FILE_EXPORT_TOOL, PAGE_MUTATION_TOOL})

# Steps whose region field is rewritten when a region gate is detected
REGION_AWARE_TOOLS: FrozenSet[str] = frozenset({SCRAPER_TOOL, BROWSER_TOOL})

# Actions understood by the local inference tool
LOCAL_ACTIONS: Tuple[str, ...] = (
    "booleanCheck",
    "jsonExtract",
    "sentiment",
    "filterItems",
    "generate",
    "compareTexts",
    "weightedScore",
)


# ═══════════════════════════════════════════════════════════════════════════════
# EXECUTION ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

# Case-insensitive substrings that mark a local inference failure as an
# availability problem eligible for the remote fallback
FALLBACK_ERROR_MARKERS: Tuple[str, ...] = (
    "not available",
    LOCAL_INFERENCE_TOOL,
    "ollama",
    "403",
    "forbidden",
)

# Browser-automation failure text that signals an exhausted action budget
ACTION_LIMIT_MARKER: str = "max actions reached without task completion"

# Abort reason recorded on the report when the action budget is exhausted
ACTION_LIMIT_REASON: str = "action-limit"

# Capture a screenshot after each step
CAPTURE_STEP_SCREENSHOTS: bool = True

# Maximum characters grabbed by the current-tab grounding step
CURRENT_TAB_MAX_CHARS: int = 8000


# ═══════════════════════════════════════════════════════════════════════════════
# VERIFICATION & REPAIR
# ═══════════════════════════════════════════════════════════════════════════════

# Repair plans requested after the initial attempt
MAX_REPAIR_ATTEMPTS: int = 2

# Minimum acceptable UI score when the plan generates a report page
UI_SCORE_THRESHOLD: float = 7

# Screenshots sent to the judge
MAX_VERIFICATION_SCREENSHOTS: int = 3
MAX_UI_SCREENSHOTS: int = 2

# Characters of the primary output sent to the judge from each end
EXCERPT_CHARS: int = 100

# Objects under this size with no data-like content are treated as metadata
METADATA_TEXT_LIMIT: int = 180

# Length bonus for scored notepad entries: 1 point per chunk, capped
LENGTH_SCORE_CHUNK: int = 800
LENGTH_SCORE_CAP: int = 5


# ═══════════════════════════════════════════════════════════════════════════════
# FUNCTION COMPILER
# ═══════════════════════════════════════════════════════════════════════════════

FUNCTION_NAME_PREFIX: str = "Run"
FUNCTION_NAME_FALLBACK: str = "ToolChain"
FUNCTION_NAME_MAX_WORDS: int = 8

DEFAULT_REGION: str = "us"
DEFAULT_MAX_PASSES: int = 5

# Pause between iterative replay passes (seconds)
REPLAY_PASS_DELAY_SECONDS: float = 0.4

# Function library location
FUNCTION_LIBRARY_PATH: str = "runtime/functions/library.json"


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

ENABLE_FILE_LOGGING: bool = True

LOG_FILE_PATH: str = "runtime/logs/engine.log"

# Log LLM requests and responses (for debugging)
LOG_LLM_CALLS: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION & SAFETY
# ═══════════════════════════════════════════════════════════════════════════════

MAX_TASK_LENGTH: int = 4000
MIN_TASK_LENGTH: int = 3


# ═══════════════════════════════════════════════════════════════════════════════
# COST TRACKING
# ═══════════════════════════════════════════════════════════════════════════════

MAX_CONTEXT_TOKENS: int = 128_000

SAFE_LIMIT: float = 0.50
WARNING_LIMIT: float = 0.75
CRITICAL_LIMIT: float = 0.90


# ═══════════════════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def is_output_tool(tool_name: str) -> bool:
    """Check if a tool produces user-visible output"""
    return tool_name in OUTPUT_TOOLS


def get_budget_state(total_tokens: int) -> str:
    """Get budget state based on token usage"""
    ratio = total_tokens / MAX_CONTEXT_TOKENS if MAX_CONTEXT_TOKENS > 0 else 0.0

    if ratio < SAFE_LIMIT:
        return "safe"
    elif ratio < WARNING_LIMIT:
        return "warning"
    elif ratio < CRITICAL_LIMIT:
        return "critical"
    else:
        return "exceeded"


def validate_config():
    """Validate configuration on startup"""
    assert MODEL_NAME in AVAILABLE_MODELS, f"Invalid MODEL_NAME: {MODEL_NAME}"
    assert REMOTE_TOOL_MODEL in AVAILABLE_MODELS, f"Invalid REMOTE_TOOL_MODEL: {REMOTE_TOOL_MODEL}"
    assert MAX_REPAIR_ATTEMPTS >= 0, "MAX_REPAIR_ATTEMPTS must be non-negative"
    assert 0 <= UI_SCORE_THRESHOLD <= 10, "UI_SCORE_THRESHOLD must be within 0-10"
    assert MAX_UI_SCREENSHOTS <= MAX_VERIFICATION_SCREENSHOTS, "Invalid screenshot limits"
    assert DEFAULT_MAX_PASSES >= 1, "DEFAULT_MAX_PASSES must be at least 1"
    assert 0 < SAFE_LIMIT < WARNING_LIMIT < CRITICAL_LIMIT <= 1.0, "Invalid limit thresholds"
    assert MAX_TASK_LENGTH > MIN_TASK_LENGTH, "Invalid task length limits"


# Validate on import
validate_config()
