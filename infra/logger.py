"""
Centralized Logging Configuration

Provides structured logging for the orchestration engine with:
- Component-specific loggers
- Consistent formatting
- Step, verification and repair milestones
"""

import logging
import sys
from pathlib import Path
from typing import Optional


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGER CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Configure logging for the entire application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path to write logs to
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    console_formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)-15s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    file_formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()

    # Prevent duplicate logs if setup_logging() is called again
    if root_logger.handlers:
        root_logger.handlers.clear()

    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    # Silence noisy third-party loggers
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# ═══════════════════════════════════════════════════════════════════════════════
# COMPONENT LOGGERS
# ═══════════════════════════════════════════════════════════════════════════════

# Initialize logging (call this again at app startup to change level/file)
setup_logging(level="INFO")

logger_planner = logging.getLogger("agent.planner")
logger_validator = logging.getLogger("agent.validator")
logger_executor = logging.getLogger("agent.executor")
logger_tool = logging.getLogger("agent.tool")
logger_replanner = logging.getLogger("agent.replanner")
logger_verifier = logging.getLogger("agent.verifier")
logger_compiler = logging.getLogger("agent.compiler")
logger_api = logging.getLogger("agent.api")


# ═══════════════════════════════════════════════════════════════════════════════
# STRUCTURED LOGGING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

class LogContext:
    """Helper for consistent structured logging"""

    @staticmethod
    def format_dict(data: dict) -> str:
        """Format dictionary for logging"""
        return " | ".join(f"{k}={v}" for k, v in data.items())

    @staticmethod
    def format_step(step_number: int, tool_name: str, **kwargs) -> str:
        """Format step information"""
        context = {"step": step_number, "tool": tool_name, **kwargs}
        return LogContext.format_dict(context)

    @staticmethod
    def format_timing(duration_seconds: float) -> str:
        """Format timing information"""
        return f"{duration_seconds * 1000:.2f}ms"


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING UTILITIES
# ═══════════════════════════════════════════════════════════════════════════════

def log_execution_start(num_steps: int, run_id: Optional[str] = None):
    """Log execution start"""
    context = {"steps": num_steps}
    if run_id:
        context["run_id"] = run_id
    logger_executor.info(f"CHAIN_START | {LogContext.format_dict(context)}")


def log_execution_complete(executed_steps: int, failed_steps: int, status: str, duration_seconds: float):
    """Log execution completion"""
    context = {
        "executed_steps": executed_steps,
        "failed_steps": failed_steps,
        "status": status,
        "duration": LogContext.format_timing(duration_seconds)
    }
    logger_executor.info(f"CHAIN_COMPLETE | {LogContext.format_dict(context)}")


def log_step_start(step_number: int, tool_name: str, purpose: str):
    """Log step execution start"""
    logger_executor.debug(f"STEP_START | {LogContext.format_step(step_number, tool_name, purpose=purpose[:80])}")


def log_step_complete(step_number: int, tool_name: str, success: bool, duration_ms: float):
    """Log step execution completion"""
    duration = f"{duration_ms:.2f}"
    level = logger_executor.info if success else logger_executor.error
    level(f"STEP_COMPLETE | {LogContext.format_step(step_number, tool_name, success=success, duration_ms=duration)}")


def log_fallback(step_number: int, from_tool: str, to_tool: str, reason: str):
    """Log a local -> remote substitution"""
    context = {
        "step": step_number,
        "from": from_tool,
        "to": to_tool,
        "reason": reason[:100]
    }
    logger_executor.warning(f"STEP_FALLBACK | {LogContext.format_dict(context)}")


def log_verification_result(valid: bool, issues: int, primary_key: str):
    """Log verdict summary"""
    context = {"valid": valid, "issues": issues, "primary_key": primary_key}
    level = logger_verifier.info if valid else logger_verifier.warning
    level(f"VERIFY_COMPLETE | {LogContext.format_dict(context)}")


def log_replan_trigger(reason: str, issues: int):
    """Log replanning trigger"""
    context = {"reason": reason, "issues": issues}
    logger_replanner.warning(f"REPLAN_TRIGGER | {LogContext.format_dict(context)}")


def log_replan_attempt(attempt: int, max_attempts: int):
    """Log replan attempt"""
    logger_replanner.info(f"REPLAN_ATTEMPT | attempt={attempt}/{max_attempts}")
