"""
Tool Registry

Name-keyed table of pluggable capabilities. Each tool implements the Tool
interface (execute + is_available) and may declare a pydantic schema that
params are validated against before dispatch.

Registries are plain instances handed to the engine through its execution
context; there is no process-wide registry.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from tools.errors import ToolError, ToolInputError, ToolNotFoundError, ToolUnavailableError
from infra.logger import logger_tool, LogContext


# ═══════════════════════════════════════════════════════════════════════════════
# TOOL INTERFACE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ToolCallContext:
    """What a tool gets to know about the run that called it"""
    credential: Optional[str] = None
    tab_handle: Any = None
    notepad: Any = None
    step_number: Optional[int] = None


class Tool(ABC):
    """
    A pluggable capability.

    execute() returns a result (optionally a dict carrying data / result /
    results and a boolean success flag) or raises. Raise ToolError with
    recoverable=True to mark a failure as an availability problem.
    """
    name: str = ""
    description: str = ""
    capabilities: List[str] = []
    param_schema: Optional[Type[BaseModel]] = None

    @abstractmethod
    def execute(self, params: Dict[str, Any], context: ToolCallContext) -> Any:
        ...

    def is_available(self) -> bool:
        return True


class FunctionTool(Tool):
    """Adapter registering plain callables as tools"""

    def __init__(
        self,
        name: str,
        execute: Callable[[Dict[str, Any], ToolCallContext], Any],
        *,
        description: str = "",
        capabilities: Optional[List[str]] = None,
        param_schema: Optional[Type[BaseModel]] = None,
        is_available: Optional[Callable[[], bool]] = None
    ):
        self.name = name
        self.description = description
        self.capabilities = list(capabilities or [])
        self.param_schema = param_schema
        self._execute = execute
        self._is_available = is_available

    def execute(self, params, context):
        return self._execute(params, context)

    def is_available(self) -> bool:
        if self._is_available is None:
            return True
        return bool(self._is_available())


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════════════════════

class ToolRegistry:
    """
    Central registration and dispatch for tools.

    Example:
        >>> registry = ToolRegistry()
        >>> registry.register_function("echo", lambda params, ctx: params, description="Echo params")
        >>> registry.execute("echo", {"x": 1})
        {'x': 1}
    """

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    # ---------- registration ----------
    def register(self, name: str, tool: Tool):
        """Register (or replace) a tool under name"""
        action = "UPDATED" if name in self._tools else "REGISTERED"
        tool.name = name
        self._tools[name] = tool
        logger_tool.debug(f"TOOL_{action} | tool={name}")

    def register_function(
        self,
        name: str,
        execute: Callable[[Dict[str, Any], ToolCallContext], Any],
        **kwargs
    ):
        """Register a plain callable; kwargs as for FunctionTool"""
        self.register(name, FunctionTool(name, execute, **kwargs))

    # ---------- lookup ----------
    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> List[str]:
        return list(self._tools)

    def __len__(self):
        return len(self._tools)

    def list_available(self) -> List[Dict[str, Any]]:
        """Describe every tool whose availability check passes"""
        available = []
        for tool in self._tools.values():
            try:
                if not tool.is_available():
                    continue
            except Exception as e:
                logger_tool.warning(
                    f"AVAILABILITY_CHECK_FAILED | tool={tool.name} | error={str(e)[:100]}"
                )
                continue

            available.append({
                "name": tool.name,
                "description": tool.description,
                "capabilities": list(tool.capabilities)
            })
        return available

    def tool_summary(self) -> str:
        """Human-readable summary of available tools for the planner prompt"""
        return "\n".join(
            f"- {t['name']}: {t['description']} [{', '.join(t['capabilities'])}]"
            for t in self.list_available()
        )

    # ---------- dispatch ----------
    def execute(self, name: str, params: Dict[str, Any], context: Optional[ToolCallContext] = None) -> Any:
        """
        Dispatch a call to a registered tool.

        Raises:
            ToolNotFoundError: Unknown tool name
            ToolUnavailableError: Availability check failed (recoverable)
            ToolInputError: Params rejected by the tool's schema
            Exception: Whatever the tool itself raises
        """
        context = context or ToolCallContext()

        tool = self._tools.get(name)
        if tool is None:
            logger_tool.error(f"TOOL_NOT_FOUND | tool={name}")
            raise ToolNotFoundError(f'Tool "{name}" not registered', tool=name)

        self._check_available(tool)
        self._validate_input(tool, params)

        _log_tool_start(name, context.step_number)
        start_time = time.perf_counter()

        try:
            result = tool.execute(params, context)
        except ToolError as e:
            e.tool = e.tool or name
            _log_tool_failed(name, str(e), start_time, context.step_number)
            raise
        except Exception as e:
            _log_tool_failed(name, str(e), start_time, context.step_number)
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        success = not (isinstance(result, dict) and result.get("success") is False)
        _log_tool_complete(name, success, duration_ms, context.step_number)
        return result

    def _check_available(self, tool: Tool):
        try:
            available = tool.is_available()
        except Exception as e:
            raise ToolUnavailableError(
                f'Tool "{tool.name}" availability check failed: {e}',
                tool=tool.name
            ) from e

        if not available:
            logger_tool.warning(f"TOOL_UNAVAILABLE | tool={tool.name}")
            raise ToolUnavailableError(
                f'Tool "{tool.name}" is not currently available',
                tool=tool.name
            )

    def _validate_input(self, tool: Tool, params: Dict[str, Any]):
        if tool.param_schema is None:
            return
        try:
            tool.param_schema.model_validate(params)
        except ValidationError as e:
            logger_tool.error(
                f"VALIDATION_FAIL | tool={tool.name} | error={str(e)[:200]}"
            )
            raise ToolInputError(
                f'Invalid params for "{tool.name}": {e.error_count()} validation error(s)',
                tool=tool.name
            ) from e


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _log_tool_start(tool_name: str, step_number: Optional[int]):
    context = {"tool": tool_name}
    if step_number:
        context["step"] = step_number
    logger_tool.debug(f"TOOL_START | {LogContext.format_dict(context)}")


def _log_tool_complete(tool_name: str, success: bool, duration_ms: float, step_number: Optional[int]):
    context = {
        "tool": tool_name,
        "success": success,
        "duration_ms": f"{duration_ms:.2f}"
    }
    if step_number:
        context["step"] = step_number

    log_level = logger_tool.info if success else logger_tool.warning
    status = "SUCCESS" if success else "FAIL"
    log_level(f"TOOL_{status} | {LogContext.format_dict(context)}")


def _log_tool_failed(tool_name: str, error: str, start_time: float, step_number: Optional[int]):
    context = {
        "tool": tool_name,
        "duration_ms": f"{(time.perf_counter() - start_time) * 1000:.2f}",
        "error": error[:100]
    }
    if step_number:
        context["step"] = step_number
    logger_tool.warning(f"TOOL_EXCEPTION | {LogContext.format_dict(context)}")
