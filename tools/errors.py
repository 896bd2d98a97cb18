"""
Tool Errors

Exceptions raised by the tool registry and by tool implementations.
A tool signals that a failure is an availability problem (eligible for the
remote fallback) by raising with recoverable=True.
"""


class ToolError(Exception):
    """Base error raised by a tool or by registry dispatch"""

    def __init__(self, message: str, *, tool: str = None, recoverable: bool = False):
        super().__init__(message)
        self.tool = tool
        self.recoverable = recoverable


class ToolNotFoundError(ToolError):
    """Tool name is not registered"""


class ToolUnavailableError(ToolError):
    """Tool is registered but its availability check failed"""

    def __init__(self, message: str, *, tool: str = None):
        super().__init__(message, tool=tool, recoverable=True)


class ToolInputError(ToolError):
    """Params did not validate against the tool's schema"""


class ActionLimitError(ToolError):
    """Browser automation ran out of its per-invocation action budget"""
