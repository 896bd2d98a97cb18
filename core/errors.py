"""
Engine Error Taxonomy

PlanningFailure and UserAbort stop a run and propagate to the caller.
StepFailure and its subclasses describe a single failed step; the
execution engine records them and keeps going, except for
ActionBudgetExceeded which aborts the run. Verification and repair
exhaustion are reported on the pipeline result through FailureKind.
"""

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Why a pipeline run did not succeed"""
    STEP = "step"
    ACTION_BUDGET = "action_budget"
    VERIFICATION = "verification"
    REPAIR_EXHAUSTED = "repair_exhausted"


class OrchestrationError(Exception):
    pass


class PlanningFailure(OrchestrationError):
    """The planning oracle produced no usable plan"""
    pass


class PlanValidationError(PlanningFailure):
    """A plan failed static validation"""

    def __init__(self, error: dict):
        self.error = error
        super().__init__(error.get("message", "Invalid plan"))


class StepFailure(OrchestrationError):
    """A single step failed"""

    def __init__(self, message: str, *, step: Optional[int] = None, tool: Optional[str] = None):
        super().__init__(message)
        self.step = step
        self.tool = tool


class FallbackFailure(StepFailure):
    """Local inference failed and its remote substitute failed too"""
    pass


class ActionBudgetExceeded(StepFailure):
    """Browser automation exhausted its action budget; the run aborts"""
    pass


class UserAbort(OrchestrationError):
    """Cooperative cancellation requested by the caller"""

    def __init__(self, message: str = "Stopped by user"):
        super().__init__(message)


class ReplayError(OrchestrationError):
    """A compiled function's replay hit a failing step"""

    def __init__(self, message: str, *, step: Optional[int] = None, tool: Optional[str] = None):
        super().__init__(message)
        self.step = step
        self.tool = tool
